"""
Stripe payment operations.

The gateway receives its API key explicitly and passes it on every call
instead of setting the module-level stripe.api_key.
"""
import logging
from datetime import timedelta

import stripe
from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    """Raised when Stripe rejects an operation or payments are not configured."""

    def __init__(self, message: str, code: str = 'payment_error'):
        self.message = message
        self.code = code
        super().__init__(f"{code}: {message}")


class PaymentGateway:
    """
    Customer and subscription management for one Stripe account.

    Usage:
        gateway = build_payment_gateway()
        gateway.create_subscription_with_trial(user)
    """

    def __init__(self, api_key: str, price_id: str = '', trial_days: int = 10, webhook_secret: str = ''):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.price_id = price_id
        self.trial_days = trial_days

    def _require_configured(self):
        if not self.api_key:
            raise PaymentError('Stripe is not configured.', code='payments_not_configured')

    def create_customer(self, user) -> str:
        """Get or create the Stripe customer for a user; returns the customer id."""
        if user.stripe_customer_id:
            return user.stripe_customer_id
        self._require_configured()
        try:
            customer = stripe.Customer.create(
                api_key=self.api_key,
                email=user.email,
                metadata={'user_id': user.id},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe customer creation failed for user {user.id}: {e}")
            raise PaymentError(str(e)) from e

        user.stripe_customer_id = customer.id
        user.save(update_fields=['stripe_customer_id'])
        return customer.id

    def create_subscription_with_trial(self, user):
        """
        Subscribe the user to the configured price with a free trial.
        Returns the Stripe subscription object.
        """
        self._require_configured()
        if not self.price_id:
            raise PaymentError('No subscription price is configured.', code='payments_not_configured')
        if user.stripe_subscription_id and user.subscription_status in ('trial', 'active'):
            raise PaymentError('User already has an active subscription.', code='subscription_exists')

        customer_id = self.create_customer(user)
        try:
            subscription = stripe.Subscription.create(
                api_key=self.api_key,
                customer=customer_id,
                items=[{'price': self.price_id}],
                trial_period_days=self.trial_days,
                metadata={'user_id': user.id},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe subscription creation failed for user {user.id}: {e}")
            raise PaymentError(str(e)) from e

        now = timezone.now()
        user.stripe_subscription_id = subscription.id
        user.subscription_status = 'trial'
        user.trial_started_at = now
        user.trial_ends_at = now + timedelta(days=self.trial_days)
        user.save(update_fields=[
            'stripe_subscription_id',
            'subscription_status',
            'trial_started_at',
            'trial_ends_at',
        ])
        logger.info(f"Started {self.trial_days}-day trial subscription {subscription.id} for user {user.id}")
        return subscription

    def cancel_subscription(self, user):
        """Cancel the user's subscription immediately."""
        if not user.stripe_subscription_id:
            raise PaymentError('No active subscription.', code='no_subscription')
        self._require_configured()
        try:
            subscription = stripe.Subscription.cancel(user.stripe_subscription_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error(f"Stripe cancellation failed for user {user.id}: {e}")
            raise PaymentError(str(e)) from e

        user.subscription_status = 'canceled'
        user.save(update_fields=['subscription_status'])
        return subscription

    def construct_event(self, payload, sig_header):
        """Verify a webhook signature; raises ValueError or SignatureVerificationError."""
        return stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)


def build_payment_gateway() -> PaymentGateway:
    """Create the payment gateway from Django settings."""
    return PaymentGateway(
        api_key=settings.STRIPE_SECRET_KEY,
        price_id=settings.STRIPE_PRICE_ID,
        trial_days=settings.BILLING['TRIAL_DAYS'],
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
    )
