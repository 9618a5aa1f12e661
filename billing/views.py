"""
Billing views for SEOPilot.
Handles balance, usage ledger, trial subscriptions and Stripe webhooks.
"""
import logging
from decimal import Decimal

import stripe
from django.contrib.auth import get_user_model
from django.http import HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
from rest_framework import generics
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .models import TokenUsage
from .payments import PaymentError, build_payment_gateway
from .quota import QuotaGate
from .serializers import TokenUsageSerializer

logger = logging.getLogger(__name__)

SUBSCRIPTION_CREDIT_REASON = 'subscription_payment'


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_balance(request):
    """
    Current token balance and subscription state.

    GET /api/v1/billing/balance/
    """
    user = request.user
    user.refresh_from_db(fields=['token_balance', 'subscription_status', 'trial_ends_at'])
    return Response({
        'token_balance': str(user.token_balance),
        'subscription_status': user.subscription_status,
        'trial_ends_at': user.trial_ends_at,
        'is_trial_active': user.is_trial_active(),
    })


class TokenUsageListView(generics.ListAPIView):
    """
    GET /api/v1/billing/usage/ - Ledger entries for the current user, newest first.
    Optional filters: ?campaign=<id>, ?service=<stage name>
    """
    serializer_class = TokenUsageSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        queryset = TokenUsage.objects.filter(user=self.request.user)
        campaign_id = self.request.query_params.get('campaign')
        if campaign_id:
            queryset = queryset.filter(campaign_id=campaign_id)
        service = self.request.query_params.get('service')
        if service:
            queryset = queryset.filter(service_name=service)
        return queryset


@api_view(['GET', 'POST', 'DELETE'])
@permission_classes([IsAuthenticated])
def subscription(request):
    """
    GET    /api/v1/billing/subscription/ - Subscription status
    POST   /api/v1/billing/subscription/ - Start a subscription with free trial
    DELETE /api/v1/billing/subscription/ - Cancel the subscription
    """
    user = request.user

    if request.method == 'GET':
        return Response({
            'status': user.subscription_status,
            'subscription_id': user.stripe_subscription_id,
            'trial_ends_at': user.trial_ends_at,
            'is_active': user.has_active_subscription(),
        })

    gateway = build_payment_gateway()
    try:
        if request.method == 'POST':
            created = gateway.create_subscription_with_trial(user)
            return Response({
                'subscription_id': created.id,
                'status': user.subscription_status,
                'trial_ends_at': user.trial_ends_at,
            }, status=201)

        gateway.cancel_subscription(user)
        return Response({'status': user.subscription_status})
    except PaymentError as e:
        status_code = 503 if e.code == 'payments_not_configured' else 400
        return Response({'error': e.code, 'message': e.message}, status=status_code)


@csrf_exempt
@require_http_methods(['POST'])
def stripe_webhook(request):
    """
    Handle Stripe webhook events.

    POST /api/v1/billing/webhook/
    """
    payload = request.body
    sig_header = request.META.get('HTTP_STRIPE_SIGNATURE')

    try:
        event = build_payment_gateway().construct_event(payload, sig_header)
    except ValueError:
        return HttpResponse('Invalid payload', status=400)
    except stripe.SignatureVerificationError:
        return HttpResponse('Invalid signature', status=400)

    handler = WEBHOOK_HANDLERS.get(event['type'])
    if handler:
        handler(event['data']['object'])
    else:
        logger.debug(f"Ignoring Stripe event {event['type']}")

    return HttpResponse(status=200)


def _user_for_customer(customer_id):
    User = get_user_model()
    try:
        return User.objects.get(stripe_customer_id=customer_id)
    except User.DoesNotExist:
        logger.warning(f"Stripe event for unknown customer {customer_id}")
        return None


def handle_invoice_paid(invoice):
    """Credit the paid amount to the user's token balance."""
    user = _user_for_customer(invoice.get('customer'))
    if user is None:
        return
    amount_paid = invoice.get('amount_paid') or 0
    if amount_paid <= 0:
        # Trial invoices are $0
        return
    QuotaGate().credit(
        user.id,
        Decimal(amount_paid) / 100,
        SUBSCRIPTION_CREDIT_REASON,
        request_data={'invoice_id': invoice.get('id')},
        idempotency_key=f"invoice:{invoice.get('id')}",
    )
    if user.subscription_status != 'active':
        user.subscription_status = 'active'
        user.save(update_fields=['subscription_status'])


def handle_subscription_updated(subscription):
    """Mirror Stripe's subscription status onto the user."""
    user = _user_for_customer(subscription.get('customer'))
    if user is None:
        return
    status = subscription.get('status')
    mapped = {
        'trialing': 'trial',
        'active': 'active',
        'past_due': 'past_due',
        'unpaid': 'past_due',
        'canceled': 'canceled',
    }.get(status)
    if mapped is None:
        return
    user.stripe_subscription_id = subscription.get('id')
    user.subscription_status = mapped
    user.save(update_fields=['stripe_subscription_id', 'subscription_status'])


def handle_subscription_deleted(subscription):
    """Handle subscription cancellation."""
    user = _user_for_customer(subscription.get('customer'))
    if user is None:
        return
    user.subscription_status = 'canceled'
    user.save(update_fields=['subscription_status'])


def handle_payment_failed(invoice):
    """Handle failed payment."""
    user = _user_for_customer(invoice.get('customer'))
    if user is None:
        return
    user.subscription_status = 'past_due'
    user.save(update_fields=['subscription_status'])


WEBHOOK_HANDLERS = {
    'invoice.paid': handle_invoice_paid,
    'invoice.payment_failed': handle_payment_failed,
    'customer.subscription.created': handle_subscription_updated,
    'customer.subscription.updated': handle_subscription_updated,
    'customer.subscription.deleted': handle_subscription_deleted,
}
