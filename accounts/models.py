"""
User account models.
"""
from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.utils import timezone
from datetime import timedelta


class User(AbstractUser):
    """
    Custom User model extending Django's AbstractUser.
    Owns brands and campaigns and carries the prepaid AI token balance.
    """
    email = models.EmailField(unique=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Prepaid balance (USD) debited by metered AI stages
    token_balance = models.DecimalField(
        max_digits=12,
        decimal_places=6,
        default=Decimal('0'),
        help_text="Remaining AI usage balance in USD"
    )

    # Stripe integration
    stripe_customer_id = models.CharField(max_length=255, blank=True, null=True)
    stripe_subscription_id = models.CharField(max_length=255, blank=True, null=True)
    subscription_status = models.CharField(
        max_length=50,
        default='inactive',
        choices=[
            ('inactive', 'Inactive'),
            ('trial', 'Trial'),
            ('active', 'Active'),
            ('past_due', 'Past Due'),
            ('canceled', 'Canceled'),
        ]
    )

    trial_started_at = models.DateTimeField(blank=True, null=True)
    trial_ends_at = models.DateTimeField(blank=True, null=True)

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['username']

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']

    def __str__(self):
        return self.email

    def start_trial(self, days=10):
        """Start the free trial window."""
        self.trial_started_at = timezone.now()
        self.trial_ends_at = timezone.now() + timedelta(days=days)
        self.subscription_status = 'trial'
        self.save(update_fields=['trial_started_at', 'trial_ends_at', 'subscription_status'])

    def is_trial_active(self):
        """Check if user is in active trial period."""
        if self.subscription_status != 'trial':
            return False
        if not self.trial_ends_at:
            return False
        return timezone.now() < self.trial_ends_at

    def has_active_subscription(self):
        """Check if user has an active paid subscription or trial."""
        if self.is_trial_active():
            return True
        return self.subscription_status == 'active'
