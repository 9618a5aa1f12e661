"""
Billing and AI usage models.
Every metered AI call and every balance top-up is appended to the TokenUsage ledger.
"""
from django.db import models
from django.conf import settings


class TokenUsage(models.Model):
    """
    Append-only ledger of balance movements.
    A positive cost_usd is a debit for an AI stage; a negative one is a credit
    (subscription payment, admin top-up).
    """
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='token_usage'
    )

    # What was charged
    service_name = models.CharField(max_length=100, help_text="Pipeline stage or credit reason")
    model_name = models.CharField(max_length=100, blank=True)

    # Token usage
    prompt_tokens = models.IntegerField(default=0)
    completion_tokens = models.IntegerField(default=0)
    total_tokens = models.IntegerField(default=0)

    cost_usd = models.DecimalField(
        max_digits=12,
        decimal_places=6,
        default=0,
        help_text="Amount debited (negative for credits)"
    )
    balance_after = models.DecimalField(
        max_digits=12,
        decimal_places=6,
        help_text="User balance right after this entry"
    )

    # Optional context
    brand = models.ForeignKey(
        'brands.Brand',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='token_usage'
    )
    campaign = models.ForeignKey(
        'campaigns.Campaign',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='token_usage'
    )
    request_data = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'token_usage'
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['user', 'created_at'], name='token_usage_user_created_idx'),
            models.Index(fields=['campaign'], name='token_usage_campaign_idx'),
        ]

    def __str__(self):
        return f"{self.user} - {self.service_name} - ${self.cost_usd}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("Ledger entries are append-only")
        super().save(*args, **kwargs)

    @property
    def is_credit(self):
        return self.cost_usd < 0
