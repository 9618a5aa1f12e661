"""
Serializers for billing models.
"""
from rest_framework import serializers
from .models import TokenUsage


class TokenUsageSerializer(serializers.ModelSerializer):
    """Ledger entry serializer."""
    is_credit = serializers.BooleanField(read_only=True)

    class Meta:
        model = TokenUsage
        fields = [
            'id', 'service_name', 'model_name',
            'prompt_tokens', 'completion_tokens', 'total_tokens',
            'cost_usd', 'balance_after', 'is_credit',
            'brand', 'campaign', 'created_at'
        ]
        read_only_fields = fields
