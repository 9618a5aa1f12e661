"""
Serializers for Brand model.
"""
from rest_framework import serializers
from .models import Brand


class BrandSerializer(serializers.ModelSerializer):
    """Serializer for Brand model."""
    campaign_count = serializers.SerializerMethodField()

    class Meta:
        model = Brand
        fields = (
            'id', 'name', 'website', 'description', 'industry',
            'target_audience', 'brand_voice', 'key_selling_points',
            'campaign_count', 'created_at', 'updated_at',
        )
        read_only_fields = ('id', 'created_at', 'updated_at')

    def get_campaign_count(self, obj):
        """Count of non-archived campaigns for this brand."""
        return obj.campaigns.filter(is_archived=False).count()

    def validate_key_selling_points(self, value):
        """Ensure key_selling_points is a list of strings."""
        if not isinstance(value, list):
            raise serializers.ValidationError("Must be a list of selling points")
        if len(value) > 20:
            raise serializers.ValidationError("Maximum 20 selling points allowed")
        return [str(s).strip() for s in value if s]

    def validate_name(self, value):
        """Brand names are unique per user."""
        request = self.context.get('request')
        if request is None:
            return value
        queryset = Brand.objects.filter(user=request.user, name=value)
        if self.instance is not None:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise serializers.ValidationError("You already have a brand with this name")
        return value
