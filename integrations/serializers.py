"""
Serializers for CMS integrations.
Credentials are write-only; responses only say whether they are set.
"""
from rest_framework import serializers

from brands.models import Brand
from .models import CMSIntegration

CREDENTIAL_FIELDS = ('application_password', 'access_token')


class CMSIntegrationSerializer(serializers.ModelSerializer):
    brand = serializers.PrimaryKeyRelatedField(queryset=Brand.objects.none())
    has_credentials = serializers.SerializerMethodField()

    class Meta:
        model = CMSIntegration
        fields = (
            'id', 'brand', 'platform', 'site_url', 'username', 'application_password',
            'shop_domain', 'access_token', 'blog_id', 'api_version', 'is_active',
            'has_credentials', 'created_at', 'updated_at',
        )
        read_only_fields = ('id', 'created_at', 'updated_at')
        extra_kwargs = {
            'application_password': {'write_only': True},
            'access_token': {'write_only': True},
        }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        request = self.context.get('request')
        if request is not None and request.user.is_authenticated:
            self.fields['brand'].queryset = Brand.objects.filter(user=request.user)

    def get_has_credentials(self, obj):
        if obj.platform == 'wordpress':
            return bool(obj.username and obj.application_password)
        return bool(obj.access_token)

    def validate(self, attrs):
        def current(name):
            return attrs.get(name) or getattr(self.instance, name, '')

        platform = current('platform')
        if self.instance is not None and 'platform' in attrs and attrs['platform'] != self.instance.platform:
            raise serializers.ValidationError({'platform': 'Platform cannot be changed.'})

        if platform == 'wordpress':
            missing = [f for f in ('site_url', 'username', 'application_password') if not current(f)]
        else:
            missing = [f for f in ('shop_domain', 'access_token') if not current(f)]
        if missing:
            raise serializers.ValidationError({f: 'This field is required.' for f in missing})
        return attrs

    def update(self, instance, validated_data):
        # Blank credentials on update keep the stored value
        for name in CREDENTIAL_FIELDS:
            if name in validated_data and not validated_data[name]:
                validated_data.pop(name)
        return super().update(instance, validated_data)
