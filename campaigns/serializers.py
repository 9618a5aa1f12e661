"""
Serializers for campaigns, stage artifacts, sources and articles.
"""
from rest_framework import serializers

from brands.models import Brand
from .lifecycle import STAGES, create_campaign
from .models import BlogPost, Campaign, Source, StageArtifact, clamp_meta_description


class CampaignSerializer(serializers.ModelSerializer):
    """Campaign list/detail; pipeline state is read-only."""
    brand = serializers.PrimaryKeyRelatedField(queryset=Brand.objects.none())
    brand_name = serializers.CharField(source='brand.name', read_only=True)
    can_resume = serializers.BooleanField(read_only=True)

    class Meta:
        model = Campaign
        fields = (
            'id', 'brand', 'brand_name', 'website_url', 'target_country', 'language',
            'keywords', 'target_article_count', 'article_length',
            'current_step', 'status', 'progress', 'error_message', 'can_resume',
            'is_archived', 'archived_at', 'created_at', 'updated_at',
        )
        read_only_fields = (
            'id', 'current_step', 'status', 'progress', 'error_message',
            'is_archived', 'archived_at', 'created_at', 'updated_at',
        )

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        request = self.context.get('request')
        if request is not None and request.user.is_authenticated:
            # Only the user's own brands can own a campaign
            self.fields['brand'].queryset = Brand.objects.filter(user=request.user)

    def validate_keywords(self, value):
        if not isinstance(value, list):
            raise serializers.ValidationError("Must be a list of keywords")
        if len(value) > 50:
            raise serializers.ValidationError("Maximum 50 keywords allowed")
        return [str(k).strip() for k in value if str(k).strip()]

    def create(self, validated_data):
        return create_campaign(**validated_data)

    def validate_target_article_count(self, value):
        if value < 1 or value > 20:
            raise serializers.ValidationError("Must be between 1 and 20")
        return value


class StageArtifactSerializer(serializers.ModelSerializer):
    class Meta:
        model = StageArtifact
        fields = (
            'id', 'stage', 'version', 'success', 'payload', 'error_kind', 'error_message',
            'model', 'prompt_tokens', 'completion_tokens', 'total_tokens', 'cost_usd', 'created_at',
        )
        read_only_fields = fields


class SourceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Source
        fields = (
            'id', 'url', 'title', 'description', 'status', 'content_excerpt',
            'insights', 'error', 'fetched_at',
        )
        read_only_fields = fields


class RunStageSerializer(serializers.Serializer):
    stage = serializers.ChoiceField(choices=STAGES)
    force = serializers.BooleanField(default=False)


class MarkFailedSerializer(serializers.Serializer):
    message = serializers.CharField(required=False, allow_blank=True, max_length=1000)


class BlogPostSerializer(serializers.ModelSerializer):
    """Article serializer; a long meta description is clamped, not rejected."""
    meta_description = serializers.CharField(required=False, allow_blank=True)
    sync_records = serializers.SerializerMethodField()

    class Meta:
        model = BlogPost
        fields = (
            'id', 'brand', 'campaign', 'title', 'slug', 'content', 'meta_description',
            'keywords', 'status', 'word_count', 'sync_records', 'created_at', 'updated_at',
        )
        read_only_fields = ('id', 'brand', 'campaign', 'word_count', 'created_at', 'updated_at')

    def get_sync_records(self, obj):
        return [
            {
                'platform': record.platform,
                'status': record.status,
                'external_id': record.external_id,
                'external_url': record.external_url,
                'last_error': record.last_error,
                'last_attempt_at': record.last_attempt_at,
            }
            for record in obj.sync_records.all()
        ]

    def validate_meta_description(self, value):
        return clamp_meta_description(value)

    def validate_keywords(self, value):
        if not isinstance(value, list):
            raise serializers.ValidationError("Must be a list of keywords")
        return [str(k).strip() for k in value if str(k).strip()]

    def validate(self, attrs):
        status = attrs.get('status', getattr(self.instance, 'status', 'draft'))
        keywords = attrs.get('keywords', getattr(self.instance, 'keywords', []))
        if status == 'published' and not keywords:
            raise serializers.ValidationError({'keywords': 'Keywords are required before publishing.'})
        return attrs


class SyncArticleSerializer(serializers.Serializer):
    platform = serializers.ChoiceField(choices=['wordpress', 'shopify'])
