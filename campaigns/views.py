"""
Views for content campaigns and the articles they produce.
"""
import logging

from asgiref.sync import async_to_sync
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ai.errors import INSUFFICIENT_BALANCE, INTEGRATION_MISSING
from brands.permissions import IsBrandOwner
from integrations.publishing import PublishingAdapter
from . import lifecycle
from .models import BlogPost, Campaign
from .pipeline import build_pipeline
from .serializers import (
    BlogPostSerializer,
    CampaignSerializer,
    MarkFailedSerializer,
    RunStageSerializer,
    SourceSerializer,
    StageArtifactSerializer,
    SyncArticleSerializer,
)

logger = logging.getLogger(__name__)


def _conflict(error):
    return Response(
        {'error': 'invalid_transition', 'message': error.message, 'stage': error.stage},
        status=status.HTTP_409_CONFLICT,
    )


def _stage_response(outcome, campaign=None):
    data = outcome.to_dict()
    if campaign is not None:
        data['campaign'] = CampaignSerializer(campaign).data
    if outcome.error_kind == INSUFFICIENT_BALANCE:
        return Response(data, status=status.HTTP_402_PAYMENT_REQUIRED)
    return Response(data)


class CampaignViewSet(mixins.ListModelMixin,
                      mixins.CreateModelMixin,
                      mixins.RetrieveModelMixin,
                      mixins.DestroyModelMixin,
                      viewsets.GenericViewSet):
    """
    ViewSet for content campaigns.

    list: GET /api/v1/campaigns/ - Active campaigns (?include_archived=1 for all)
    create: POST /api/v1/campaigns/ - Quick setup
    retrieve: GET /api/v1/campaigns/{id}/ - Status, progress, error message, can_resume
    destroy: DELETE /api/v1/campaigns/{id}/ - Archive (never hard-deletes)
    artifacts: GET /api/v1/campaigns/{id}/artifacts/ - Stage artifacts, newest version first
    sources: GET /api/v1/campaigns/{id}/sources/ - Research sources
    run_stage: POST /api/v1/campaigns/{id}/run-stage/ - {stage, force}
    resume: POST /api/v1/campaigns/{id}/resume/ - Re-run the next unfinished stage
    mark_failed: POST /api/v1/campaigns/{id}/mark-failed/ - Operator abort

    Stage runs answer 200 with {success, error, message, ...}; 402 when the
    balance does not cover the stage, 409 when the stage is not allowed now.
    """
    serializer_class = CampaignSerializer
    permission_classes = [IsAuthenticated, IsBrandOwner]

    def get_queryset(self):
        """Return only campaigns owned by the current user."""
        queryset = Campaign.objects.filter(user=self.request.user).select_related('brand')
        if self.action == 'list':
            if self.request.query_params.get('include_archived') not in ('1', 'true'):
                queryset = queryset.filter(is_archived=False)
            brand_id = self.request.query_params.get('brand')
            if brand_id:
                queryset = queryset.filter(brand_id=brand_id)
        return queryset

    def perform_create(self, serializer):
        """Set the user when creating a campaign."""
        serializer.save(user=self.request.user)

    def perform_destroy(self, instance):
        lifecycle.archive(instance)

    def _refreshed(self, campaign):
        campaign.refresh_from_db()
        return campaign

    @action(detail=True, methods=['get'])
    def artifacts(self, request, pk=None):
        campaign = self.get_object()
        artifacts = campaign.artifacts.all().order_by('stage', '-version')
        stage = request.query_params.get('stage')
        if stage:
            artifacts = artifacts.filter(stage=stage)
        return Response(StageArtifactSerializer(artifacts, many=True).data)

    @action(detail=True, methods=['get'])
    def sources(self, request, pk=None):
        campaign = self.get_object()
        return Response(SourceSerializer(campaign.sources.all(), many=True).data)

    @action(detail=True, methods=['post'], url_path='run-stage')
    def run_stage(self, request, pk=None):
        campaign = self.get_object()
        serializer = RunStageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            outcome = async_to_sync(build_pipeline().run_stage)(
                campaign.id,
                serializer.validated_data['stage'],
                force=serializer.validated_data['force'],
            )
        except lifecycle.InvalidTransition as e:
            return _conflict(e)
        return _stage_response(outcome, self._refreshed(campaign))

    @action(detail=True, methods=['post'])
    def resume(self, request, pk=None):
        campaign = self.get_object()
        try:
            outcome = async_to_sync(build_pipeline().resume)(campaign.id)
        except lifecycle.InvalidTransition as e:
            return _conflict(e)
        return _stage_response(outcome, self._refreshed(campaign))

    @action(detail=True, methods=['post'], url_path='mark-failed')
    def mark_failed(self, request, pk=None):
        campaign = self.get_object()
        serializer = MarkFailedSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            lifecycle.mark_failed(campaign, serializer.validated_data.get('message'))
        except lifecycle.InvalidTransition as e:
            return _conflict(e)
        return Response(CampaignSerializer(campaign).data)


class ArticleViewSet(mixins.ListModelMixin,
                     mixins.RetrieveModelMixin,
                     mixins.UpdateModelMixin,
                     viewsets.GenericViewSet):
    """
    ViewSet for generated articles.

    list: GET /api/v1/articles/ - Articles for the user's brands (?brand=, ?campaign=)
    retrieve: GET /api/v1/articles/{id}/
    update: PUT/PATCH /api/v1/articles/{id}/
    sync: POST /api/v1/articles/{id}/sync/ - {platform: wordpress|shopify}
    meta_description: POST /api/v1/articles/{id}/meta-description/ - Regenerate
    """
    serializer_class = BlogPostSerializer
    permission_classes = [IsAuthenticated, IsBrandOwner]

    def get_queryset(self):
        """Return only articles of brands owned by the current user."""
        queryset = BlogPost.objects.filter(brand__user=self.request.user).prefetch_related('sync_records')
        brand_id = self.request.query_params.get('brand')
        if brand_id:
            queryset = queryset.filter(brand_id=brand_id)
        campaign_id = self.request.query_params.get('campaign')
        if campaign_id:
            queryset = queryset.filter(campaign_id=campaign_id)
        return queryset

    @action(detail=True, methods=['post'])
    def sync(self, request, pk=None):
        article = self.get_object()
        serializer = SyncArticleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = async_to_sync(PublishingAdapter().sync_article)(
            article.id, article.brand_id, serializer.validated_data['platform'],
        )
        if result.success:
            return Response(result.to_dict())
        if result.error_kind == INTEGRATION_MISSING:
            return Response(result.to_dict(), status=status.HTTP_400_BAD_REQUEST)
        return Response(result.to_dict(), status=status.HTTP_502_BAD_GATEWAY)

    @action(detail=True, methods=['post'], url_path='meta-description')
    def meta_description(self, request, pk=None):
        article = self.get_object()
        outcome = async_to_sync(build_pipeline().generate_meta_description)(article.id)
        data = outcome.to_dict()
        if outcome.success:
            data['meta_description'] = outcome.payload['meta_description']
            return Response(data)
        if outcome.error_kind == INSUFFICIENT_BALANCE:
            return Response(data, status=status.HTTP_402_PAYMENT_REQUIRED)
        return Response(data, status=status.HTTP_502_BAD_GATEWAY)
