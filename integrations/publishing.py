"""
Publishing sync adapter.

sync_article pushes one BlogPost to a brand's WordPress or Shopify integration
and tracks the outcome on a CMSSyncRecord. Errors only ever touch the sync
record and the article's status; content and campaign state are left alone.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.utils import timezone

from ai.errors import (
    BLOG_RESOLUTION_ERROR,
    INTEGRATION_MISSING,
    PUBLISH_ERROR,
    describe,
)
from campaigns.models import BlogPost
from .http import CMSApiError
from .models import CMSIntegration, CMSSyncRecord
from .shopify import BlogResolutionError, ShopifyClient
from .wordpress import WordPressClient

logger = logging.getLogger(__name__)

PLATFORMS = ('wordpress', 'shopify')


@dataclass
class SyncResult:
    success: bool
    platform: str
    external_id: Optional[str] = None
    external_url: str = ''
    created: bool = False
    error_kind: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self):
        if self.success:
            return {
                'success': True,
                'platform': self.platform,
                'external_id': self.external_id,
                'external_url': self.external_url,
                'created': self.created,
            }
        return {
            'success': False,
            'platform': self.platform,
            'error': self.error_kind,
            'message': self.error,
        }


class PublishingAdapter:
    """
    Sync articles to CMS platforms with bounded retries on transient failures.
    `transport` is handed to the httpx clients (tests use httpx.MockTransport).
    """

    def __init__(self, transport=None, sleep=asyncio.sleep, max_retries=None, backoff_seconds=None,
                 timeout=None, shopify_api_version=None):
        publishing = settings.PUBLISHING
        self.transport = transport
        self.sleep = sleep
        self.max_retries = publishing['MAX_RETRIES'] if max_retries is None else max_retries
        self.backoff_seconds = publishing['RETRY_BACKOFF_SECONDS'] if backoff_seconds is None else backoff_seconds
        self.timeout = timeout or publishing['REQUEST_TIMEOUT_SECONDS']
        self.shopify_api_version = shopify_api_version or publishing['SHOPIFY_API_VERSION']

    async def _with_retries(self, operation, label, idempotent=True):
        """
        Run `operation`, retrying transient failures. Non-idempotent calls
        (creates) are only re-sent when the platform never acted on the first
        request.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except CMSApiError as e:
                if not e.transient or attempt >= self.max_retries:
                    raise
                if not idempotent and e.delivered:
                    logger.warning(f"{label} failed after the request was sent ({e.message}); not re-sending")
                    raise
                delay = self.backoff_seconds * (2 ** attempt)
                attempt += 1
                logger.info(f"{label} failed transiently ({e.message}); retry {attempt} in {delay}s")
                await self.sleep(delay)

    async def _push_wordpress(self, integration, record, article, status):
        client = WordPressClient(
            integration.site_url,
            integration.username,
            integration.application_password,
            timeout=self.timeout,
            transport=self.transport,
        )
        if record.external_id:
            return await self._with_retries(
                lambda: client.update_post(record.external_id, article, status),
                f"WordPress update of post {record.external_id}",
            )
        return await self._with_retries(
            lambda: client.create_post(article, status), "WordPress create", idempotent=False,
        )

    async def _push_shopify(self, integration, record, article, status):
        client = ShopifyClient(
            integration.shop_domain,
            integration.access_token,
            api_version=integration.api_version or self.shopify_api_version,
            timeout=self.timeout,
            transport=self.transport,
        )
        blog_id = await self._with_retries(
            lambda: client.resolve_blog_id(integration.blog_id),
            "Shopify blog lookup",
        )
        if record.external_id:
            return await self._with_retries(
                lambda: client.update_article(blog_id, record.external_id, article, status),
                f"Shopify update of article {record.external_id}",
            )
        return await self._with_retries(
            lambda: client.create_article(blog_id, article, status), "Shopify create", idempotent=False,
        )

    async def sync_article(self, article_id, brand_id, platform) -> SyncResult:
        if platform not in PLATFORMS:
            raise ValueError(f"Unsupported platform: {platform}")

        article = await BlogPost.objects.aget(pk=article_id, brand_id=brand_id)
        integration = await CMSIntegration.objects.filter(
            brand_id=brand_id, platform=platform, is_active=True,
        ).afirst()
        if integration is None:
            logger.warning(f"No active {platform} integration for brand {brand_id}")
            return SyncResult(
                success=False,
                platform=platform,
                error_kind=INTEGRATION_MISSING,
                error=describe(INTEGRATION_MISSING),
            )

        record, _ = await CMSSyncRecord.objects.aget_or_create(article=article, platform=platform)
        if article.status != 'sync_error':
            record.remote_status = article.status
        created = not record.external_id

        record.attempt_count += 1
        record.last_attempt_at = timezone.now()
        push = self._push_wordpress if platform == 'wordpress' else self._push_shopify
        try:
            remote = await push(integration, record, article, record.remote_status)
        except CMSApiError as e:
            error_kind = BLOG_RESOLUTION_ERROR if isinstance(e, BlogResolutionError) else PUBLISH_ERROR
            logger.error(f"Sync of article {article.id} to {platform} failed: {e.message}")
            record.status = 'sync_error'
            record.last_error = e.body or e.message
            await record.asave()
            article.status = 'sync_error'
            await article.asave(update_fields=['status', 'updated_at'])
            return SyncResult(
                success=False,
                platform=platform,
                external_id=record.external_id,
                error_kind=error_kind,
                error=describe(error_kind, e.message),
            )

        record.status = 'synced'
        record.external_id = remote.external_id
        record.external_url = remote.external_url or record.external_url
        record.last_error = ''
        await record.asave()
        if article.status == 'sync_error':
            article.status = record.remote_status
            await article.asave(update_fields=['status', 'updated_at'])

        logger.info(
            f"Article {article.id} {'created' if created else 'updated'} on {platform} "
            f"as {remote.external_id}"
        )
        return SyncResult(
            success=True,
            platform=platform,
            external_id=remote.external_id,
            external_url=record.external_url,
            created=created,
        )


async def sync_article(article_id, brand_id, platform, adapter: Optional[PublishingAdapter] = None) -> SyncResult:
    """Publish an article to one platform; see PublishingAdapter.sync_article."""
    adapter = adapter or PublishingAdapter()
    return await adapter.sync_article(article_id, brand_id, platform)
