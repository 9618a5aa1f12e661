"""
Pipeline orchestrator.

Runs one campaign stage at a time: order check, balance pre-check, the stage
call(s), persistence through the state machine and, on success only, the
charge for actual usage. Clients are injected; build_pipeline() wires the
production ones from settings.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional
from urllib.parse import urlparse

from asgiref.sync import sync_to_async
from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.html import strip_tags

from ai.errors import INSUFFICIENT_BALANCE, SOURCE_FETCH_ERROR, describe
from ai.providers import ModelConfig, build_generation_client
from ai.stages import StageResult, run_stage as run_model_stage
from billing.pricing import stage_cost_estimate
from billing.quota import QuotaGate
from . import lifecycle
from .models import BlogPost, Campaign, Source, clamp_meta_description
from .scraping import build_scraper
from .sources import fetch_and_analyze_sources, summarize, total_usage

logger = logging.getLogger(__name__)

# Stages that produce long-form copy run on the writing model
WRITING_STAGES = ('writing', 'humanization', 'review')


@dataclass
class StageOutcome:
    """What happened when the orchestrator ran a stage."""
    stage: str
    success: bool
    campaign_id: Optional[int] = None
    article_id: Optional[int] = None
    artifact_id: Optional[int] = None
    status: Optional[str] = None
    progress: Optional[int] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    charge: dict = field(default_factory=dict)
    payload: Optional[dict] = None

    def to_dict(self):
        return {
            'stage': self.stage,
            'success': self.success,
            'campaign_id': self.campaign_id,
            'article_id': self.article_id,
            'artifact_id': self.artifact_id,
            'status': self.status,
            'progress': self.progress,
            'error': self.error_kind,
            'message': self.error_message,
            'charge': self.charge,
        }


def _valid_url(url) -> bool:
    if not isinstance(url, str):
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def _keyword_list(keyword_payload) -> List[str]:
    """Plain keyword strings from a keyword_research payload."""
    keywords = []
    for item in (keyword_payload or {}).get('keywords', []):
        if isinstance(item, dict):
            value = item.get('keyword') or item.get('term')
        else:
            value = item
        if value and str(value).strip():
            keywords.append(str(value).strip())
    return keywords


def _first_topic(strategy_payload) -> dict:
    topics = (strategy_payload or {}).get('topics') or []
    if topics and isinstance(topics[0], dict):
        return topics[0]
    if topics:
        return {'title': str(topics[0])}
    return {}


class CampaignPipeline:
    def __init__(self, generator, scraper, gate: QuotaGate, sleep=asyncio.sleep):
        self.generator = generator
        self.scraper = scraper
        self.gate = gate
        self.sleep = sleep

    def model_config(self, stage) -> ModelConfig:
        if stage in WRITING_STAGES:
            return ModelConfig.from_settings(settings.PIPELINE['WRITING_MODEL'])
        return ModelConfig.from_settings()

    # -- stage inputs ---------------------------------------------------

    def _stage_input(self, campaign, stage) -> dict:
        brand_context = campaign.brand.as_prompt_context()
        base = {
            'brand_context': brand_context,
            'country': campaign.target_country,
            'language': campaign.language,
        }
        if stage == 'keyword_research':
            return {
                **base,
                'website_url': campaign.website_url,
                'seed_keywords': list(campaign.keywords or []),
            }

        keyword_payload = lifecycle.latest_payload(campaign, 'keyword_research')
        if stage == 'content_strategy':
            return {
                **base,
                'keywords': (keyword_payload or {}).get('keywords', []),
                'target_article_count': campaign.target_article_count,
            }

        strategy_payload = lifecycle.latest_payload(campaign, 'content_strategy') or {}
        topic = _first_topic(strategy_payload)
        keywords = [k for k in [topic.get('primary_keyword')] + list(topic.get('secondary_keywords') or []) if k]
        keywords = keywords or _keyword_list(keyword_payload)
        if stage == 'source_discovery':
            return {
                **base,
                'search_terms': strategy_payload.get('search_terms', []),
                'topic': topic,
                'max_sources': settings.PIPELINE['MAX_SOURCES'],
            }

        sources_payload = lifecycle.latest_payload(campaign, 'source_discovery') or {}
        writing_payload = lifecycle.latest_payload(campaign, 'writing') or {}
        if stage == 'writing':
            return {
                **base,
                'topic': topic,
                'keywords': keywords,
                'strategy': sources_payload.get('strategy', {}),
                'article_length': campaign.article_length,
            }
        if stage == 'humanization':
            return {
                **base,
                'title': writing_payload.get('title', ''),
                'content': writing_payload.get('content', ''),
                'keywords': keywords,
            }

        humanized_payload = lifecycle.latest_payload(campaign, 'humanization') or {}
        if stage == 'review':
            return {
                **base,
                'title': writing_payload.get('title', ''),
                'content': humanized_payload.get('content') or writing_payload.get('content', ''),
                'meta_description': writing_payload.get('meta_description', ''),
                'keywords': writing_payload.get('keywords') or keywords,
            }
        raise ValueError(f"No input wiring for stage {stage}")

    # -- persistence (sync, run through sync_to_async) -------------------

    def _persist_success(self, campaign, stage, result, cost_usd):
        artifact = lifecycle.record_success(campaign, stage, result, cost_usd=cost_usd)
        article = None
        if stage == 'review':
            article = self._upsert_article(campaign, result.payload)
        return artifact, article

    def _upsert_article(self, campaign, review_payload) -> BlogPost:
        writing_payload = lifecycle.latest_payload(campaign, 'writing') or {}
        keywords = review_payload.get('keywords') or writing_payload.get('keywords') or []
        fields = {
            'title': review_payload.get('title') or writing_payload.get('title') or 'Untitled',
            'content': review_payload.get('content', ''),
            'meta_description': clamp_meta_description(
                review_payload.get('meta_description') or writing_payload.get('meta_description')
            ),
            'keywords': [str(k) for k in keywords if k],
        }
        article = BlogPost.objects.filter(campaign=campaign).order_by('created_at').first()
        if article is None:
            article = BlogPost(campaign=campaign, brand=campaign.brand, status='draft')
        for name, value in fields.items():
            setattr(article, name, value)
        article.save()
        logger.info(f"Campaign {campaign.id}: article {article.id} saved from review")
        return article

    @transaction.atomic
    def _save_sources(self, campaign, results):
        now = timezone.now()
        # Only the latest discovery attempt's sources stay attached
        stale = Source.objects.filter(campaign=campaign).exclude(url__in=[r.url for r in results])
        removed, _ = stale.delete()
        if removed:
            logger.info(f"Removed {removed} stale sources from campaign {campaign.id}")
        for result in results:
            Source.objects.update_or_create(
                campaign=campaign,
                url=result.url,
                defaults={
                    'title': result.title[:500],
                    'description': result.description,
                    'status': result.status,
                    'content_excerpt': result.content_excerpt,
                    'insights': result.insights or {},
                    'error': result.error or '',
                    'fetched_at': now,
                },
            )

    # -- running --------------------------------------------------------

    async def _load_campaign(self, campaign_id) -> Campaign:
        return await Campaign.objects.select_related('brand').aget(pk=campaign_id)

    async def _fail(self, campaign, stage, error_kind, message, raw_response='', result=None, charge=None):
        artifact = await sync_to_async(lifecycle.record_failure)(
            campaign, stage, error_kind, message, raw_response=raw_response, result=result,
        )
        return StageOutcome(
            stage=stage,
            success=False,
            campaign_id=campaign.id,
            artifact_id=artifact.id,
            status=campaign.status,
            progress=campaign.progress,
            error_kind=error_kind,
            error_message=message,
            charge=charge or {},
        )

    async def _run_source_discovery(self, campaign, stage_input) -> StageResult:
        config = self.model_config('source_discovery')
        discovery = await run_model_stage('source_discovery', stage_input, config, client=self.generator)
        if not discovery.success:
            return discovery

        proposed, seen = [], set()
        for item in discovery.payload.get('sources') or []:
            url = item.get('url') if isinstance(item, dict) else item
            if not _valid_url(url):
                continue
            url = url.strip()
            if url not in seen:
                seen.add(url)
                proposed.append({'url': url, 'title': item.get('title', '') if isinstance(item, dict) else ''})
        proposed = proposed[:settings.PIPELINE['MAX_SOURCES']]

        keyword_context = {
            'search_terms': stage_input.get('search_terms', []),
            'topic': stage_input.get('topic', {}),
        }
        results = await fetch_and_analyze_sources(
            proposed, keyword_context,
            scraper=self.scraper,
            generator=self.generator,
            model_config=config,
            sleep=self.sleep,
        )
        await sync_to_async(self._save_sources)(campaign, results)
        usage = discovery.usage + total_usage(results)
        summary = summarize(results)

        usable = [r for r in results if r.is_usable]
        if not usable:
            return StageResult.failure(
                'source_discovery',
                SOURCE_FETCH_ERROR,
                describe(SOURCE_FETCH_ERROR, f"{summary['failed']} of {summary['total']} sources failed"),
                raw_response=discovery.raw_response,
                model=discovery.model,
                usage=usage,
            )

        aggregation = await run_model_stage(
            'context_aggregation',
            {
                'brand_context': stage_input['brand_context'],
                'topic': stage_input.get('topic', {}),
                'search_terms': stage_input.get('search_terms', []),
                'sources': [
                    {'url': r.url, 'title': r.title, 'insights': r.insights, 'excerpt': r.content_excerpt[:500]}
                    for r in usable
                ],
            },
            config,
            client=self.generator,
        )
        usage = usage + aggregation.usage
        if not aggregation.success:
            aggregation.usage = usage
            aggregation.stage = 'source_discovery'
            return aggregation

        return StageResult(
            stage='source_discovery',
            success=True,
            payload={
                'sources': [r.as_payload() for r in results],
                'summary': summary,
                'strategy': aggregation.payload['strategy'],
            },
            model=aggregation.model,
            raw_response=aggregation.raw_response,
            usage=usage,
            attempts=discovery.attempts + aggregation.attempts,
        )

    async def run_stage(self, campaign_id, stage, force=False) -> StageOutcome:
        """
        Run one stage. Raises lifecycle.InvalidTransition / StageOrderError when the
        stage is not allowed right now; every other failure is returned as a
        StageOutcome and recorded on the campaign.
        """
        campaign = await self._load_campaign(campaign_id)
        await sync_to_async(lifecycle.check_transition)(campaign, stage, force)

        estimate = stage_cost_estimate(stage)
        check = await self.gate.acheck(campaign.user_id, estimate)
        if not check.success:
            message = describe(
                INSUFFICIENT_BALANCE,
                f"balance ${check.current_balance}, this step needs ${check.tokens_needed}",
            )
            return await self._fail(campaign, stage, INSUFFICIENT_BALANCE, message, charge=check.to_dict())

        logger.info(f"Campaign {campaign.id}: running {stage}")
        stage_input = await sync_to_async(self._stage_input)(campaign, stage)
        if stage == 'source_discovery':
            result = await self._run_source_discovery(campaign, stage_input)
        else:
            result = await run_model_stage(stage, stage_input, self.model_config(stage), client=self.generator)

        if not result.success:
            return await self._fail(
                campaign, stage, result.error_kind, result.error_message,
                raw_response=result.raw_response, result=result,
            )

        charge = await self.gate.acharge_for_stage(
            campaign.user_id, stage, result.model,
            usage=result.usage, brand_id=campaign.brand_id, campaign_id=campaign.id,
        )
        if not charge.success:
            # Balance dropped between the pre-check and now; the work is kept.
            logger.warning(
                f"Campaign {campaign.id}: {stage} succeeded but charge of ${charge.cost_usd} failed "
                f"(balance ${charge.current_balance})"
            )
        cost = charge.cost_usd if charge.success else Decimal('0')

        artifact, article = await sync_to_async(self._persist_success)(campaign, stage, result, cost)
        return StageOutcome(
            stage=stage,
            success=True,
            campaign_id=campaign.id,
            article_id=article.id if article else None,
            artifact_id=artifact.id,
            status=campaign.status,
            progress=campaign.progress,
            charge=charge.to_dict(),
            payload=result.payload,
        )

    async def run_next_stage(self, campaign_id) -> StageOutcome:
        """Run the first stage without a successful artifact."""
        campaign = await self._load_campaign(campaign_id)
        stage = await sync_to_async(lifecycle.next_stage)(campaign)
        if stage is None:
            raise lifecycle.InvalidTransition("Campaign is already completed", campaign.id)
        return await self.run_stage(campaign_id, stage)

    async def resume(self, campaign_id) -> StageOutcome:
        """Clear a failure and re-run only the next unfinished stage."""
        campaign = await self._load_campaign(campaign_id)
        await sync_to_async(lifecycle.clear_failure)(campaign)
        logger.info(f"Campaign {campaign.id}: resuming at {campaign.current_step}")
        return await self.run_next_stage(campaign_id)

    async def run_to_completion(self, campaign_id) -> List[StageOutcome]:
        outcomes = []
        while True:
            outcome = await self.run_next_stage(campaign_id)
            outcomes.append(outcome)
            if not outcome.success or outcome.status == 'completed':
                return outcomes

    async def generate_meta_description(self, article_id) -> StageOutcome:
        """Regenerate an article's meta description (metered separately)."""
        stage = 'meta_description'
        article = await BlogPost.objects.select_related('brand', 'campaign').aget(pk=article_id)
        user_id = article.brand.user_id

        estimate = stage_cost_estimate(stage)
        check = await self.gate.acheck(user_id, estimate)
        if not check.success:
            return StageOutcome(
                stage=stage,
                success=False,
                article_id=article.id,
                error_kind=INSUFFICIENT_BALANCE,
                error_message=describe(INSUFFICIENT_BALANCE),
                charge=check.to_dict(),
            )

        primary = article.keywords[0] if article.keywords else ''
        result = await run_model_stage(
            stage,
            {
                'title': article.title,
                'primary_keyword': primary,
                'keywords': article.keywords,
                'brand_name': article.brand.name,
                'content_excerpt': strip_tags(article.content)[:1500],
            },
            self.model_config(stage),
            client=self.generator,
        )
        if not result.success:
            if article.campaign is not None:
                await sync_to_async(lifecycle.record_failure)(
                    article.campaign, stage, result.error_kind, result.error_message,
                    raw_response=result.raw_response, result=result,
                )
            return StageOutcome(
                stage=stage,
                success=False,
                article_id=article.id,
                error_kind=result.error_kind,
                error_message=result.error_message,
            )

        charge = await self.gate.acharge_for_stage(
            user_id, stage, result.model, usage=result.usage,
            brand_id=article.brand_id, campaign_id=article.campaign_id,
        )
        article.meta_description = clamp_meta_description(str(result.payload.get('meta_description') or ''))
        await article.asave(update_fields=['meta_description', 'updated_at'])

        artifact = None
        if article.campaign is not None:
            artifact = await sync_to_async(lifecycle.record_success)(
                article.campaign, stage, result,
                cost_usd=charge.cost_usd if charge.success else Decimal('0'),
            )
        return StageOutcome(
            stage=stage,
            success=True,
            article_id=article.id,
            campaign_id=article.campaign_id,
            artifact_id=artifact.id if artifact else None,
            charge=charge.to_dict(),
            payload={'meta_description': article.meta_description},
        )


def build_pipeline() -> CampaignPipeline:
    """Wire the pipeline with production clients from settings."""
    return CampaignPipeline(
        generator=build_generation_client(),
        scraper=build_scraper(),
        gate=QuotaGate(),
    )
