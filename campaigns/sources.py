"""
Source acquisition batch runner.

Sources are scraped and analysed in batches: concurrent inside a batch,
sequential across batches with a pause in between. Each source is isolated;
whatever happens to one never changes the outcome of its siblings.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from django.conf import settings

from ai.providers import ModelConfig, Usage
from ai.stages import run_stage

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 2000
PARTIAL_EXCERPT_LENGTH = 500
INSUFFICIENT_CONTENT = 'insufficient content'


@dataclass
class SourceResult:
    url: str
    status: str
    title: str = ''
    description: str = ''
    content_excerpt: str = ''
    insights: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    model: str = ''
    usage: Usage = field(default_factory=Usage)

    @property
    def is_usable(self):
        return self.status in ('success', 'partial')

    def as_payload(self):
        return {
            'url': self.url,
            'title': self.title,
            'status': self.status,
            'insights': self.insights,
            'error': self.error,
        }


async def _process_source(source, keyword_context, scraper, generator, model_config, min_length) -> SourceResult:
    url = source['url']
    title = source.get('title') or ''

    page = await scraper.scrape(url)
    if not page.success:
        return SourceResult(url=url, status='failed', title=title, error=page.error or 'scrape failed')

    content = (page.markdown or '').strip()
    if len(content) < min_length:
        return SourceResult(url=url, status='failed', title=page.title or title, error=INSUFFICIENT_CONTENT)

    excerpt = content[:EXCERPT_LENGTH]
    analysis = await run_stage(
        'source_analysis',
        {
            'url': url,
            'title': page.title or title,
            'keywords': keyword_context,
            'content': excerpt,
        },
        model_config,
        client=generator,
    )
    if not analysis.success:
        logger.info(f"Analysis failed for {url} ({analysis.error_kind}); keeping reduced excerpt")
        return SourceResult(
            url=url,
            status='partial',
            title=page.title or title,
            description=page.description,
            content_excerpt=excerpt[:PARTIAL_EXCERPT_LENGTH],
            error=analysis.error_message,
            model=analysis.model,
            usage=Usage(),
        )

    return SourceResult(
        url=url,
        status='success',
        title=page.title or title,
        description=page.description,
        content_excerpt=excerpt,
        insights=analysis.payload,
        model=analysis.model,
        usage=analysis.usage,
    )


async def _isolated(source, *args) -> SourceResult:
    try:
        return await _process_source(source, *args)
    except Exception as e:
        logger.warning(f"Source {source.get('url')} failed: {e}")
        return SourceResult(url=source.get('url', ''), status='failed', title=source.get('title') or '', error=str(e))


async def fetch_and_analyze_sources(
    sources: List[dict],
    keyword_context,
    *,
    scraper,
    generator,
    model_config: Optional[ModelConfig] = None,
    batch_size: Optional[int] = None,
    pause_seconds: Optional[float] = None,
    sleep=asyncio.sleep,
) -> List[SourceResult]:
    """
    Scrape and analyse every source; results come back in input order.
    The caller decides whether the aggregate is good enough to continue.
    """
    pipeline = settings.PIPELINE
    batch_size = batch_size or pipeline['SOURCE_BATCH_SIZE']
    if pause_seconds is None:
        pause_seconds = pipeline['SOURCE_BATCH_PAUSE_SECONDS']
    min_length = pipeline['MIN_SOURCE_CONTENT_LENGTH']

    results: List[SourceResult] = []
    for start in range(0, len(sources), batch_size):
        if start:
            await sleep(pause_seconds)
        batch = sources[start:start + batch_size]
        batch_results = await asyncio.gather(*[
            _isolated(source, keyword_context, scraper, generator, model_config, min_length)
            for source in batch
        ])
        results.extend(batch_results)
        logger.info(
            f"Source batch {start // batch_size + 1}: "
            f"{sum(1 for r in batch_results if r.is_usable)}/{len(batch)} usable"
        )
    return results


def total_usage(results: List[SourceResult]) -> Usage:
    usage = Usage()
    for result in results:
        usage = usage + result.usage
    return usage


def summarize(results: List[SourceResult]) -> dict:
    """Counts plus per-source errors, stored on the source_discovery artifact."""
    return {
        'total': len(results),
        'success': sum(1 for r in results if r.status == 'success'),
        'partial': sum(1 for r in results if r.status == 'partial'),
        'failed': sum(1 for r in results if r.status == 'failed'),
        'errors': [{'url': r.url, 'error': r.error} for r in results if r.status == 'failed'],
    }
