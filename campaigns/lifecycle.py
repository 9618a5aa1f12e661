"""
Campaign state machine.

keyword_research -> content_strategy -> source_discovery -> writing
-> humanization -> review -> completed, with failed reachable from any
non-completed state.

Campaign state is always derived from the successful StageArtifacts: the next
stage is the first one without a successful artifact, and progress counts the
stages that have one. Nothing here talks to external services.
"""
import logging
from typing import Optional

from django.db import transaction
from django.db.models import Max
from django.utils import timezone

from .models import Campaign, StageArtifact

logger = logging.getLogger(__name__)

STAGES = [
    'keyword_research',
    'content_strategy',
    'source_discovery',
    'writing',
    'humanization',
    'review',
]


class InvalidTransition(Exception):
    """Raised when a campaign is asked to move somewhere its state does not allow."""

    def __init__(self, message, campaign_id=None, stage=None):
        self.message = message
        self.campaign_id = campaign_id
        self.stage = stage
        super().__init__(message)


class StageOrderError(InvalidTransition):
    """A stage was requested before all of the stages ahead of it succeeded."""


def compute_progress(completed_count: int) -> int:
    return (100 * completed_count) // len(STAGES)


def successful_stages(campaign) -> set:
    return set(
        StageArtifact.objects
        .filter(campaign=campaign, success=True, stage__in=STAGES)
        .values_list('stage', flat=True)
        .distinct()
    )


def next_stage(campaign) -> Optional[str]:
    """First stage in order without a successful artifact; None when all succeeded."""
    done = successful_stages(campaign)
    for stage in STAGES:
        if stage not in done:
            return stage
    return None


def latest_artifact(campaign, stage, successful_only=True) -> Optional[StageArtifact]:
    queryset = StageArtifact.objects.filter(campaign=campaign, stage=stage)
    if successful_only:
        queryset = queryset.filter(success=True)
    return queryset.order_by('-version').first()


def latest_payload(campaign, stage) -> Optional[dict]:
    """Payload of the newest successful artifact for a stage, if any."""
    artifact = latest_artifact(campaign, stage)
    if artifact is None:
        return None
    return artifact.payload


def check_transition(campaign, stage, force=False):
    """
    Raise unless running `stage` now is legal.

    The next stage is always legal. With force=True a stage that already
    succeeded may be run again (it gets a new artifact version); anything
    further ahead is out of order.
    """
    if stage not in STAGES:
        raise InvalidTransition(f"Unknown stage: {stage}", campaign.id, stage)
    if campaign.is_archived:
        raise InvalidTransition("Campaign is archived", campaign.id, stage)
    if campaign.status == 'completed':
        raise InvalidTransition("Campaign is already completed", campaign.id, stage)
    if campaign.status == 'failed':
        raise InvalidTransition("Campaign has failed; resume it before running stages", campaign.id, stage)

    expected = next_stage(campaign)
    if stage == expected:
        return
    if force and stage in successful_stages(campaign):
        return
    if stage in successful_stages(campaign):
        raise StageOrderError(
            f"Stage {stage} already succeeded; pass force to run it again",
            campaign.id, stage,
        )
    raise StageOrderError(f"Stage {stage} cannot run before {expected}", campaign.id, stage)


def _next_version(campaign, stage) -> int:
    current = (
        StageArtifact.objects
        .filter(campaign=campaign, stage=stage)
        .aggregate(v=Max('version'))['v']
    )
    return (current or 0) + 1


def _sync_state(campaign):
    """Recompute status/current_step/progress from the successful artifacts."""
    done = successful_stages(campaign)
    upcoming = next_stage(campaign)
    if upcoming is None:
        campaign.status = 'completed'
        campaign.current_step = STAGES[-1]
        campaign.progress = 100
    else:
        campaign.status = upcoming
        campaign.current_step = upcoming
        campaign.progress = compute_progress(len(done))
    campaign.error_message = None


def record_success(campaign, stage, result, cost_usd=0) -> StageArtifact:
    """
    Persist a successful stage result as a new artifact version and advance.
    `result` is an ai.stages.StageResult (or anything with the same fields).
    """
    if stage not in STAGES and stage != 'meta_description':
        raise InvalidTransition(f"Unknown stage: {stage}", campaign.id, stage)
    if campaign.status == 'completed' and stage in STAGES:
        raise InvalidTransition("Campaign is already completed", campaign.id, stage)

    usage = result.usage
    with transaction.atomic():
        artifact = StageArtifact.objects.create(
            campaign=campaign,
            stage=stage,
            version=_next_version(campaign, stage),
            success=True,
            payload=result.payload,
            raw_response=result.raw_response or '',
            model=result.model or '',
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            cost_usd=cost_usd,
        )
        if stage in STAGES:
            _sync_state(campaign)
            campaign.clean()
            campaign.save(update_fields=['status', 'current_step', 'progress', 'error_message', 'updated_at'])

    logger.info(
        f"Campaign {campaign.id}: {stage} v{artifact.version} succeeded; "
        f"status={campaign.status} progress={campaign.progress}"
    )
    return artifact


def record_failure(campaign, stage, error_kind, message, raw_response='', result=None) -> StageArtifact:
    """
    Persist a failed attempt and mark the campaign failed.
    Earlier artifacts, successful or not, are left untouched.
    """
    if campaign.status == 'completed' and stage in STAGES:
        raise InvalidTransition("Campaign is already completed", campaign.id, stage)

    usage = getattr(result, 'usage', None)
    with transaction.atomic():
        artifact = StageArtifact.objects.create(
            campaign=campaign,
            stage=stage,
            version=_next_version(campaign, stage),
            success=False,
            raw_response=raw_response or '',
            error_kind=error_kind or '',
            error_message=message or '',
            model=getattr(result, 'model', '') or '',
            prompt_tokens=getattr(usage, 'prompt_tokens', 0),
            completion_tokens=getattr(usage, 'completion_tokens', 0),
            total_tokens=getattr(usage, 'total_tokens', 0),
        )
        if stage in STAGES:
            campaign.status = 'failed'
            campaign.current_step = stage
            campaign.error_message = message or error_kind
            campaign.save(update_fields=['status', 'current_step', 'error_message', 'updated_at'])

    logger.warning(f"Campaign {campaign.id}: {stage} v{artifact.version} failed ({error_kind}): {message}")
    return artifact


def mark_failed(campaign, message=None):
    """Operator abort. No further stages run until the campaign is resumed."""
    if campaign.status == 'completed':
        raise InvalidTransition("Campaign is already completed", campaign.id)
    campaign.status = 'failed'
    campaign.error_message = message or 'Marked as failed by operator.'
    campaign.save(update_fields=['status', 'error_message', 'updated_at'])
    logger.info(f"Campaign {campaign.id} marked failed: {campaign.error_message}")
    return campaign


def clear_failure(campaign):
    """Return a failed campaign to its next stage so it can run again."""
    if campaign.is_archived:
        raise InvalidTransition("Campaign is archived", campaign.id)
    if campaign.status == 'completed':
        raise InvalidTransition("Campaign is already completed", campaign.id)
    if campaign.status != 'failed':
        return campaign
    _sync_state(campaign)
    campaign.save(update_fields=['status', 'current_step', 'progress', 'error_message', 'updated_at'])
    return campaign


def archive(campaign):
    """Soft delete; campaigns are never removed."""
    if not campaign.is_archived:
        campaign.is_archived = True
        campaign.archived_at = timezone.now()
        campaign.save(update_fields=['is_archived', 'archived_at', 'updated_at'])
    return campaign


def create_campaign(user, brand, **fields) -> Campaign:
    """Quick setup: a new campaign waiting on keyword_research."""
    campaign = Campaign(user=user, brand=brand, **fields)
    campaign.full_clean()
    campaign.save()
    logger.info(f"Campaign {campaign.id} created for brand {brand.id}")
    return campaign
