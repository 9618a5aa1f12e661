"""
Stage processor: one generation call per pipeline stage.

run_stage builds the prompts for a stage, calls the generation client, and
recovers a structured payload from the response. It has no persistence side
effects and never raises: every outcome is a StageResult, tagged either as a
success or with an error kind from ai.errors.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from . import prompts
from .errors import StageError, PARSE_ERROR, describe
from .parsing import parse_model_json
from .providers import GenerationClient, ModelConfig, Usage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageShape:
    """Top-level keys a stage payload must carry."""
    required: Tuple[str, ...]
    # A bare JSON list returned by the model is wrapped under this key
    list_key: Optional[str] = None


STAGE_SHAPES: Dict[str, StageShape] = {
    'keyword_research': StageShape(required=('keywords',), list_key='keywords'),
    'content_strategy': StageShape(required=('search_terms', 'topics')),
    'source_discovery': StageShape(required=('sources',), list_key='sources'),
    'source_analysis': StageShape(required=('key_insights',)),
    'context_aggregation': StageShape(required=('strategy',)),
    'writing': StageShape(required=('title', 'content', 'outline')),
    'humanization': StageShape(required=('voice_profile', 'content')),
    'review': StageShape(required=('title', 'content', 'meta_description')),
    'meta_description': StageShape(required=('meta_description',)),
}


@dataclass
class StageResult:
    stage: str
    success: bool
    payload: Any = None
    model: str = ''
    raw_response: str = ''
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    usage: Usage = field(default_factory=Usage)
    attempts: int = 0

    @classmethod
    def failure(cls, stage, error_kind, message=None, raw_response='', model='', usage=None, attempts=0):
        return cls(
            stage=stage,
            success=False,
            error_kind=error_kind,
            error_message=message or describe(error_kind),
            raw_response=raw_response or '',
            model=model,
            usage=usage or Usage(),
            attempts=attempts,
        )


def normalize_payload(stage_name: str, value: Any):
    """
    Coerce a parsed value into the stage's payload shape.
    Returns (payload, error); error is None when the shape checks out.
    """
    shape = STAGE_SHAPES[stage_name]
    if isinstance(value, list) and shape.list_key:
        value = {shape.list_key: value}
    if not isinstance(value, dict):
        return None, f"expected a JSON object, got {type(value).__name__}"
    missing = [key for key in shape.required if key not in value]
    if missing:
        return None, f"missing keys: {', '.join(missing)}"
    return value, None


async def run_stage(
    stage_name: str,
    stage_input: dict,
    model_config: Optional[ModelConfig] = None,
    *,
    client: GenerationClient,
) -> StageResult:
    """
    Run one stage against the generation service.

    A response that cannot be parsed into the stage's shape gets exactly one
    stricter re-prompt; a second failure is returned as parse_error with the
    raw response attached.
    """
    if stage_name not in STAGE_SHAPES:
        raise ValueError(f"Unknown stage: {stage_name}")

    config = model_config or ModelConfig.from_settings()
    system_prompt, user_prompt = prompts.build_prompts(stage_name, stage_input)
    usage = Usage()
    raw_response = ''
    model = config.model

    for attempt in (1, 2):
        try:
            completion = await client.complete(system_prompt, user_prompt, config)
        except StageError as e:
            logger.warning(f"Stage {stage_name} failed on attempt {attempt}: {e.error_kind}")
            return StageResult.failure(
                stage_name, e.error_kind, e.message,
                raw_response=e.raw_response or raw_response,
                model=model, usage=usage, attempts=attempt,
            )

        usage = usage + completion.usage
        raw_response = completion.content
        model = completion.model

        outcome = parse_model_json(raw_response)
        error = outcome.error
        if outcome.ok:
            payload, error = normalize_payload(stage_name, outcome.value)
            if error is None:
                if outcome.strategy != 'direct':
                    logger.info(f"Stage {stage_name} payload recovered via {outcome.strategy}")
                return StageResult(
                    stage=stage_name,
                    success=True,
                    payload=payload,
                    model=model,
                    raw_response=raw_response,
                    usage=usage,
                    attempts=attempt,
                )

        logger.warning(f"Stage {stage_name} returned unparseable output (attempt {attempt}): {error}")
        user_prompt = prompts.strict_retry_prompt(user_prompt, raw_response, error)

    return StageResult.failure(
        stage_name, PARSE_ERROR, describe(PARSE_ERROR, error),
        raw_response=raw_response, model=model, usage=usage, attempts=2,
    )
