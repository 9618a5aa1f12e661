"""
AI provider integration: OpenAI-compatible chat completions.

The client is constructed explicitly (build_generation_client) and handed to
the pipeline; nothing here talks to the network at import time.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

import openai
from django.conf import settings

from .errors import (
    StageError,
    CONFIG_ERROR,
    UPSTREAM_RATE_LIMITED,
    UPSTREAM_PAYMENT_REQUIRED,
    UPSTREAM_AUTH_ERROR,
    UPSTREAM_UNAVAILABLE,
    UPSTREAM_ERROR,
)

logger = logging.getLogger(__name__)


@dataclass
class ModelConfig:
    model: str
    temperature: float = 0.4
    max_tokens: int = 4000
    timeout: float = 60.0
    json_mode: bool = True

    @classmethod
    def from_settings(cls, model: Optional[str] = None, **overrides):
        pipeline = settings.PIPELINE
        config = cls(
            model=model or pipeline['DEFAULT_MODEL'],
            temperature=pipeline['TEMPERATURE'],
            max_tokens=pipeline['MAX_TOKENS'],
            timeout=pipeline['REQUEST_TIMEOUT_SECONDS'],
        )
        for key, value in overrides.items():
            setattr(config, key, value)
        return config


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other):
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass
class Completion:
    content: str
    model: str
    usage: Usage = field(default_factory=Usage)


class GenerationClient:
    """
    Thin async wrapper over the chat completions endpoint.

    Request: {model, system prompt, user prompt}
    Response shape consumed: choices[0].message.content (+ usage when reported)

    Provider failures are raised as StageError with a taxonomy kind.
    """

    def __init__(self, api_key: str, base_url: Optional[str] = None, client=None):
        self.api_key = api_key
        self.base_url = base_url or None
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise StageError(CONFIG_ERROR, 'OPENAI_API_KEY is not set.')
            client_kwargs = {'api_key': self.api_key, 'max_retries': 0}
            if self.base_url:
                client_kwargs['base_url'] = self.base_url
            self._client = openai.AsyncOpenAI(**client_kwargs)
        return self._client

    async def complete(self, system_prompt: str, user_prompt: str, config: ModelConfig) -> Completion:
        request_kwargs = {
            'model': config.model,
            'temperature': config.temperature,
            'max_tokens': config.max_tokens,
            'timeout': config.timeout,
            'messages': [
                {'role': 'system', 'content': system_prompt},
                {'role': 'user', 'content': user_prompt},
            ],
        }
        if config.json_mode:
            request_kwargs['response_format'] = {'type': 'json_object'}

        try:
            response = await self.client.chat.completions.create(**request_kwargs)
        except StageError:
            raise
        except openai.RateLimitError as e:
            raise StageError(UPSTREAM_RATE_LIMITED, raw_response=_error_body(e)) from e
        except openai.AuthenticationError as e:
            raise StageError(UPSTREAM_AUTH_ERROR, raw_response=_error_body(e)) from e
        except openai.APIConnectionError as e:
            # Includes APITimeoutError
            raise StageError(UPSTREAM_UNAVAILABLE, raw_response=str(e)) from e
        except openai.APIStatusError as e:
            raise _status_error(e) from e

        text = ''
        if response.choices:
            text = response.choices[0].message.content or ''
        usage = Usage()
        if getattr(response, 'usage', None):
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )
        return Completion(content=text, model=getattr(response, 'model', None) or config.model, usage=usage)


def _error_body(error) -> str:
    response = getattr(error, 'response', None)
    if response is not None:
        try:
            return response.text
        except Exception:
            return str(error)
    return str(error)


def _status_error(error) -> StageError:
    status_code = getattr(error, 'status_code', None)
    body = _error_body(error)
    if status_code == 402:
        return StageError(UPSTREAM_PAYMENT_REQUIRED, raw_response=body)
    if status_code == 401:
        return StageError(UPSTREAM_AUTH_ERROR, raw_response=body)
    if status_code == 429:
        return StageError(UPSTREAM_RATE_LIMITED, raw_response=body)
    if status_code is not None and status_code >= 500:
        return StageError(UPSTREAM_UNAVAILABLE, raw_response=body)
    logger.error(f"Generation request rejected ({status_code}): {body[:500]}")
    return StageError(UPSTREAM_ERROR, f"Provider returned HTTP {status_code}.", raw_response=body)


def build_generation_client() -> GenerationClient:
    """Create the generation client from Django settings."""
    return GenerationClient(
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.OPENAI_BASE_URL,
    )
