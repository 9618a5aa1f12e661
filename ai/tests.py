"""
Tests for the ai app - response parsing, provider error mapping and the stage processor.
"""
from types import SimpleNamespace

import httpx
import openai
import pytest
from asgiref.sync import async_to_sync

from ai import errors
from ai.parsing import parse_model_json, parse_bracket_scan, parse_fenced_block
from ai.prompts import build_prompts, BUILDERS
from ai.providers import Completion, GenerationClient, ModelConfig, Usage
from ai.stages import STAGE_SHAPES, run_stage


class FakeGenerationClient:
    """Returns queued responses; an exception in the queue is raised instead."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def complete(self, system_prompt, user_prompt, config):
        self.calls.append({'system': system_prompt, 'user': user_prompt, 'model': config.model})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return Completion(content=item, model=config.model, usage=Usage(100, 50, 150))


@pytest.fixture
def model_config():
    return ModelConfig(model='test-model', temperature=0.0, max_tokens=100, timeout=5)


def _request():
    return httpx.Request('POST', 'https://api.example.com/v1/chat/completions')


def _status_exception(cls, status_code):
    response = httpx.Response(status_code, request=_request(), text='{"error": "nope"}')
    return cls('nope', response=response, body=None)


def _raising_client(exc):
    async def create(**kwargs):
        raise exc
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


class TestParsing:

    def test_direct_json(self):
        outcome = parse_model_json('{"keywords": ["a", "b"]}')
        assert outcome.ok
        assert outcome.strategy == 'direct'
        assert outcome.value == {'keywords': ['a', 'b']}

    def test_fenced_block_matches_unwrapped(self):
        payload = '{"title": "Hello", "content": "<p>x</p>"}'
        fenced = f"Here is the article:\n```json\n{payload}\n```\nThanks!"
        assert parse_model_json(fenced).value == parse_model_json(payload).value
        assert parse_model_json(fenced).strategy == 'fenced_block'

    def test_fence_without_language_tag(self):
        outcome = parse_fenced_block("```\n[1, 2, 3]\n```")
        assert outcome.ok
        assert outcome.value == [1, 2, 3]

    def test_bracket_scan_embedded_in_prose(self):
        outcome = parse_model_json('Sure! The result is {"a": {"b": [1, 2]}} as requested.')
        assert outcome.ok
        assert outcome.strategy == 'bracket_scan'
        assert outcome.value == {'a': {'b': [1, 2]}}

    def test_bracket_scan_respects_strings(self):
        text = 'prefix {"text": "a } inside [ string", "n": 1} suffix'
        outcome = parse_bracket_scan(text)
        assert outcome.ok
        assert outcome.value == {'text': 'a } inside [ string', 'n': 1}

    def test_bracket_scan_skips_unbalanced_candidates(self):
        outcome = parse_bracket_scan('[oops { "ok": true }')
        assert outcome.ok
        assert outcome.value == {'ok': True}

    def test_unparseable_text_never_raises(self):
        outcome = parse_model_json('I cannot help with that.')
        assert not outcome.ok
        assert 'direct' in outcome.error

    def test_empty_response(self):
        assert not parse_model_json('').ok
        assert not parse_model_json(None).ok


class TestPrompts:

    def test_every_stage_has_a_builder(self):
        assert set(BUILDERS) == set(STAGE_SHAPES)

    def test_context_block_carries_input(self):
        system, user = build_prompts('keyword_research', {
            'website_url': 'https://shop.example.com',
            'country': 'US',
            'language': 'en',
        })
        assert 'SEO' in system
        assert '<context>' in user
        assert 'https://shop.example.com' in user


class TestGenerationClient:

    def test_missing_api_key_is_config_error(self, model_config):
        client = GenerationClient(api_key='')
        with pytest.raises(errors.StageError) as exc_info:
            async_to_sync(client.complete)('s', 'u', model_config)
        assert exc_info.value.error_kind == errors.CONFIG_ERROR

    @pytest.mark.parametrize('exc, kind', [
        (_status_exception(openai.RateLimitError, 429), errors.UPSTREAM_RATE_LIMITED),
        (_status_exception(openai.AuthenticationError, 401), errors.UPSTREAM_AUTH_ERROR),
        (_status_exception(openai.APIStatusError, 402), errors.UPSTREAM_PAYMENT_REQUIRED),
        (_status_exception(openai.InternalServerError, 503), errors.UPSTREAM_UNAVAILABLE),
        (_status_exception(openai.BadRequestError, 400), errors.UPSTREAM_ERROR),
        (openai.APITimeoutError(request=_request()), errors.UPSTREAM_UNAVAILABLE),
        (openai.APIConnectionError(request=_request()), errors.UPSTREAM_UNAVAILABLE),
    ])
    def test_provider_errors_are_mapped(self, model_config, exc, kind):
        client = GenerationClient(api_key='sk-test', client=_raising_client(exc))
        with pytest.raises(errors.StageError) as exc_info:
            async_to_sync(client.complete)('s', 'u', model_config)
        assert exc_info.value.error_kind == kind
        assert exc_info.value.message

    def test_completion_usage_is_read(self, model_config):
        async def create(**kwargs):
            assert kwargs['response_format'] == {'type': 'json_object'}
            return SimpleNamespace(
                model='test-model-2024',
                choices=[SimpleNamespace(message=SimpleNamespace(content='{"a": 1}'))],
                usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
            )
        fake = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        client = GenerationClient(api_key='sk-test', client=fake)

        completion = async_to_sync(client.complete)('s', 'u', model_config)

        assert completion.content == '{"a": 1}'
        assert completion.model == 'test-model-2024'
        assert completion.usage.total_tokens == 15


class TestRunStage:

    def test_success(self, model_config):
        client = FakeGenerationClient('{"keywords": [{"keyword": "running shoes"}]}')

        result = async_to_sync(run_stage)('keyword_research', {}, model_config, client=client)

        assert result.success
        assert result.payload['keywords'][0]['keyword'] == 'running shoes'
        assert result.model == 'test-model'
        assert result.attempts == 1
        assert result.usage.total_tokens == 150

    def test_bare_list_is_wrapped(self, model_config):
        client = FakeGenerationClient('[{"keyword": "a"}, {"keyword": "b"}]')

        result = async_to_sync(run_stage)('keyword_research', {}, model_config, client=client)

        assert result.success
        assert len(result.payload['keywords']) == 2

    def test_reprompts_once_then_succeeds(self, model_config):
        client = FakeGenerationClient('not json at all', '{"meta_description": "Short and sweet."}')

        result = async_to_sync(run_stage)('meta_description', {}, model_config, client=client)

        assert result.success
        assert result.attempts == 2
        assert len(client.calls) == 2
        assert '<previous_response>' in client.calls[1]['user']
        assert result.usage.total_tokens == 300

    def test_parse_error_after_second_failure(self, model_config):
        client = FakeGenerationClient('nope', 'still nope')

        result = async_to_sync(run_stage)('writing', {}, model_config, client=client)

        assert not result.success
        assert result.error_kind == errors.PARSE_ERROR
        assert result.raw_response == 'still nope'
        assert len(client.calls) == 2

    def test_missing_keys_count_as_parse_failure(self, model_config):
        client = FakeGenerationClient('{"title": "x"}', '{"title": "x"}')

        result = async_to_sync(run_stage)('writing', {}, model_config, client=client)

        assert not result.success
        assert result.error_kind == errors.PARSE_ERROR
        assert 'missing keys' in result.error_message

    def test_provider_error_becomes_result(self, model_config):
        client = FakeGenerationClient(errors.StageError(errors.UPSTREAM_RATE_LIMITED))

        result = async_to_sync(run_stage)('review', {}, model_config, client=client)

        assert not result.success
        assert result.error_kind == errors.UPSTREAM_RATE_LIMITED
        assert result.error_message == errors.describe(errors.UPSTREAM_RATE_LIMITED)
        assert errors.is_retryable(result.error_kind)

    def test_unknown_stage(self, model_config):
        with pytest.raises(ValueError):
            async_to_sync(run_stage)('poetry', {}, model_config, client=FakeGenerationClient())
