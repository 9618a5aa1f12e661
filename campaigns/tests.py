"""
Tests for campaigns app - state machine, source batching, the pipeline and the API.
"""
import json
from decimal import Decimal
from types import SimpleNamespace

import pytest
from asgiref.sync import async_to_sync
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from ai import errors
from ai.providers import Completion, Usage
from billing.models import TokenUsage
from billing.quota import QuotaGate
from campaigns import lifecycle
from campaigns.models import BlogPost, Campaign, Source, StageArtifact, clamp_meta_description
from campaigns.pipeline import CampaignPipeline
from campaigns.scraping import ScrapedPage, ScrapeError
from campaigns.sources import fetch_and_analyze_sources, summarize

LONG_CONTENT = 'Trail running shoes need grip, protection and a secure fit. ' * 5

PAYLOADS = {
    'keyword_research': {'keywords': [{'keyword': 'trail running shoes', 'intent': 'commercial'}]},
    'content_strategy': {
        'search_terms': ['best trail running shoes'],
        'topics': [{'title': 'How to choose trail running shoes', 'primary_keyword': 'trail running shoes'}],
    },
    'source_discovery': {'sources': [], 'summary': {}, 'strategy': {'angle': 'beginner friendly'}},
    'writing': {
        'title': 'How to Choose Trail Running Shoes',
        'content': '<p>Grip matters most.</p>',
        'outline': ['Grip', 'Fit'],
        'meta_description': 'Pick the right trail shoes.',
        'keywords': ['trail running shoes'],
    },
    'humanization': {'voice_profile': 'friendly', 'content': '<p>Grip really matters most.</p>'},
    'review': {
        'title': 'How to Choose Trail Running Shoes',
        'content': '<p>Grip really matters most.</p>',
        'meta_description': 'Pick the right trail shoes.',
    },
}


class ScriptedGenerator:
    """Returns queued responses in order; an exception in the queue is raised instead."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def complete(self, system_prompt, user_prompt, config):
        self.calls.append({'system': system_prompt, 'user': user_prompt, 'model': config.model})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if not isinstance(item, str):
            item = json.dumps(item)
        return Completion(content=item, model=config.model, usage=Usage(1000, 500, 1500))


class FakeScraper:

    def __init__(self, pages):
        self.pages = pages
        self.calls = []

    async def scrape(self, url):
        self.calls.append(url)
        page = self.pages[url]
        if isinstance(page, Exception):
            raise page
        return page


class RecordingSleep:

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def _page(url, markdown=LONG_CONTENT, title='Guide'):
    return ScrapedPage(url=url, success=True, markdown=markdown, title=title)


def _succeed(campaign, stage, payload=None):
    result = SimpleNamespace(
        payload=payload if payload is not None else PAYLOADS[stage],
        raw_response='',
        model='test-model',
        usage=Usage(),
    )
    return lifecycle.record_success(campaign, stage, result)


def _advance_to(campaign, stage):
    """Record successful artifacts for every stage before `stage`."""
    for name in lifecycle.STAGES[:lifecycle.STAGES.index(stage)]:
        _succeed(campaign, name)
    return campaign


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def user_model():
    return get_user_model()


@pytest.fixture
def create_user(user_model):
    def _create_user(email="test@example.com", password="testpass123", balance='5.00'):
        user = user_model.objects.create_user(
            email=email,
            username=email,
            password=password
        )
        user.token_balance = Decimal(balance)
        user.save()
        return user
    return _create_user


@pytest.fixture
def create_brand():
    def _create_brand(user, name="Acme Running"):
        from brands.models import Brand
        return Brand.objects.create(user=user, name=name, brand_voice='Friendly')
    return _create_brand


@pytest.fixture
def create_campaign(create_user, create_brand):
    def _create_campaign(user=None, **fields):
        if user is None:
            user = create_user()
        brand = create_brand(user)
        fields.setdefault('website_url', 'https://acme.example.com')
        fields.setdefault('keywords', ['trail running shoes'])
        return lifecycle.create_campaign(user, brand, **fields)
    return _create_campaign


@pytest.fixture
def authenticated_client(api_client, create_user):
    user = create_user()
    refresh = RefreshToken.for_user(user)
    api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {str(refresh.access_token)}')
    return api_client, user


@pytest.mark.django_db
class TestLifecycle:

    def test_new_campaign(self, create_campaign):
        campaign = create_campaign()
        assert campaign.status == 'keyword_research'
        assert campaign.current_step == 'keyword_research'
        assert campaign.progress == 0
        assert campaign.can_resume
        assert lifecycle.next_stage(campaign) == 'keyword_research'

    def test_create_validates_fields(self, create_user, create_brand):
        user = create_user()
        with pytest.raises(ValidationError):
            lifecycle.create_campaign(user, create_brand(user), website_url='not a url')

    def test_progress_counts_successful_stages(self, create_campaign):
        campaign = create_campaign()
        expected = [16, 33, 50, 66, 83]
        for stage, progress in zip(lifecycle.STAGES, expected):
            _succeed(campaign, stage)
            assert campaign.progress == progress
            assert campaign.status != 'completed'

    def test_completed_only_when_every_stage_succeeded(self, create_campaign):
        campaign = _advance_to(create_campaign(), 'review')
        assert campaign.status == 'review'

        _succeed(campaign, 'review')

        assert campaign.status == 'completed'
        assert campaign.progress == 100
        assert not campaign.can_resume
        assert lifecycle.next_stage(campaign) is None

    def test_failure_keeps_earlier_artifacts(self, create_campaign):
        campaign = _advance_to(create_campaign(), 'writing')
        before = list(StageArtifact.objects.filter(campaign=campaign).values_list('id', 'payload'))

        lifecycle.record_failure(campaign, 'writing', errors.PARSE_ERROR, 'bad json', raw_response='nope')

        campaign.refresh_from_db()
        assert campaign.status == 'failed'
        assert campaign.current_step == 'writing'
        assert campaign.error_message == 'bad json'
        assert campaign.progress == 50
        after = list(
            StageArtifact.objects.filter(campaign=campaign, success=True).values_list('id', 'payload')
        )
        assert after == before

    def test_retry_writes_new_version(self, create_campaign):
        campaign = _advance_to(create_campaign(), 'writing')
        lifecycle.record_failure(campaign, 'writing', errors.UPSTREAM_RATE_LIMITED, 'slow down')
        lifecycle.clear_failure(campaign)

        artifact = _succeed(campaign, 'writing')

        assert artifact.version == 2
        assert campaign.status == 'humanization'
        versions = StageArtifact.objects.filter(campaign=campaign, stage='writing').order_by('version')
        assert [(a.version, a.success) for a in versions] == [(1, False), (2, True)]

    def test_artifacts_are_immutable(self, create_campaign):
        artifact = _succeed(create_campaign(), 'keyword_research')
        artifact.payload = {}
        with pytest.raises(ValueError):
            artifact.save()

    def test_stage_out_of_order(self, create_campaign):
        campaign = create_campaign()
        with pytest.raises(lifecycle.StageOrderError):
            lifecycle.check_transition(campaign, 'writing')

    def test_unknown_stage(self, create_campaign):
        with pytest.raises(lifecycle.InvalidTransition):
            lifecycle.check_transition(create_campaign(), 'publishing')

    def test_rerun_requires_force(self, create_campaign):
        campaign = _advance_to(create_campaign(), 'source_discovery')
        with pytest.raises(lifecycle.StageOrderError):
            lifecycle.check_transition(campaign, 'keyword_research')
        lifecycle.check_transition(campaign, 'keyword_research', force=True)

    def test_failed_campaign_must_be_resumed(self, create_campaign):
        campaign = create_campaign()
        lifecycle.mark_failed(campaign, 'Stopped by operator')
        with pytest.raises(lifecycle.InvalidTransition):
            lifecycle.check_transition(campaign, 'keyword_research')

        lifecycle.clear_failure(campaign)

        assert campaign.status == 'keyword_research'
        assert campaign.error_message is None
        lifecycle.check_transition(campaign, 'keyword_research')

    def test_completed_campaign_rejects_stages(self, create_campaign):
        campaign = _advance_to(create_campaign(), 'review')
        _succeed(campaign, 'review')
        with pytest.raises(lifecycle.InvalidTransition):
            lifecycle.check_transition(campaign, 'review', force=True)
        with pytest.raises(lifecycle.InvalidTransition):
            lifecycle.mark_failed(campaign)

    def test_archive(self, create_campaign):
        campaign = create_campaign()
        lifecycle.archive(campaign)
        campaign.refresh_from_db()
        assert campaign.is_archived
        assert campaign.archived_at is not None
        assert not campaign.can_resume
        with pytest.raises(lifecycle.InvalidTransition):
            lifecycle.check_transition(campaign, 'keyword_research')

    def test_failed_requires_error_message(self, create_campaign):
        campaign = create_campaign()
        campaign.status = 'failed'
        campaign.error_message = None
        with pytest.raises(ValidationError):
            campaign.clean()


@pytest.mark.django_db
class TestBlogPost:

    def test_meta_description_is_clamped(self):
        clamped = clamp_meta_description('x' * 200)
        assert len(clamped) == 160
        assert clamped.endswith('...')
        assert clamped[:157] == 'x' * 157
        assert clamp_meta_description('Short one.') == 'Short one.'

    def test_save_derives_fields(self, create_campaign):
        campaign = create_campaign()
        post = BlogPost.objects.create(
            brand=campaign.brand,
            campaign=campaign,
            title='Trail Shoes 101',
            content='<p>Three words here</p>',
            meta_description='m' * 170,
        )
        assert post.slug == 'trail-shoes-101'
        assert post.word_count == 3
        assert len(post.meta_description) == 160

    def test_published_requires_keywords(self, create_campaign):
        post = BlogPost(brand=create_campaign().brand, title='No keywords', status='published')
        with pytest.raises(ValidationError):
            post.clean()


class TestSourceBatches:

    def _run(self, sources, scraper, generator, sleep, batch_size=2):
        config = SimpleNamespace(model='test-model')
        return async_to_sync(fetch_and_analyze_sources)(
            sources, {'topic': 'trail shoes'},
            scraper=scraper,
            generator=generator,
            model_config=config,
            batch_size=batch_size,
            pause_seconds=1.5,
            sleep=sleep,
        )

    def test_one_failing_source_does_not_affect_siblings(self):
        urls = ['https://a.example.com', 'https://b.example.com', 'https://c.example.com']
        scraper = FakeScraper({
            urls[0]: _page(urls[0]),
            urls[1]: RuntimeError('connection reset'),
            urls[2]: _page(urls[2]),
        })
        generator = ScriptedGenerator({'key_insights': ['grip']}, {'key_insights': ['fit']})
        sleep = RecordingSleep()

        results = self._run([{'url': u} for u in urls], scraper, generator, sleep)

        assert [r.url for r in results] == urls
        assert [r.status for r in results] == ['success', 'failed', 'success']
        assert results[1].error == 'connection reset'
        assert results[0].insights['key_insights']
        # two batches of at most two, one pause in between
        assert sleep.delays == [1.5]
        summary = summarize(results)
        assert summary['success'] == 2
        assert summary['failed'] == 1
        assert summary['errors'] == [{'url': urls[1], 'error': 'connection reset'}]

    def test_short_content_is_insufficient(self):
        url = 'https://thin.example.com'
        scraper = FakeScraper({url: _page(url, markdown='Too short.')})
        generator = ScriptedGenerator()

        results = self._run([{'url': url}], scraper, generator, RecordingSleep())

        assert results[0].status == 'failed'
        assert results[0].error == 'insufficient content'
        assert generator.calls == []

    def test_scrape_error_is_isolated(self):
        url = 'https://down.example.com'
        scraper = FakeScraper({url: ScrapeError('Network error')})

        results = self._run([{'url': url}], scraper, ScriptedGenerator(), RecordingSleep())

        assert results[0].status == 'failed'
        assert not results[0].is_usable

    def test_analysis_failure_keeps_partial_excerpt(self):
        url = 'https://long.example.com'
        scraper = FakeScraper({url: _page(url, markdown='word ' * 1000)})
        generator = ScriptedGenerator('not json', 'still not json')

        results = self._run([{'url': url}], scraper, generator, RecordingSleep())

        assert results[0].status == 'partial'
        assert results[0].is_usable
        assert len(results[0].content_excerpt) == 500
        assert results[0].usage.total_tokens == 0

    def test_no_pause_for_single_batch(self):
        url = 'https://a.example.com'
        sleep = RecordingSleep()
        self._run([{'url': url}], FakeScraper({url: _page(url)}), ScriptedGenerator({'key_insights': []}), sleep)
        assert sleep.delays == []


@pytest.mark.django_db
class TestPipeline:

    def _pipeline(self, generator, scraper=None, sleep=None):
        return CampaignPipeline(
            generator=generator,
            scraper=scraper or FakeScraper({}),
            gate=QuotaGate(),
            sleep=sleep or RecordingSleep(),
        )

    def test_insufficient_balance_blocks_before_generation(self, create_user, create_campaign, settings):
        settings.BILLING = {**settings.BILLING, 'STAGE_COST_ESTIMATES': {'keyword_research': '0.05'}}
        user = create_user(balance='0.02')
        campaign = create_campaign(user=user)
        generator = ScriptedGenerator(PAYLOADS['keyword_research'])

        outcome = async_to_sync(self._pipeline(generator).run_stage)(campaign.id, 'keyword_research')

        assert not outcome.success
        assert outcome.error_kind == errors.INSUFFICIENT_BALANCE
        assert outcome.charge == {
            'success': False,
            'current_balance': Decimal('0.02'),
            'tokens_needed': Decimal('0.05'),
        }
        assert generator.calls == []
        campaign.refresh_from_db()
        assert campaign.status == 'failed'
        assert campaign.error_message
        artifact = StageArtifact.objects.get(campaign=campaign)
        assert artifact.error_kind == errors.INSUFFICIENT_BALANCE
        user.refresh_from_db()
        assert user.token_balance == Decimal('0.02')
        assert TokenUsage.objects.count() == 0

    def test_success_charges_actual_usage(self, create_user, create_campaign):
        user = create_user(balance='5.00')
        campaign = create_campaign(user=user)
        generator = ScriptedGenerator(PAYLOADS['keyword_research'])

        outcome = async_to_sync(self._pipeline(generator).run_stage)(campaign.id, 'keyword_research')

        assert outcome.success
        assert outcome.status == 'content_strategy'
        assert outcome.progress == 16
        entry = TokenUsage.objects.get(campaign=campaign)
        assert entry.service_name == 'keyword_research'
        assert entry.total_tokens == 1500
        artifact = StageArtifact.objects.get(pk=outcome.artifact_id)
        assert artifact.cost_usd == entry.cost_usd
        user.refresh_from_db()
        assert user.token_balance == Decimal('5.00') - entry.cost_usd

    def test_generation_failure_is_not_charged(self, create_campaign):
        campaign = create_campaign()
        generator = ScriptedGenerator(errors.StageError(errors.UPSTREAM_RATE_LIMITED))

        outcome = async_to_sync(self._pipeline(generator).run_stage)(campaign.id, 'keyword_research')

        assert not outcome.success
        assert outcome.error_kind == errors.UPSTREAM_RATE_LIMITED
        campaign.refresh_from_db()
        assert campaign.status == 'failed'
        assert TokenUsage.objects.count() == 0

    def test_resume_reruns_only_the_failed_stage(self, create_campaign):
        campaign = _advance_to(create_campaign(), 'writing')
        lifecycle.record_failure(campaign, 'writing', errors.UPSTREAM_UNAVAILABLE, 'timed out')
        earlier = {
            a.id: a.payload
            for a in StageArtifact.objects.filter(campaign=campaign, success=True)
        }
        generator = ScriptedGenerator(PAYLOADS['writing'])

        outcome = async_to_sync(self._pipeline(generator).resume)(campaign.id)

        assert outcome.success
        assert outcome.stage == 'writing'
        assert len(generator.calls) == 1
        assert generator.calls[0]['model'] == settings.PIPELINE['WRITING_MODEL']
        for artifact in StageArtifact.objects.filter(campaign=campaign, success=True).exclude(stage='writing'):
            assert earlier[artifact.id] == artifact.payload
        writing = StageArtifact.objects.filter(campaign=campaign, stage='writing').order_by('version')
        assert [(a.version, a.success) for a in writing] == [(1, False), (2, True)]
        campaign.refresh_from_db()
        assert campaign.status == 'humanization'
        assert campaign.progress == 66
        assert campaign.error_message is None

    def test_out_of_order_stage_raises(self, create_campaign):
        campaign = create_campaign()
        generator = ScriptedGenerator()
        with pytest.raises(lifecycle.StageOrderError):
            async_to_sync(self._pipeline(generator).run_stage)(campaign.id, 'review')
        assert generator.calls == []

    def test_source_discovery(self, create_campaign):
        campaign = _advance_to(create_campaign(), 'source_discovery')
        good, down, thin = 'https://a.example.com/guide', 'https://b.example.com', 'https://c.example.com'
        generator = ScriptedGenerator(
            {'sources': [
                {'url': good, 'title': 'Guide'},
                {'url': down},
                {'url': 'not-a-url'},
                {'url': good},
                {'url': thin},
            ]},
            {'key_insights': ['lugs matter']},
            {'strategy': {'angle': 'beginner friendly'}},
        )
        scraper = FakeScraper({
            good: _page(good),
            down: ScrapeError('Network error'),
            thin: _page(thin, markdown='thin'),
        })

        outcome = async_to_sync(self._pipeline(generator, scraper).run_stage)(campaign.id, 'source_discovery')

        assert outcome.success
        assert sorted(scraper.calls) == sorted([good, down, thin])
        assert len(generator.calls) == 3
        statuses = dict(Source.objects.filter(campaign=campaign).values_list('url', 'status'))
        assert statuses == {good: 'success', down: 'failed', thin: 'failed'}
        assert outcome.payload['summary']['total'] == 3
        assert outcome.payload['strategy'] == {'angle': 'beginner friendly'}
        campaign.refresh_from_db()
        assert campaign.status == 'writing'
        # discovery, analysis and aggregation are billed as one stage
        assert TokenUsage.objects.get(campaign=campaign, service_name='source_discovery').total_tokens == 4500

    def test_failed_analysis_is_not_billed(self, create_campaign):
        campaign = _advance_to(create_campaign(), 'source_discovery')
        url = 'https://long.example.com'
        generator = ScriptedGenerator(
            {'sources': [{'url': url}]},
            'not json',
            'still not json',
            {'strategy': {'angle': 'beginner friendly'}},
        )
        scraper = FakeScraper({url: _page(url, markdown='word ' * 1000)})

        outcome = async_to_sync(self._pipeline(generator, scraper).run_stage)(campaign.id, 'source_discovery')

        assert outcome.success
        assert len(generator.calls) == 4
        assert Source.objects.get(campaign=campaign).status == 'partial'
        # only discovery and aggregation are billed
        entry = TokenUsage.objects.get(campaign=campaign, service_name='source_discovery')
        assert entry.total_tokens == 3000

    def test_source_urls_are_deduplicated_after_trimming(self, create_campaign):
        campaign = _advance_to(create_campaign(), 'source_discovery')
        url = 'https://a.example.com/guide'
        generator = ScriptedGenerator(
            {'sources': [f'  {url} ', {'url': url}, {'url': f'{url}\n'}]},
            {'key_insights': ['lugs matter']},
            {'strategy': {'angle': 'beginner friendly'}},
        )
        scraper = FakeScraper({url: _page(url)})

        outcome = async_to_sync(self._pipeline(generator, scraper).run_stage)(campaign.id, 'source_discovery')

        assert outcome.success
        assert scraper.calls == [url]
        assert list(Source.objects.filter(campaign=campaign).values_list('url', flat=True)) == [url]

    def test_rerun_replaces_earlier_sources(self, create_campaign):
        campaign = _advance_to(create_campaign(), 'source_discovery')
        old, new = 'https://old.example.com', 'https://new.example.com'
        generator = ScriptedGenerator(
            {'sources': [{'url': old}]},
            {'key_insights': ['cushioning']},
            'not json',
            'still not json',
            {'sources': [{'url': new}]},
            {'key_insights': ['grip']},
            {'strategy': {'angle': 'beginner friendly'}},
        )
        scraper = FakeScraper({old: _page(old), new: _page(new)})
        pipeline = self._pipeline(generator, scraper)

        failed = async_to_sync(pipeline.run_stage)(campaign.id, 'source_discovery')
        assert not failed.success
        assert list(Source.objects.filter(campaign=campaign).values_list('url', flat=True)) == [old]

        outcome = async_to_sync(pipeline.resume)(campaign.id)

        assert outcome.success
        assert outcome.stage == 'source_discovery'
        assert list(Source.objects.filter(campaign=campaign).values_list('url', flat=True)) == [new]

    def test_source_discovery_fails_when_nothing_usable(self, create_campaign):
        campaign = _advance_to(create_campaign(), 'source_discovery')
        url = 'https://b.example.com'
        generator = ScriptedGenerator({'sources': [{'url': url}]})
        scraper = FakeScraper({url: ScrapeError('Network error')})

        outcome = async_to_sync(self._pipeline(generator, scraper).run_stage)(campaign.id, 'source_discovery')

        assert not outcome.success
        assert outcome.error_kind == errors.SOURCE_FETCH_ERROR
        assert len(generator.calls) == 1
        campaign.refresh_from_db()
        assert campaign.status == 'failed'
        assert Source.objects.get(campaign=campaign).status == 'failed'
        assert TokenUsage.objects.count() == 0

    def test_review_creates_article(self, create_campaign):
        campaign = _advance_to(create_campaign(), 'review')
        review = {**PAYLOADS['review'], 'meta_description': 'm' * 200}
        generator = ScriptedGenerator(review)

        outcome = async_to_sync(self._pipeline(generator).run_stage)(campaign.id, 'review')

        assert outcome.success
        assert outcome.status == 'completed'
        article = BlogPost.objects.get(pk=outcome.article_id)
        assert article.campaign_id == campaign.id
        assert article.status == 'draft'
        assert article.keywords == ['trail running shoes']
        assert len(article.meta_description) == 160
        assert article.meta_description.endswith('...')
        campaign.refresh_from_db()
        assert campaign.progress == 100

    def test_review_updates_existing_article(self, create_campaign):
        campaign = _advance_to(create_campaign(), 'review')
        existing = BlogPost.objects.create(brand=campaign.brand, campaign=campaign, title='Old draft')
        generator = ScriptedGenerator(PAYLOADS['review'])

        outcome = async_to_sync(self._pipeline(generator).run_stage)(campaign.id, 'review')

        assert outcome.article_id == existing.id
        assert BlogPost.objects.filter(campaign=campaign).count() == 1
        existing.refresh_from_db()
        assert existing.title == PAYLOADS['review']['title']

    def test_run_to_completion(self, create_campaign):
        campaign = create_campaign()
        url = 'https://a.example.com/guide'
        generator = ScriptedGenerator(
            PAYLOADS['keyword_research'],
            PAYLOADS['content_strategy'],
            {'sources': [{'url': url}]},
            {'key_insights': ['lugs matter']},
            {'strategy': {'angle': 'beginner friendly'}},
            PAYLOADS['writing'],
            PAYLOADS['humanization'],
            PAYLOADS['review'],
        )
        pipeline = self._pipeline(generator, FakeScraper({url: _page(url)}))

        outcomes = async_to_sync(pipeline.run_to_completion)(campaign.id)

        assert [o.stage for o in outcomes] == lifecycle.STAGES
        assert all(o.success for o in outcomes)
        campaign.refresh_from_db()
        assert campaign.status == 'completed'
        assert TokenUsage.objects.filter(campaign=campaign).count() == 6
        assert BlogPost.objects.filter(campaign=campaign).count() == 1

    def test_generate_meta_description(self, create_campaign):
        campaign = create_campaign()
        article = BlogPost.objects.create(
            brand=campaign.brand,
            campaign=campaign,
            title='Trail Shoes 101',
            content='<p>All about grip.</p>',
            keywords=['trail running shoes'],
        )
        generator = ScriptedGenerator({'meta_description': 'd' * 200})

        outcome = async_to_sync(self._pipeline(generator).generate_meta_description)(article.id)

        assert outcome.success
        article.refresh_from_db()
        assert len(article.meta_description) == 160
        assert StageArtifact.objects.filter(campaign=campaign, stage='meta_description', success=True).exists()
        assert TokenUsage.objects.filter(service_name='meta_description').count() == 1
        campaign.refresh_from_db()
        assert campaign.status == 'keyword_research'


@pytest.mark.django_db
class TestCampaignAPI:

    @pytest.fixture
    def use_pipeline(self, monkeypatch):
        def _use(*responses):
            generator = ScriptedGenerator(*responses)
            pipeline = CampaignPipeline(
                generator=generator, scraper=FakeScraper({}), gate=QuotaGate(), sleep=RecordingSleep(),
            )
            monkeypatch.setattr('campaigns.views.build_pipeline', lambda: pipeline)
            return generator
        return _use

    def test_create_campaign(self, authenticated_client, create_brand):
        client, user = authenticated_client
        brand = create_brand(user)

        response = client.post(
            '/api/v1/campaigns/',
            data={
                'brand': brand.id,
                'website_url': 'https://acme.example.com',
                'keywords': ['trail running shoes', ' '],
                'target_country': 'US',
            },
            format='json'
        )

        assert response.status_code == 201
        assert response.data['status'] == 'keyword_research'
        assert response.data['progress'] == 0
        assert response.data['can_resume'] is True
        assert Campaign.objects.get(pk=response.data['id']).keywords == ['trail running shoes']

    def test_cannot_use_another_users_brand(self, authenticated_client, create_user, create_brand):
        client, user = authenticated_client
        foreign = create_brand(create_user(email='other@example.com'))

        response = client.post(
            '/api/v1/campaigns/',
            data={'brand': foreign.id, 'website_url': 'https://acme.example.com'},
            format='json'
        )

        assert response.status_code == 400
        assert 'brand' in response.data

    def test_run_stage(self, authenticated_client, create_campaign, use_pipeline):
        client, user = authenticated_client
        campaign = create_campaign(user=user)
        use_pipeline(PAYLOADS['keyword_research'])

        response = client.post(
            f'/api/v1/campaigns/{campaign.id}/run-stage/',
            data={'stage': 'keyword_research'},
            format='json'
        )

        assert response.status_code == 200
        assert response.data['success'] is True
        assert response.data['campaign']['status'] == 'content_strategy'

    def test_run_stage_without_balance(self, authenticated_client, create_campaign, use_pipeline):
        client, user = authenticated_client
        user.token_balance = Decimal('0')
        user.save()
        campaign = create_campaign(user=user)
        generator = use_pipeline(PAYLOADS['keyword_research'])

        response = client.post(
            f'/api/v1/campaigns/{campaign.id}/run-stage/',
            data={'stage': 'keyword_research'},
            format='json'
        )

        assert response.status_code == 402
        assert response.data['error'] == errors.INSUFFICIENT_BALANCE
        assert response.data['campaign']['status'] == 'failed'
        assert response.data['campaign']['can_resume'] is True
        assert generator.calls == []

    def test_resume_after_funding(self, authenticated_client, create_campaign, use_pipeline):
        client, user = authenticated_client
        campaign = create_campaign(user=user)
        lifecycle.record_failure(campaign, 'keyword_research', errors.INSUFFICIENT_BALANCE, 'Insufficient')
        use_pipeline(PAYLOADS['keyword_research'])

        response = client.post(f'/api/v1/campaigns/{campaign.id}/resume/')

        assert response.status_code == 200
        assert response.data['success'] is True
        assert response.data['campaign']['status'] == 'content_strategy'

    def test_out_of_order_stage_conflicts(self, authenticated_client, create_campaign, use_pipeline):
        client, user = authenticated_client
        campaign = create_campaign(user=user)
        use_pipeline()

        response = client.post(
            f'/api/v1/campaigns/{campaign.id}/run-stage/',
            data={'stage': 'writing'},
            format='json'
        )

        assert response.status_code == 409
        assert response.data['error'] == 'invalid_transition'
        assert response.data['stage'] == 'writing'

    def test_delete_archives(self, authenticated_client, create_campaign, use_pipeline):
        client, user = authenticated_client
        campaign = create_campaign(user=user)
        use_pipeline()

        response = client.delete(f'/api/v1/campaigns/{campaign.id}/')
        assert response.status_code == 204
        campaign.refresh_from_db()
        assert campaign.is_archived

        response = client.get('/api/v1/campaigns/')
        assert response.data['results'] == []
        response = client.get('/api/v1/campaigns/?include_archived=1')
        assert len(response.data['results']) == 1

        response = client.post(
            f'/api/v1/campaigns/{campaign.id}/run-stage/',
            data={'stage': 'keyword_research'},
            format='json'
        )
        assert response.status_code == 409

    def test_mark_failed(self, authenticated_client, create_campaign):
        client, user = authenticated_client
        campaign = create_campaign(user=user)

        response = client.post(
            f'/api/v1/campaigns/{campaign.id}/mark-failed/',
            data={'message': 'Wrong website'},
            format='json'
        )

        assert response.status_code == 200
        assert response.data['status'] == 'failed'
        assert response.data['error_message'] == 'Wrong website'

    def test_artifacts(self, authenticated_client, create_campaign):
        client, user = authenticated_client
        campaign = _advance_to(create_campaign(user=user), 'content_strategy')

        response = client.get(f'/api/v1/campaigns/{campaign.id}/artifacts/?stage=keyword_research')

        assert response.status_code == 200
        assert len(response.data) == 1
        assert response.data[0]['payload'] == PAYLOADS['keyword_research']

    def test_other_users_campaign_is_hidden(self, authenticated_client, create_user, create_campaign):
        client, user = authenticated_client
        campaign = create_campaign(user=create_user(email='other@example.com'))

        response = client.get(f'/api/v1/campaigns/{campaign.id}/')

        assert response.status_code == 404


@pytest.mark.django_db
class TestArticleAPI:

    @pytest.fixture
    def article(self, authenticated_client, create_campaign):
        client, user = authenticated_client
        campaign = create_campaign(user=user)
        return BlogPost.objects.create(
            brand=campaign.brand,
            campaign=campaign,
            title='Trail Shoes 101',
            content='<p>All about grip.</p>',
        )

    def test_update_clamps_meta_description(self, authenticated_client, article):
        client, user = authenticated_client

        response = client.patch(
            f'/api/v1/articles/{article.id}/',
            data={'meta_description': 'a' * 200},
            format='json'
        )

        assert response.status_code == 200
        assert len(response.data['meta_description']) == 160

    def test_publish_requires_keywords(self, authenticated_client, article):
        client, user = authenticated_client

        response = client.patch(f'/api/v1/articles/{article.id}/', data={'status': 'published'}, format='json')

        assert response.status_code == 400
        assert 'keywords' in response.data

    def test_sync_without_integration(self, authenticated_client, article):
        client, user = authenticated_client

        response = client.post(f'/api/v1/articles/{article.id}/sync/', data={'platform': 'wordpress'}, format='json')

        assert response.status_code == 400
        assert response.data['error'] == errors.INTEGRATION_MISSING
        assert not article.sync_records.exists()
