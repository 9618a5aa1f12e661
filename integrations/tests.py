"""
Tests for integrations app - WordPress/Shopify publishing and integration management.
"""
import json

import httpx
import pytest
from asgiref.sync import async_to_sync
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from ai import errors
from campaigns.models import BlogPost
from integrations.models import CMSIntegration, CMSSyncRecord
from integrations.publishing import PublishingAdapter, sync_article
from integrations.shopify import ShopifyClient
from integrations.wordpress import WordPressClient, wordpress_status


class RecordingSleep:

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class FakeCMS:
    """
    httpx handler answering from a queue of (status, body) per (method, path).
    A queued httpx exception class is raised instead of answering.
    """

    def __init__(self, routes):
        self.routes = {key: list(value) for key, value in routes.items()}
        self.requests = []

    def __call__(self, request):
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body, request.headers))
        queue = self.routes[(request.method, request.url.path)]
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, type) and issubclass(item, httpx.RequestError):
            raise item('simulated network failure', request=request)
        status, payload = item
        if isinstance(payload, str):
            return httpx.Response(status, text=payload)
        return httpx.Response(status, json=payload)

    @property
    def transport(self):
        return httpx.MockTransport(self)


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def user_model():
    return get_user_model()


@pytest.fixture
def create_user(user_model):
    def _create_user(email="test@example.com", password="testpass123"):
        return user_model.objects.create_user(
            email=email,
            username=email,
            password=password
        )
    return _create_user


@pytest.fixture
def authenticated_client(api_client, create_user):
    user = create_user()
    refresh = RefreshToken.for_user(user)
    api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {str(refresh.access_token)}')
    return api_client, user


@pytest.fixture
def brand(create_user):
    from brands.models import Brand
    return Brand.objects.create(user=create_user(email='owner@example.com'), name='Acme Running')


@pytest.fixture
def article(brand):
    return BlogPost.objects.create(
        brand=brand,
        title='Trail Shoes 101',
        content='<p>All about grip.</p>',
        meta_description='Everything about trail shoe grip.',
        keywords=['trail running shoes', 'grip'],
    )


@pytest.fixture
def wordpress(brand):
    return CMSIntegration.objects.create(
        brand=brand,
        platform='wordpress',
        site_url='https://blog.example.com/',
        username='editor',
        application_password='abcd efgh ijkl',
    )


@pytest.fixture
def shopify(brand):
    return CMSIntegration.objects.create(
        brand=brand,
        platform='shopify',
        shop_domain='https://acme.myshopify.com',
        access_token='shpat_test',
        api_version='2024-01',
    )


def _sync(adapter, article, platform):
    return async_to_sync(adapter.sync_article)(article.id, article.brand_id, platform)


POSTS = '/wp-json/wp/v2/posts'


class TestClients:

    def test_wordpress_status_mapping(self):
        assert wordpress_status('published') == 'publish'
        assert wordpress_status('scheduled') == 'future'
        assert wordpress_status('draft') == 'draft'
        assert wordpress_status('sync_error') == 'draft'

    def test_wordpress_body(self):
        post = BlogPost(title='T', content='<p>c</p>', meta_description='m', slug='t')
        assert WordPressClient.build_body(post, 'published') == {
            'title': 'T', 'content': '<p>c</p>', 'status': 'publish', 'excerpt': 'm', 'slug': 't',
        }

    def test_shopify_domain_is_normalized(self):
        client = ShopifyClient('https://acme.myshopify.com/', 'token', api_version='2024-01')
        assert client.admin_url == 'https://acme.myshopify.com/admin/api/2024-01'

    def test_shopify_body(self):
        post = BlogPost(title='T', content='<p>c</p>', meta_description='m', keywords=['a', 'b'])
        assert ShopifyClient.build_body(post, 'draft') == {
            'article': {
                'title': 'T',
                'body_html': '<p>c</p>',
                'published': False,
                'summary_html': 'm',
                'tags': 'a, b',
            }
        }


@pytest.mark.django_db
class TestWordPressSync:

    def test_create_then_update_in_place(self, article, wordpress):
        cms = FakeCMS({
            ('POST', POSTS): [(201, {'id': 42, 'link': 'https://blog.example.com/?p=42'})],
            ('POST', f'{POSTS}/42'): [(200, {'id': 42, 'link': 'https://blog.example.com/trail-shoes'})],
        })
        adapter = PublishingAdapter(transport=cms.transport, sleep=RecordingSleep())

        first = _sync(adapter, article, 'wordpress')
        second = _sync(adapter, article, 'wordpress')

        assert first.success and first.created
        assert second.success and not second.created
        assert first.external_id == second.external_id == '42'
        assert [(method, path) for method, path, _, _ in cms.requests] == [
            ('POST', POSTS),
            ('POST', f'{POSTS}/42'),
        ]
        assert cms.requests[0][2]['status'] == 'draft'
        assert cms.requests[0][3]['authorization'].startswith('Basic ')
        record = CMSSyncRecord.objects.get(article=article, platform='wordpress')
        assert record.status == 'synced'
        assert record.external_url == 'https://blog.example.com/trail-shoes'
        assert record.attempt_count == 2

    def test_published_article_is_published_remotely(self, article, wordpress):
        article.status = 'published'
        article.save()
        cms = FakeCMS({('POST', POSTS): [(201, {'id': 7})]})

        _sync(PublishingAdapter(transport=cms.transport), article, 'wordpress')

        assert cms.requests[0][2]['status'] == 'publish'

    def test_rejected_post_marks_sync_error(self, article, wordpress):
        cms = FakeCMS({('POST', POSTS): [(400, '{"code": "rest_invalid_param"}')]})
        adapter = PublishingAdapter(transport=cms.transport, sleep=RecordingSleep())

        result = _sync(adapter, article, 'wordpress')

        assert not result.success
        assert result.error_kind == errors.PUBLISH_ERROR
        assert len(cms.requests) == 1
        record = CMSSyncRecord.objects.get(article=article, platform='wordpress')
        assert record.status == 'sync_error'
        assert 'rest_invalid_param' in record.last_error
        article.refresh_from_db()
        assert article.status == 'sync_error'
        assert article.title == 'Trail Shoes 101'

    def test_successful_retry_clears_sync_error(self, article, wordpress):
        cms = FakeCMS({('POST', POSTS): [(400, 'bad'), (201, {'id': 9})]})
        adapter = PublishingAdapter(transport=cms.transport, sleep=RecordingSleep())

        _sync(adapter, article, 'wordpress')
        result = _sync(adapter, article, 'wordpress')

        assert result.success
        article.refresh_from_db()
        assert article.status == 'draft'
        record = CMSSyncRecord.objects.get(article=article, platform='wordpress')
        assert record.last_error == ''

    def test_undelivered_create_is_retried(self, article, wordpress):
        cms = FakeCMS({('POST', POSTS): [httpx.ConnectError, (429, 'slow down'), (201, {'id': 11})]})
        sleep = RecordingSleep()
        adapter = PublishingAdapter(transport=cms.transport, sleep=sleep, max_retries=2, backoff_seconds=1.0)

        result = _sync(adapter, article, 'wordpress')

        assert result.success
        assert result.external_id == '11'
        assert len(cms.requests) == 3
        assert sleep.delays == [1.0, 2.0]

    def test_create_is_not_resent_after_gateway_timeout(self, article, wordpress):
        cms = FakeCMS({('POST', POSTS): [(504, 'gateway timeout'), (201, {'id': 12})]})
        sleep = RecordingSleep()
        adapter = PublishingAdapter(transport=cms.transport, sleep=sleep, max_retries=2, backoff_seconds=1.0)

        result = _sync(adapter, article, 'wordpress')

        assert not result.success
        assert result.error_kind == errors.PUBLISH_ERROR
        assert len(cms.requests) == 1
        assert sleep.delays == []
        record = CMSSyncRecord.objects.get(article=article, platform='wordpress')
        assert record.status == 'sync_error'
        assert not record.external_id

    def test_create_is_not_resent_after_read_timeout(self, article, wordpress):
        cms = FakeCMS({('POST', POSTS): [httpx.ReadTimeout, (201, {'id': 13})]})
        adapter = PublishingAdapter(transport=cms.transport, sleep=RecordingSleep(), max_retries=2)

        result = _sync(adapter, article, 'wordpress')

        assert not result.success
        assert len(cms.requests) == 1

    def test_update_is_retried_on_server_error(self, article, wordpress):
        CMSSyncRecord.objects.create(article=article, platform='wordpress', external_id='42')
        cms = FakeCMS({('POST', f'{POSTS}/42'): [(503, 'busy'), (502, 'bad gateway'), (200, {'id': 42})]})
        sleep = RecordingSleep()
        adapter = PublishingAdapter(transport=cms.transport, sleep=sleep, max_retries=2, backoff_seconds=1.0)

        result = _sync(adapter, article, 'wordpress')

        assert result.success
        assert not result.created
        assert len(cms.requests) == 3
        assert sleep.delays == [1.0, 2.0]

    def test_retries_are_bounded(self, article, wordpress):
        cms = FakeCMS({('POST', POSTS): [(429, 'slow down')]})
        sleep = RecordingSleep()
        adapter = PublishingAdapter(transport=cms.transport, sleep=sleep, max_retries=2, backoff_seconds=0.5)

        result = _sync(adapter, article, 'wordpress')

        assert not result.success
        assert len(cms.requests) == 3
        assert sleep.delays == [0.5, 1.0]

    def test_missing_integration(self, article):
        result = async_to_sync(sync_article)(article.id, article.brand_id, 'wordpress')

        assert not result.success
        assert result.error_kind == errors.INTEGRATION_MISSING
        assert not CMSSyncRecord.objects.exists()

    def test_inactive_integration_counts_as_missing(self, article, wordpress):
        wordpress.is_active = False
        wordpress.save()

        result = _sync(PublishingAdapter(), article, 'wordpress')

        assert result.error_kind == errors.INTEGRATION_MISSING

    def test_unsupported_platform(self, article):
        with pytest.raises(ValueError):
            _sync(PublishingAdapter(), article, 'medium')


@pytest.mark.django_db
class TestShopifySync:

    BLOGS = '/admin/api/2024-01/blogs.json'

    def test_create_then_update(self, article, shopify):
        cms = FakeCMS({
            ('GET', self.BLOGS): [(200, {'blogs': [{'id': 5}, {'id': 6}]})],
            ('POST', '/admin/api/2024-01/blogs/5/articles.json'): [(201, {'article': {'id': 99}})],
            ('PUT', '/admin/api/2024-01/blogs/5/articles/99.json'): [(200, {'article': {'id': 99}})],
        })
        adapter = PublishingAdapter(transport=cms.transport, sleep=RecordingSleep())

        first = _sync(adapter, article, 'shopify')
        second = _sync(adapter, article, 'shopify')

        assert first.created and not second.created
        assert first.external_id == second.external_id == '99'
        assert first.external_url == 'https://acme.myshopify.com/admin/articles/99'
        assert cms.requests[0][3]['x-shopify-access-token'] == 'shpat_test'
        assert cms.requests[1][2]['article']['tags'] == 'trail running shoes, grip'

    def test_configured_blog_skips_lookup(self, article, shopify):
        shopify.blog_id = '12'
        shopify.save()
        cms = FakeCMS({('POST', '/admin/api/2024-01/blogs/12/articles.json'): [(201, {'article': {'id': 1}})]})

        result = _sync(PublishingAdapter(transport=cms.transport), article, 'shopify')

        assert result.success
        assert len(cms.requests) == 1

    def test_create_is_not_resent_after_server_error(self, article, shopify):
        shopify.blog_id = '12'
        shopify.save()
        cms = FakeCMS({('POST', '/admin/api/2024-01/blogs/12/articles.json'): [
            (500, 'internal'), (201, {'article': {'id': 2}}),
        ]})

        result = _sync(PublishingAdapter(transport=cms.transport, sleep=RecordingSleep()), article, 'shopify')

        assert not result.success
        assert len(cms.requests) == 1

    def test_store_without_blogs(self, article, shopify):
        cms = FakeCMS({('GET', self.BLOGS): [(200, {'blogs': []})]})

        result = _sync(PublishingAdapter(transport=cms.transport, sleep=RecordingSleep()), article, 'shopify')

        assert not result.success
        assert result.error_kind == errors.BLOG_RESOLUTION_ERROR
        record = CMSSyncRecord.objects.get(article=article, platform='shopify')
        assert record.status == 'sync_error'
        article.refresh_from_db()
        assert article.status == 'sync_error'


@pytest.mark.django_db
class TestIntegrationAPI:

    def test_create_wordpress_integration(self, authenticated_client):
        from brands.models import Brand
        client, user = authenticated_client
        brand = Brand.objects.create(user=user, name='Mine')

        response = client.post(
            '/api/v1/integrations/',
            data={
                'brand': brand.id,
                'platform': 'wordpress',
                'site_url': 'https://blog.example.com',
                'username': 'editor',
                'application_password': 'secret pass',
            },
            format='json'
        )

        assert response.status_code == 201
        assert 'application_password' not in response.data
        assert response.data['has_credentials'] is True
        assert CMSIntegration.objects.get(brand=brand).application_password == 'secret pass'

    def test_shopify_requires_token(self, authenticated_client):
        from brands.models import Brand
        client, user = authenticated_client
        brand = Brand.objects.create(user=user, name='Mine')

        response = client.post(
            '/api/v1/integrations/',
            data={'brand': brand.id, 'platform': 'shopify', 'shop_domain': 'acme.myshopify.com'},
            format='json'
        )

        assert response.status_code == 400
        assert 'access_token' in response.data

    def test_blank_credential_keeps_stored_value(self, authenticated_client):
        from brands.models import Brand
        client, user = authenticated_client
        brand = Brand.objects.create(user=user, name='Mine')
        integration = CMSIntegration.objects.create(
            brand=brand, platform='shopify', shop_domain='acme.myshopify.com', access_token='shpat_old',
        )

        response = client.patch(
            f'/api/v1/integrations/{integration.id}/',
            data={'access_token': '', 'blog_id': '12'},
            format='json'
        )

        assert response.status_code == 200
        integration.refresh_from_db()
        assert integration.access_token == 'shpat_old'
        assert integration.blog_id == '12'

    def test_other_users_integrations_are_hidden(self, authenticated_client, wordpress):
        client, user = authenticated_client

        response = client.get('/api/v1/integrations/')
        assert response.data['results'] == []

        response = client.get(f'/api/v1/integrations/{wordpress.id}/')
        assert response.status_code == 404
