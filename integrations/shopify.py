"""
Shopify Admin REST client for blog articles.
"""
from typing import Optional

import httpx

from .http import CMSApiError, request_json
from .wordpress import RemotePost


class ShopifyError(CMSApiError):
    pass


class BlogResolutionError(ShopifyError):
    """No destination blog could be determined for the store."""


class ShopifyClient:
    def __init__(self, shop_domain: str, access_token: str, api_version: str = '2024-01',
                 timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        domain = shop_domain.strip().rstrip('/')
        for prefix in ('https://', 'http://'):
            if domain.startswith(prefix):
                domain = domain[len(prefix):]
        self.shop_domain = domain
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self._transport = transport

    @property
    def admin_url(self):
        return f'https://{self.shop_domain}/admin/api/{self.api_version}'

    async def _call(self, method, path, payload=None, error_cls=ShopifyError):
        headers = {
            'Content-Type': 'application/json',
            'X-Shopify-Access-Token': self.access_token,
        }
        return await request_json(
            method, f'{self.admin_url}/{path}',
            error_cls=error_cls,
            timeout=self.timeout,
            transport=self._transport,
            headers=headers,
            payload=payload,
            platform='Shopify',
        )

    async def resolve_blog_id(self, configured_blog_id: str = '') -> str:
        """The configured blog, else the first blog on the store."""
        if configured_blog_id:
            return str(configured_blog_id)
        data = await self._call('GET', 'blogs.json', error_cls=BlogResolutionError)
        blogs = data.get('blogs') if isinstance(data, dict) else None
        if not blogs:
            raise BlogResolutionError('Shopify store has no blogs', body=str(data)[:1000])
        return str(blogs[0]['id'])

    @staticmethod
    def build_body(article, status: str) -> dict:
        return {
            'article': {
                'title': article.title,
                'body_html': article.content,
                'published': status == 'published',
                'summary_html': article.meta_description,
                'tags': ', '.join(article.keywords or []),
            }
        }

    def _remote(self, data) -> RemotePost:
        remote = data.get('article') if isinstance(data, dict) else None
        if not remote or remote.get('id') is None:
            raise ShopifyError('Shopify response is missing the article id', body=str(data)[:1000])
        return RemotePost(
            external_id=str(remote['id']),
            external_url=f'https://{self.shop_domain}/admin/articles/{remote["id"]}',
        )

    async def create_article(self, blog_id: str, article, status: str = 'draft') -> RemotePost:
        """POST blogs/{blog_id}/articles.json"""
        data = await self._call('POST', f'blogs/{blog_id}/articles.json', self.build_body(article, status))
        return self._remote(data)

    async def update_article(self, blog_id: str, external_id: str, article, status: str = 'draft') -> RemotePost:
        """PUT blogs/{blog_id}/articles/{id}.json"""
        data = await self._call('PUT', f'blogs/{blog_id}/articles/{external_id}.json', self.build_body(article, status))
        return self._remote(data)
