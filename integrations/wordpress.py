"""
WordPress REST client (wp/v2 posts) using application-password basic auth.
"""
from dataclasses import dataclass
from typing import Optional

import httpx

from .http import CMSApiError, request_json

# Article status -> WordPress post status
STATUS_MAP = {
    'published': 'publish',
    'scheduled': 'future',
}


class WordPressError(CMSApiError):
    pass


@dataclass
class RemotePost:
    external_id: str
    external_url: str = ''


def wordpress_status(article_status: str) -> str:
    return STATUS_MAP.get(article_status, 'draft')


class WordPressClient:
    def __init__(self, site_url: str, username: str, application_password: str,
                 timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.site_url = site_url.rstrip('/')
        self.auth = httpx.BasicAuth(username, application_password)
        self.timeout = timeout
        self._transport = transport

    @property
    def posts_url(self):
        return f'{self.site_url}/wp-json/wp/v2/posts'

    @staticmethod
    def build_body(article, status: str) -> dict:
        return {
            'title': article.title,
            'content': article.content,
            'status': wordpress_status(status),
            'excerpt': article.meta_description,
            'slug': article.slug,
        }

    async def _send(self, url, body) -> RemotePost:
        data = await request_json(
            'POST', url,
            error_cls=WordPressError,
            timeout=self.timeout,
            transport=self._transport,
            payload=body,
            auth=self.auth,
            platform='WordPress',
        )
        if not isinstance(data, dict) or data.get('id') is None:
            raise WordPressError('WordPress response is missing the post id', body=str(data)[:1000])
        return RemotePost(external_id=str(data['id']), external_url=data.get('link') or '')

    async def create_post(self, article, status: str = 'draft') -> RemotePost:
        """POST /wp-json/wp/v2/posts"""
        return await self._send(self.posts_url, self.build_body(article, status))

    async def update_post(self, external_id: str, article, status: str = 'draft') -> RemotePost:
        """POST /wp-json/wp/v2/posts/{id}"""
        return await self._send(f'{self.posts_url}/{external_id}', self.build_body(article, status))
