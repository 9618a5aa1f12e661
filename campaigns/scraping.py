"""
Firecrawl-compatible scraping client.

POST {base}/v1/scrape {url, formats: ["markdown"], onlyMainContent: true}
Response consumed: {success, data: {markdown, metadata: {title, description}}}
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from django.conf import settings

logger = logging.getLogger(__name__)


class ScrapeError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ScrapedPage:
    url: str
    success: bool
    markdown: str = ''
    title: str = ''
    description: str = ''
    error: Optional[str] = None


class FirecrawlClient:
    def __init__(self, api_key: str, base_url: str = 'https://api.firecrawl.dev',
                 timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self._transport = transport

    async def scrape(self, url: str) -> ScrapedPage:
        """
        Fetch one page as markdown.
        A non-2xx or success:false response comes back as ScrapedPage(success=False);
        network failures and a missing API key raise ScrapeError.
        """
        if not self.api_key:
            raise ScrapeError('FIRECRAWL_API_KEY is not set.')

        payload = {'url': url, 'formats': ['markdown'], 'onlyMainContent': True}
        headers = {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(f'{self.base_url}/v1/scrape', json=payload, headers=headers)
        except httpx.RequestError as exc:
            raise ScrapeError(f'Network error while scraping {url}: {exc}') from exc

        if response.status_code >= 400:
            logger.warning(f"Scrape failed for {url}: HTTP {response.status_code}")
            return ScrapedPage(url=url, success=False, error=f'HTTP {response.status_code}: {response.text[:500]}')

        try:
            body = response.json()
        except ValueError:
            return ScrapedPage(url=url, success=False, error='Scraper returned invalid JSON')

        data = body.get('data') or {}
        if not body.get('success') or not isinstance(data, dict):
            return ScrapedPage(url=url, success=False, error=body.get('error') or 'Scrape was not successful')

        metadata = data.get('metadata') or {}
        return ScrapedPage(
            url=url,
            success=True,
            markdown=data.get('markdown') or '',
            title=metadata.get('title') or '',
            description=metadata.get('description') or '',
        )


def build_scraper() -> FirecrawlClient:
    """Create the scraping client from Django settings."""
    return FirecrawlClient(
        api_key=settings.FIRECRAWL_API_KEY,
        base_url=settings.FIRECRAWL_BASE_URL,
        timeout=settings.PIPELINE['SCRAPE_TIMEOUT_SECONDS'],
    )
