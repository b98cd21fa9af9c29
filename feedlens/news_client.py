from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, TypedDict

import httpx

from feedlens.constants import (
    HTTP_CONNECT_TIMEOUT,
    HTTP_READ_TIMEOUT,
    NEWS_API_BASE,
    NEWS_LANGUAGE,
)
from feedlens.errors import (
    ConfigurationError,
    ProviderError,
    ProviderUnavailableError,
)
from feedlens.models import Article

logger = logging.getLogger(__name__)


class NewsDataResponse(TypedDict, total=False):
    status: str
    totalResults: int
    results: list[dict]
    nextPage: Optional[str]


@dataclass
class NewsPage:
    articles: list[Article] = field(default_factory=list)
    next_cursor: Optional[str] = None


class NewsClient:
    """Thin client for the NewsData.io ``latest`` endpoint."""

    def __init__(
        self,
        api_key: str | None,
        client: httpx.AsyncClient | None = None,
        base_url: str = NEWS_API_BASE,
        language: str = NEWS_LANGUAGE,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.language = language
        self._owns_client = client is None
        self.client: httpx.AsyncClient = client or httpx.AsyncClient(
            timeout=httpx.Timeout(HTTP_READ_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT),
        )

    async def fetch_news(
        self, topic: str, region: str, cursor: Optional[str] = None
    ) -> NewsPage:
        if not self.api_key:
            raise ConfigurationError("NEWS_API_KEY not configured")

        params: dict[str, str] = {
            "apikey": self.api_key,
            "q": topic,
            "country": region,
            "language": self.language,
        }
        if cursor:
            params["page"] = cursor

        logger.info(
            "Fetching news: topic=%r, country=%r, page=%r", topic, region, cursor
        )
        try:
            resp = await self.client.get(self.base_url, params=params)
        except httpx.HTTPError as e:
            logger.error("NewsData request failed: %r", e)
            raise ProviderUnavailableError("NewsData", repr(e)) from e
        if resp.status_code != 200:
            logger.error("NewsData API error %d: %s", resp.status_code, resp.text)
            raise ProviderError("NewsData", resp.status_code, resp.text)

        try:
            data: NewsDataResponse = resp.json()
        except ValueError as e:
            raise ProviderUnavailableError("NewsData", "response is not JSON") from e
        status = data.get("status") if isinstance(data, dict) else None
        if status != "success":
            raise ProviderError("NewsData", resp.status_code, f"status {status!r}")

        results = data.get("results") or []
        articles = [
            Article.from_dict(item)
            for item in results
            if not item.get("duplicate") and item.get("article_id")
        ]
        logger.info(
            "Fetched %d articles (filtered from %d)", len(articles), len(results)
        )
        return NewsPage(articles=articles, next_cursor=data.get("nextPage") or None)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> NewsClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
