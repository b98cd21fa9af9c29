from __future__ import annotations

import logging
from collections.abc import Sequence

import httpx
import numpy as np
from numpy.typing import NDArray

from feedlens.constants import EMBEDDING_API_URL, EMBEDDING_MODEL
from feedlens.errors import (
    ConfigurationError,
    ProviderError,
    ProviderUnavailableError,
)
from feedlens.models import Article
from feedlens.store import AnalysisStore

logger = logging.getLogger(__name__)


class EmbeddingFetcher:
    """Embeds articles, preferring vectors already persisted in the store.

    Cache misses go out in a single batched request; the provider preserves
    input order, so vectors are paired with articles by position.
    """

    def __init__(
        self,
        store: AnalysisStore,
        client: httpx.AsyncClient,
        api_key: str | None,
        model: str = EMBEDDING_MODEL,
        url: str = EMBEDDING_API_URL,
    ) -> None:
        self.store = store
        self.client = client
        self.api_key = api_key
        self.model = model
        self.url = url

    async def get_embeddings(
        self, articles: Sequence[Article]
    ) -> dict[str, NDArray[np.float32]]:
        if not self.api_key:
            raise ConfigurationError("OPENROUTER_API_KEY not configured")

        result: dict[str, NDArray[np.float32]] = {}
        needs_embedding: list[Article] = []
        seen: set[str] = set()

        for article in articles:
            if article.article_id in seen:
                continue
            seen.add(article.article_id)
            cached = self.store.get_article_embedding(article.article_id)
            if cached is not None:
                result[article.article_id] = cached
            else:
                needs_embedding.append(article)

        if not needs_embedding:
            logger.info("All %d embeddings found in cache", len(result))
            return result

        logger.info(
            "Fetching embeddings for %d articles (%d cached)",
            len(needs_embedding),
            len(result),
        )

        vectors = await self._request_embeddings(
            [a.embedding_text for a in needs_embedding]
        )

        for article, vector in zip(needs_embedding, vectors):
            vec = np.asarray(vector, dtype=np.float32)
            self.store.update_article_embedding(article.article_id, vec)
            result[article.article_id] = vec

        logger.info("Fetched and cached %d embeddings", len(needs_embedding))
        return result

    async def _request_embeddings(self, texts: list[str]) -> list[list[float]]:
        try:
            resp = await self.client.post(
                self.url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={"model": self.model, "input": texts},
            )
        except httpx.HTTPError as e:
            logger.error("Embeddings request failed: %r", e)
            raise ProviderUnavailableError("Embeddings", repr(e)) from e
        if resp.status_code != 200:
            logger.error("Embeddings API error %d: %s", resp.status_code, resp.text)
            raise ProviderError("Embeddings", resp.status_code, resp.text)

        try:
            body = resp.json()
        except ValueError as e:
            raise ProviderUnavailableError("Embeddings", "response is not JSON") from e
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, list) or len(data) != len(texts):
            got = len(data) if isinstance(data, list) else 0
            raise ProviderError(
                "Embeddings",
                resp.status_code,
                f"expected {len(texts)} embeddings, got {got}",
            )
        return [item["embedding"] for item in data]
