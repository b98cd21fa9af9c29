"""
Per-request control flow for feed analysis.

A request either reuses the latest stored snapshot (when it is recent and
enough of the requested articles already carry model-assigned sentiment) or
runs the fresh pipeline: embed, cluster, annotate, persist.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from typing import Optional

import httpx
import numpy as np

from feedlens.annotation import Annotator
from feedlens.clustering import kmeans_clustering
from feedlens.constants import (
    CACHED_ENDPOINT_ARTICLE_LIMIT,
    CACHED_ENDPOINT_MAX_AGE_MINUTES,
    DEFAULT_CLUSTER_COUNT,
    DEFAULT_SENTIMENT,
    FEED_CACHE_MAX_AGE_MINUTES,
    FEED_CACHE_MIN_COVERAGE,
    ID_SET_CACHE_MAX_AGE_MINUTES,
    ID_SET_CACHE_MIN_COVERAGE,
    SENTIMENTS,
)
from feedlens.embeddings import EmbeddingFetcher
from feedlens.errors import FeedLensError
from feedlens.models import (
    Article,
    ClusterDict,
    FeedAnalysis,
    FeedResult,
    SentimentCounts,
)
from feedlens.news_client import NewsClient
from feedlens.store import AnalysisStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachePolicy:
    """When a stored snapshot may answer a request."""

    max_age_minutes: float
    min_coverage: float


DEFAULT_FEED_POLICY = CachePolicy(FEED_CACHE_MAX_AGE_MINUTES, FEED_CACHE_MIN_COVERAGE)
DEFAULT_ID_SET_POLICY = CachePolicy(
    ID_SET_CACHE_MAX_AGE_MINUTES, ID_SET_CACHE_MIN_COVERAGE
)


@dataclass
class FeedRequest:
    topic: str
    region: str
    page: Optional[str] = None
    num_clusters: int = DEFAULT_CLUSTER_COUNT
    article_ids: Optional[list[str]] = field(default=None)
    use_cache: bool = True

    @property
    def paginated(self) -> bool:
        return bool(self.page)


def placeholder_label(index: int) -> str:
    return f"Topic {index + 1}"


def resolve_labels(labels: Sequence[str], n_clusters: int) -> list[str]:
    """One label per cluster id, synthesizing placeholders for gaps."""
    resolved: list[str] = []
    for i in range(n_clusters):
        label = labels[i].strip() if i < len(labels) else ""
        resolved.append(label or placeholder_label(i))
    return resolved


def sentiment_counts(articles: Iterable[Article]) -> SentimentCounts:
    counts: SentimentCounts = {"positive": 0, "neutral": 0, "negative": 0}
    for article in articles:
        if article.sentiment in SENTIMENTS:
            counts[article.sentiment] += 1
    return counts


def build_clusters(
    articles: Sequence[Article], labels: Sequence[str]
) -> list[ClusterDict]:
    """Group articles by ``cluster_id`` into an ordered cluster list."""
    members: dict[int, list[str]] = {}
    for article in articles:
        if article.cluster_id < 0:
            continue
        members.setdefault(article.cluster_id, []).append(article.article_id)
    if not members:
        return []
    resolved = resolve_labels(labels, max(members) + 1)
    return [
        {"id": cid, "label": resolved[cid], "articleIds": ids}
        for cid, ids in sorted(members.items())
    ]


def snapshot_result(
    store: AnalysisStore,
    topic: str,
    region: str,
    limit: int = CACHED_ENDPOINT_ARTICLE_LIMIT,
    max_age_minutes: float = CACHED_ENDPOINT_MAX_AGE_MINUTES,
) -> FeedResult | None:
    """Stored articles and narrative only; never calls a provider."""
    cached = store.get_cached_articles(topic, region, limit, max_age_minutes)
    if cached is None:
        return None
    return FeedResult(
        summary=cached.analysis.summary,
        top_keywords=list(cached.analysis.top_keywords),
        clusters=build_clusters(cached.articles, cached.analysis.cluster_labels),
        sentiment_counts=sentiment_counts(cached.articles),
        articles=cached.articles,
        cached=True,
    )


class FeedOrchestrator:
    def __init__(
        self,
        store: AnalysisStore,
        news_client: NewsClient,
        embedder: EmbeddingFetcher,
        annotator: Annotator,
        feed_policy: CachePolicy = DEFAULT_FEED_POLICY,
        id_set_policy: CachePolicy = DEFAULT_ID_SET_POLICY,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.store = store
        self.news_client = news_client
        self.embedder = embedder
        self.annotator = annotator
        self.feed_policy = feed_policy
        self.id_set_policy = id_set_policy
        self.rng = rng

    async def analyze(self, request: FeedRequest) -> FeedResult:
        articles, next_page = await self._acquire_articles(request)
        if not articles:
            logger.info(
                "No articles for topic=%r region=%r", request.topic, request.region
            )
            return FeedResult.empty(next_page)

        if request.use_cache and not request.paginated:
            policy = (
                self.id_set_policy
                if request.article_ids is not None
                else self.feed_policy
            )
            cached = self._try_cache(request, articles, policy)
            if cached is not None:
                cached.next_page = next_page
                return cached

        result = await self._run_fresh(request, articles)
        result.next_page = next_page
        return result

    async def _acquire_articles(
        self, request: FeedRequest
    ) -> tuple[list[Article], Optional[str]]:
        if request.article_ids is not None:
            articles = self.store.get_articles_by_ids(request.article_ids)
            logger.info(
                "Loaded %d/%d requested articles from store",
                len(articles),
                len(request.article_ids),
            )
            return articles, None

        page = await self.news_client.fetch_news(
            request.topic, request.region, request.page
        )
        for article in page.articles:
            self.store.upsert_article(article)
        return _dedupe(page.articles), page.next_cursor

    def _try_cache(
        self, request: FeedRequest, articles: list[Article], policy: CachePolicy
    ) -> FeedResult | None:
        snapshot = self.store.get_recent_feed_analysis(
            request.topic, request.region, policy.max_age_minutes
        )
        if snapshot is None:
            logger.info("Cache miss: no snapshot within %s minutes", policy.max_age_minutes)
            return None

        ids = [a.article_id for a in articles]
        coverage = self.store.sentiment_coverage(ids)
        if coverage < policy.min_coverage:
            logger.info(
                "Cache miss: sentiment coverage %.2f below %.2f",
                coverage,
                policy.min_coverage,
            )
            return None

        logger.info("Cache hit: coverage %.2f, snapshot %s", coverage, snapshot.created_at)
        return self._from_snapshot(articles, snapshot)

    def _from_snapshot(
        self, articles: Sequence[Article], snapshot: FeedAnalysis
    ) -> FeedResult:
        analysis = self.store.get_article_analysis([a.article_id for a in articles])
        enriched: list[Article] = []
        for article in articles:
            stored = analysis.get(article.article_id)
            if stored is None:
                enriched.append(replace(article, sentiment=DEFAULT_SENTIMENT, cluster_id=0))
            else:
                enriched.append(
                    replace(article, sentiment=stored.sentiment, cluster_id=stored.cluster_id)
                )
        return FeedResult(
            summary=snapshot.summary,
            top_keywords=list(snapshot.top_keywords),
            clusters=build_clusters(enriched, snapshot.cluster_labels),
            sentiment_counts=sentiment_counts(enriched),
            articles=enriched,
            cached=True,
        )

    async def _run_fresh(
        self, request: FeedRequest, articles: list[Article]
    ) -> FeedResult:
        embeddings = await self.embedder.get_embeddings(articles)
        clusters = kmeans_clustering(embeddings, k=request.num_clusters, rng=self.rng)
        annotation = await self.annotator.analyze_feed(articles, clusters)

        labels = resolve_labels(annotation.cluster_labels, len(clusters))
        if len(annotation.cluster_labels) < len(clusters):
            logger.warning(
                "Annotation returned %d labels for %d clusters; using placeholders",
                len(annotation.cluster_labels),
                len(clusters),
            )

        cluster_of: dict[str, int] = {}
        for cluster in clusters:
            for aid in cluster.article_ids:
                cluster_of[aid] = cluster.id
                self.store.update_article_cluster(aid, cluster.id)

        for aid, sentiment in annotation.article_sentiments.items():
            if aid in cluster_of:
                self.store.update_article_sentiment(aid, sentiment)

        enriched = [
            replace(
                article,
                sentiment=annotation.article_sentiments.get(
                    article.article_id, DEFAULT_SENTIMENT
                ),
                cluster_id=cluster_of[article.article_id],
            )
            for article in articles
        ]
        counts = sentiment_counts(enriched)

        if not request.paginated:
            self.store.save_feed_analysis(
                request.topic,
                request.region,
                annotation.summary,
                annotation.top_keywords,
                counts,
                labels,
                [a.article_id for a in articles],
            )

        return FeedResult(
            summary=annotation.summary,
            top_keywords=annotation.top_keywords,
            clusters=[
                {"id": c.id, "label": labels[c.id], "articleIds": list(c.article_ids)}
                for c in clusters
            ],
            sentiment_counts=counts,
            articles=enriched,
        )

    def cached_snapshot(
        self,
        topic: str,
        region: str,
        limit: int = CACHED_ENDPOINT_ARTICLE_LIMIT,
        max_age_minutes: float = CACHED_ENDPOINT_MAX_AGE_MINUTES,
    ) -> FeedResult | None:
        return snapshot_result(self.store, topic, region, limit, max_age_minutes)

    async def poll_for_new_articles(self, topic: str, region: str) -> int:
        """Best-effort check for newly published articles.

        Runs after a cached response has been sent, so failures are logged
        rather than raised.
        """
        try:
            page = await self.news_client.fetch_news(topic, region)
        except (FeedLensError, httpx.HTTPError) as e:
            logger.warning("Background poll failed for %r/%r: %s", topic, region, e)
            return 0

        known = self.store.known_article_ids(a.article_id for a in page.articles)
        new_articles = [a for a in _dedupe(page.articles) if a.article_id not in known]
        for article in new_articles:
            self.store.upsert_article(article)
        if new_articles:
            logger.info(
                "Background poll found %d new articles for %r/%r",
                len(new_articles),
                topic,
                region,
            )
        return len(new_articles)


def _dedupe(articles: Iterable[Article]) -> list[Article]:
    seen: dict[str, Article] = {}
    for article in articles:
        seen.setdefault(article.article_id, article)
    return list(seen.values())
