"""Typed data models for feed analysis."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, TypeAlias, TypedDict

import numpy as np
from numpy.typing import NDArray

from feedlens.constants import DEFAULT_SENTIMENT, SENTIMENTS, UNASSIGNED_CLUSTER

Sentiment: TypeAlias = Literal["positive", "neutral", "negative"]


def is_sentiment(value: object) -> bool:
    return isinstance(value, str) and value in SENTIMENTS


class ArticleDict(TypedDict):
    """Serialized article payload for API boundaries (NewsData.io keys)."""

    article_id: str
    title: str
    link: str
    description: Optional[str]
    content: Optional[str]
    pubDate: str
    image_url: Optional[str]
    source_id: str
    source_name: str
    source_icon: Optional[str]
    country: list[str]
    category: list[str]
    sentiment: str
    clusterId: int


class SentimentCounts(TypedDict):
    positive: int
    neutral: int
    negative: int


class ClusterDict(TypedDict):
    id: int
    label: str
    articleIds: list[str]


class FeedResultDict(TypedDict):
    summary: str
    topKeywords: list[str]
    clusters: list[ClusterDict]
    sentimentCounts: SentimentCounts
    articles: list[ArticleDict]
    nextPage: Optional[str]
    cached: bool


def _tag_list(value: object) -> list[str]:
    if isinstance(value, list):
        return [str(v) for v in value if v is not None]
    if isinstance(value, str) and value:
        return [value]
    return []


@dataclass
class Article:
    """A news article plus the fields derived by the pipeline."""

    article_id: str
    title: str
    link: str
    pub_date: str
    description: Optional[str] = None
    content: Optional[str] = None
    image_url: Optional[str] = None
    source_id: str = ""
    source_name: str = ""
    source_icon: Optional[str] = None
    country: list[str] = field(default_factory=list)
    category: list[str] = field(default_factory=list)
    sentiment: Sentiment = DEFAULT_SENTIMENT
    cluster_id: int = UNASSIGNED_CLUSTER

    @classmethod
    def from_dict(cls, d: dict) -> Article:
        """Create Article from a provider result or a serialized ArticleDict."""
        sentiment = d.get("sentiment")
        cluster_id = d.get("clusterId", d.get("cluster_id"))
        return cls(
            article_id=str(d.get("article_id", "")),
            title=str(d.get("title") or ""),
            link=str(d.get("link") or ""),
            pub_date=str(d.get("pubDate") or d.get("pub_date") or ""),
            description=d.get("description"),
            content=d.get("content"),
            image_url=d.get("image_url"),
            source_id=str(d.get("source_id") or ""),
            source_name=str(d.get("source_name") or ""),
            source_icon=d.get("source_icon"),
            country=_tag_list(d.get("country")),
            category=_tag_list(d.get("category")),
            sentiment=sentiment if is_sentiment(sentiment) else DEFAULT_SENTIMENT,
            cluster_id=int(cluster_id) if cluster_id is not None else UNASSIGNED_CLUSTER,
        )

    def to_dict(self) -> ArticleDict:
        """Serialize to the NewsData.io-shaped payload used by clients."""
        return {
            "article_id": self.article_id,
            "title": self.title,
            "link": self.link,
            "description": self.description,
            "content": self.content,
            "pubDate": self.pub_date,
            "image_url": self.image_url,
            "source_id": self.source_id,
            "source_name": self.source_name,
            "source_icon": self.source_icon,
            "country": self.country,
            "category": self.category,
            "sentiment": self.sentiment,
            "clusterId": self.cluster_id,
        }

    @property
    def embedding_text(self) -> str:
        return f"{self.title}. {self.description or ''}"


@dataclass
class Cluster:
    """A group of articles assigned to one centroid."""

    id: int
    article_ids: list[str]
    centroid: NDArray[np.float32]


@dataclass
class ArticleAnalysis:
    """Stored sentiment/cluster for one article.

    ``has_sentiment`` is False when ``sentiment`` is only the neutral default.
    """

    sentiment: Sentiment = DEFAULT_SENTIMENT
    cluster_id: int = 0
    has_sentiment: bool = False


@dataclass
class FeedAnalysis:
    """An immutable snapshot of one analysis pass for a topic/region."""

    topic: str
    region: str
    summary: str
    top_keywords: list[str]
    sentiment_counts: SentimentCounts
    cluster_labels: list[str]
    article_ids: list[str]
    created_at: str


@dataclass
class CachedFeed:
    articles: list[Article]
    analysis: FeedAnalysis


@dataclass
class FeedResult:
    """Assembled response for a feed-analysis request."""

    summary: str
    top_keywords: list[str]
    clusters: list[ClusterDict]
    sentiment_counts: SentimentCounts
    articles: list[Article]
    next_page: Optional[str] = None
    cached: bool = False

    def to_dict(self) -> FeedResultDict:
        return {
            "summary": self.summary,
            "topKeywords": self.top_keywords,
            "clusters": self.clusters,
            "sentimentCounts": self.sentiment_counts,
            "articles": [a.to_dict() for a in self.articles],
            "nextPage": self.next_page,
            "cached": self.cached,
        }

    @classmethod
    def empty(cls, next_page: Optional[str] = None) -> FeedResult:
        return cls(
            summary="",
            top_keywords=[],
            clusters=[],
            sentiment_counts={"positive": 0, "neutral": 0, "negative": 0},
            articles=[],
            next_page=next_page,
        )
