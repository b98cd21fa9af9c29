from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import httpx

from feedlens.constants import (
    ANNOTATION_CACHE_TTL,
    ANNOTATION_DESCRIPTION_MAX_CHARS,
    ANNOTATION_KEYWORD_COUNT,
    ANNOTATION_SUMMARY_MAX_BULLETS,
    ANNOTATION_SUMMARY_MIN_BULLETS,
    LLM_ANNOTATION_MAX_TOKENS,
    LLM_ANNOTATION_MODEL,
    LLM_API_URL,
)
from feedlens.errors import (
    AnnotationParseError,
    ConfigurationError,
    EmptyResponseError,
    ProviderError,
    ProviderUnavailableError,
)
from feedlens.llm_utils import build_headers, build_payload, extract_message_content
from feedlens.models import Article, Cluster, Sentiment, is_sentiment
from feedlens.parsing import parse_llm_json

logger = logging.getLogger(__name__)


@dataclass
class FeedAnnotation:
    summary: str
    top_keywords: list[str] = field(default_factory=list)
    cluster_labels: list[str] = field(default_factory=list)
    article_sentiments: dict[str, Sentiment] = field(default_factory=dict)


@dataclass
class _CacheEntry:
    raw: str
    expires_at: float


class AnnotationCache:
    """Short-lived cache of raw annotation responses keyed by article set.

    Expired entries are dropped lazily when read.
    """

    def __init__(
        self,
        ttl_seconds: float = ANNOTATION_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, ...], _CacheEntry] = {}

    @staticmethod
    def key(article_ids: Sequence[str]) -> tuple[str, ...]:
        return tuple(sorted(set(article_ids)))

    def get(self, article_ids: Sequence[str]) -> str | None:
        key = self.key(article_ids)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.raw

    def put(self, article_ids: Sequence[str], raw: str) -> None:
        self._entries[self.key(article_ids)] = _CacheEntry(
            raw=raw, expires_at=self._clock() + self.ttl_seconds
        )

    def __len__(self) -> int:
        return len(self._entries)


def _truncate(text: str | None, limit: int) -> str:
    if not text:
        return ""
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit].rstrip() + "..."


def build_feed_prompt(articles: Sequence[Article], clusters: Sequence[Cluster]) -> str:
    by_id = {a.article_id: a for a in articles}
    groups: list[str] = []
    grouped: set[str] = set()

    def _line(article: Article) -> str:
        desc = _truncate(article.description, ANNOTATION_DESCRIPTION_MAX_CHARS)
        suffix = f" - {desc}" if desc else ""
        return f'[{article.article_id}] "{article.title}"{suffix}'

    for cluster in clusters:
        lines = [_line(by_id[aid]) for aid in cluster.article_ids if aid in by_id]
        grouped.update(cluster.article_ids)
        groups.append(f"Cluster {cluster.id}:\n" + "\n".join(lines))

    ungrouped = [a for a in articles if a.article_id not in grouped]
    if ungrouped:
        groups.append("Unclustered:\n" + "\n".join(_line(a) for a in ungrouped))

    n_clusters = len(clusters)
    return f"""Analyze this news feed and provide:

1. A structured summary ("The Brief") with {ANNOTATION_SUMMARY_MIN_BULLETS}-{ANNOTATION_SUMMARY_MAX_BULLETS} bullet points, each covering a key story or theme. Format as a markdown list with "- " prefixes.
2. The top {ANNOTATION_KEYWORD_COUNT} keywords/topics across all articles.
3. A specific, descriptive label (3-6 words) for each of the {n_clusters} clusters below, in cluster order (label i describes Cluster i). Prefer names, companies, events or locations over generic labels.
4. Sentiment (positive/neutral/negative) for each article.

Articles grouped by cluster:
{chr(10).join(groups)}

Return JSON in this exact format:
```json
{{
  "summary": "- First bullet\\n- Second bullet\\n- Third bullet",
  "topKeywords": ["keyword1", "keyword2"],
  "clusterLabels": ["Label for Cluster 0", "Label for Cluster 1"],
  "articleSentiments": [
    {{"articleId": "xxx", "sentiment": "positive"}}
  ]
}}
```

Return ONLY the JSON, no other text."""


def _string_list(value: object, name: str, raw: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise AnnotationParseError(f"Annotation field '{name}' is not a list", raw)
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def parse_feed_annotation(raw: str) -> FeedAnnotation:
    """Interpret a raw provider response as a FeedAnnotation."""
    result = parse_llm_json(raw)
    if not result.ok:
        logger.error("Failed to parse annotation response (%s): %s", result.error, raw)
        raise AnnotationParseError("Could not parse annotation response", raw)

    parsed = result.value
    if not isinstance(parsed, dict):
        logger.error("Annotation response is not a JSON object: %s", raw)
        raise AnnotationParseError("Could not parse annotation response", raw)

    summary = parsed.get("summary")
    if not isinstance(summary, str):
        raise AnnotationParseError("Annotation response is missing a summary", raw)

    cluster_labels = _string_list(parsed.get("clusterLabels"), "clusterLabels", raw)
    if not cluster_labels and isinstance(parsed.get("clusters"), list):
        cluster_labels = [
            str(c.get("label", "")).strip()
            for c in parsed["clusters"]
            if isinstance(c, dict)
        ]

    sentiments: dict[str, Sentiment] = {}
    items = parsed.get("articleSentiments") or []
    if not isinstance(items, list):
        raise AnnotationParseError("Annotation field 'articleSentiments' is not a list", raw)
    for item in items:
        if not isinstance(item, dict) or "articleId" not in item:
            raise AnnotationParseError(f"Malformed sentiment entry: {item!r}", raw)
        sentiment = item.get("sentiment")
        if isinstance(sentiment, str):
            sentiment = sentiment.strip().lower()
        if not is_sentiment(sentiment):
            raise AnnotationParseError(
                f"Unknown sentiment {item.get('sentiment')!r} for article {item['articleId']}",
                raw,
            )
        sentiments[str(item["articleId"])] = sentiment

    return FeedAnnotation(
        summary=summary,
        top_keywords=_string_list(parsed.get("topKeywords"), "topKeywords", raw),
        cluster_labels=cluster_labels,
        article_sentiments=sentiments,
    )


class Annotator:
    """Asks a chat model for the feed narrative, labels and sentiments."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str | None,
        cache: AnnotationCache | None = None,
        model: str = LLM_ANNOTATION_MODEL,
        url: str = LLM_API_URL,
        max_tokens: int = LLM_ANNOTATION_MAX_TOKENS,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.cache = cache
        self.model = model
        self.url = url
        self.max_tokens = max_tokens

    async def analyze_feed(
        self, articles: Sequence[Article], clusters: Sequence[Cluster]
    ) -> FeedAnnotation:
        if not self.api_key:
            raise ConfigurationError("OPENROUTER_API_KEY not configured")

        article_ids = [a.article_id for a in articles]
        raw = self.cache.get(article_ids) if self.cache is not None else None
        if raw is not None:
            logger.info("Annotation cache hit for %d articles", len(article_ids))
            return parse_feed_annotation(raw)

        logger.info(
            "Analyzing feed: %d articles in %d clusters", len(articles), len(clusters)
        )
        raw = await self._complete(build_feed_prompt(articles, clusters))
        annotation = parse_feed_annotation(raw)
        if self.cache is not None:
            self.cache.put(article_ids, raw)

        logger.info("Feed analysis complete: %r", annotation.summary[:50])
        return annotation

    async def _complete(self, prompt: str) -> str:
        payload = build_payload(self.model, prompt, max_tokens=self.max_tokens)
        try:
            resp = await self.client.post(
                self.url, headers=build_headers(self.api_key or ""), json=payload
            )
        except httpx.HTTPError as e:
            logger.error("Annotation request failed: %r", e)
            raise ProviderUnavailableError("OpenRouter", repr(e)) from e
        if resp.status_code != 200:
            logger.error("Annotation API error %d: %s", resp.status_code, resp.text)
            raise ProviderError("OpenRouter", resp.status_code, resp.text)

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderUnavailableError("OpenRouter", "response is not JSON") from e
        content = extract_message_content(data)
        if content is None:
            raise EmptyResponseError("No response content from annotation provider")
        return content
