"""SQLite-backed store for articles, embeddings and feed snapshots."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from feedlens.constants import (
    CACHED_ENDPOINT_ARTICLE_LIMIT,
    CACHED_ENDPOINT_MAX_AGE_MINUTES,
    DEFAULT_SENTIMENT,
    FEED_CACHE_MAX_AGE_MINUTES,
)
from feedlens.models import (
    Article,
    ArticleAnalysis,
    CachedFeed,
    FeedAnalysis,
    SentimentCounts,
    is_sentiment,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS articles (
    article_id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    link TEXT NOT NULL,
    description TEXT,
    content TEXT,
    pub_date TEXT NOT NULL,
    image_url TEXT,
    source_id TEXT,
    source_name TEXT,
    source_icon TEXT,
    country TEXT,
    category TEXT,
    sentiment TEXT,
    embedding BLOB,
    cluster_id INTEGER,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS feed_analyses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    topic TEXT NOT NULL,
    region TEXT NOT NULL,
    summary TEXT NOT NULL,
    top_keywords TEXT NOT NULL,
    sentiment_counts TEXT NOT NULL,
    cluster_labels TEXT NOT NULL,
    article_ids TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_articles_sentiment ON articles(sentiment);
CREATE INDEX IF NOT EXISTS idx_articles_cluster ON articles(cluster_id);
CREATE INDEX IF NOT EXISTS idx_feed_topic_region
    ON feed_analyses(topic, region, created_at);
"""

_ARTICLE_COLUMNS = (
    "article_id, title, link, description, content, pub_date, image_url, "
    "source_id, source_name, source_icon, country, category, sentiment, cluster_id"
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _placeholders(n: int) -> str:
    return ",".join("?" for _ in range(n))


def _load_tags(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return [raw]
    if isinstance(value, list):
        return [str(v) for v in value]
    return [str(value)]


def _row_to_article(row: sqlite3.Row) -> Article:
    sentiment = row["sentiment"]
    cluster_id = row["cluster_id"]
    return Article(
        article_id=row["article_id"],
        title=row["title"],
        link=row["link"],
        pub_date=row["pub_date"],
        description=row["description"],
        content=row["content"],
        image_url=row["image_url"],
        source_id=row["source_id"] or "",
        source_name=row["source_name"] or "",
        source_icon=row["source_icon"],
        country=_load_tags(row["country"]),
        category=_load_tags(row["category"]),
        sentiment=sentiment if is_sentiment(sentiment) else DEFAULT_SENTIMENT,
        cluster_id=cluster_id if cluster_id is not None else 0,
    )


class AnalysisStore:
    """Persists articles, their derived analysis, and feed snapshots.

    Every write is committed before the call returns, so callers sharing the
    store in one process see each other's writes immediately.
    """

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.db_path = str(db_path)
        self._clock = clock or _utcnow
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            if self.db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.executescript(_SCHEMA)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _execute(self, sql: str, params: Sequence[object] = ()) -> None:
        with self._lock:
            self._conn.execute(sql, params)
            self._conn.commit()

    def _query(self, sql: str, params: Sequence[object] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    # Articles

    def upsert_article(self, article: Article) -> None:
        """Insert an article, or refresh its content fields if already known.

        Identity fields and derived fields (sentiment, cluster, embedding) are
        left untouched on update.
        """
        self._execute(
            """
            INSERT INTO articles (article_id, title, link, description, content,
                pub_date, image_url, source_id, source_name, source_icon,
                country, category)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(article_id) DO UPDATE SET
                title = excluded.title,
                description = excluded.description,
                content = excluded.content
            """,
            (
                article.article_id,
                article.title,
                article.link,
                article.description,
                article.content,
                article.pub_date,
                article.image_url,
                article.source_id,
                article.source_name,
                article.source_icon,
                json.dumps(article.country),
                json.dumps(article.category),
            ),
        )

    def update_article_sentiment(self, article_id: str, sentiment: str) -> None:
        if not is_sentiment(sentiment):
            raise ValueError(f"Invalid sentiment: {sentiment!r}")
        self._execute(
            "UPDATE articles SET sentiment = ? WHERE article_id = ?",
            (sentiment, article_id),
        )

    def update_article_cluster(self, article_id: str, cluster_id: int) -> None:
        self._execute(
            "UPDATE articles SET cluster_id = ? WHERE article_id = ?",
            (int(cluster_id), article_id),
        )

    def update_article_embedding(
        self, article_id: str, embedding: Sequence[float] | NDArray[np.floating]
    ) -> None:
        blob = np.asarray(embedding, dtype=np.float32).tobytes()
        self._execute(
            "UPDATE articles SET embedding = ? WHERE article_id = ?",
            (blob, article_id),
        )

    def get_article_embedding(self, article_id: str) -> NDArray[np.float32] | None:
        rows = self._query(
            "SELECT embedding FROM articles WHERE article_id = ?", (article_id,)
        )
        if not rows or rows[0]["embedding"] is None:
            return None
        return np.frombuffer(rows[0]["embedding"], dtype=np.float32).copy()

    def known_article_ids(self, article_ids: Iterable[str]) -> set[str]:
        ids = list(article_ids)
        if not ids:
            return set()
        rows = self._query(
            f"SELECT article_id FROM articles WHERE article_id IN ({_placeholders(len(ids))})",
            ids,
        )
        return {row["article_id"] for row in rows}

    def get_articles_by_ids(self, article_ids: Sequence[str]) -> list[Article]:
        """Load articles in input order; unknown ids are skipped."""
        if not article_ids:
            return []
        rows = self._query(
            f"SELECT {_ARTICLE_COLUMNS} FROM articles "
            f"WHERE article_id IN ({_placeholders(len(article_ids))})",
            list(article_ids),
        )
        by_id = {row["article_id"]: _row_to_article(row) for row in rows}
        return [by_id[aid] for aid in dict.fromkeys(article_ids) if aid in by_id]

    def get_article_analysis(self, article_ids: Sequence[str]) -> dict[str, ArticleAnalysis]:
        """Stored sentiment and cluster per known article.

        Absent sentiment defaults to neutral and absent cluster to 0;
        ``has_sentiment`` tells the two kinds of neutral apart.
        """
        if not article_ids:
            return {}
        rows = self._query(
            "SELECT article_id, sentiment, cluster_id FROM articles "
            f"WHERE article_id IN ({_placeholders(len(article_ids))})",
            list(article_ids),
        )
        result: dict[str, ArticleAnalysis] = {}
        for row in rows:
            sentiment = row["sentiment"]
            has_sentiment = is_sentiment(sentiment)
            result[row["article_id"]] = ArticleAnalysis(
                sentiment=sentiment if has_sentiment else DEFAULT_SENTIMENT,
                cluster_id=row["cluster_id"] if row["cluster_id"] is not None else 0,
                has_sentiment=has_sentiment,
            )
        return result

    def sentiment_coverage(self, article_ids: Sequence[str]) -> float:
        """Fraction of the given articles that carry a stored sentiment."""
        unique_ids = list(dict.fromkeys(article_ids))
        if not unique_ids:
            return 0.0
        analysis = self.get_article_analysis(unique_ids)
        analyzed = sum(1 for a in analysis.values() if a.has_sentiment)
        return analyzed / len(unique_ids)

    def count_articles(self) -> int:
        return int(self._query("SELECT COUNT(*) AS n FROM articles")[0]["n"])

    # Feed snapshots

    def save_feed_analysis(
        self,
        topic: str,
        region: str,
        summary: str,
        top_keywords: Sequence[str],
        sentiment_counts: SentimentCounts,
        cluster_labels: Sequence[str],
        article_ids: Sequence[str],
    ) -> None:
        self._execute(
            """
            INSERT INTO feed_analyses (topic, region, summary, top_keywords,
                sentiment_counts, cluster_labels, article_ids, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                topic,
                region,
                summary,
                json.dumps(list(top_keywords)),
                json.dumps(dict(sentiment_counts)),
                json.dumps(list(cluster_labels)),
                json.dumps(list(article_ids)),
                self._clock().isoformat(timespec="microseconds"),
            ),
        )

    def get_recent_feed_analysis(
        self,
        topic: str,
        region: str,
        max_age_minutes: float = FEED_CACHE_MAX_AGE_MINUTES,
    ) -> FeedAnalysis | None:
        cutoff = (self._clock() - timedelta(minutes=max_age_minutes)).isoformat(
            timespec="microseconds"
        )
        rows = self._query(
            """
            SELECT * FROM feed_analyses
            WHERE topic = ? AND region = ? AND created_at > ?
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """,
            (topic, region, cutoff),
        )
        if not rows:
            return None
        row = rows[0]
        return FeedAnalysis(
            topic=row["topic"],
            region=row["region"],
            summary=row["summary"],
            top_keywords=json.loads(row["top_keywords"]),
            sentiment_counts=json.loads(row["sentiment_counts"]),
            cluster_labels=json.loads(row["cluster_labels"]),
            article_ids=json.loads(row["article_ids"]),
            created_at=row["created_at"],
        )

    def get_cached_articles(
        self,
        topic: str,
        region: str,
        limit: int = CACHED_ENDPOINT_ARTICLE_LIMIT,
        max_age_minutes: float = CACHED_ENDPOINT_MAX_AGE_MINUTES,
    ) -> CachedFeed | None:
        """Most recently published analyzed articles plus the latest snapshot."""
        analysis = self.get_recent_feed_analysis(topic, region, max_age_minutes)
        if analysis is None or not analysis.article_ids:
            return None

        # Restricted to the snapshot's own articles so topics don't bleed together.
        ids = list(dict.fromkeys(analysis.article_ids))
        rows = self._query(
            f"""
            SELECT {_ARTICLE_COLUMNS} FROM articles
            WHERE sentiment IS NOT NULL AND article_id IN ({_placeholders(len(ids))})
            ORDER BY pub_date DESC
            LIMIT ?
            """,
            (*ids, limit),
        )
        if not rows:
            return None
        return CachedFeed(
            articles=[_row_to_article(row) for row in rows], analysis=analysis
        )
