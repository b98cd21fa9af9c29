from datetime import UTC, datetime, timedelta

import numpy as np
import pytest

from feedlens.models import Article
from feedlens.store import AnalysisStore


class FakeClock:
    """Controllable wall clock for snapshot freshness tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now += timedelta(minutes=minutes)


def make_article(article_id: str, title: str | None = None, **kwargs) -> Article:
    defaults = {
        "link": f"https://example.com/{article_id}",
        "pub_date": "2026-01-15 10:00:00",
        "description": f"Description for {article_id}",
        "source_id": "example",
        "source_name": "Example News",
        "country": ["germany"],
        "category": ["technology"],
    }
    defaults.update(kwargs)
    return Article(article_id=article_id, title=title or f"Title {article_id}", **defaults)


class FixedChoice:
    """Stands in for np.random.Generator to pin the initial centroids."""

    def __init__(self, indices: list[int]) -> None:
        self.indices = indices

    def choice(self, n, size, replace=False):
        assert size == len(self.indices)
        return np.array(self.indices)


def unit(vec) -> np.ndarray:
    arr = np.asarray(vec, dtype=np.float32)
    return arr / np.linalg.norm(arr)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    s = AnalysisStore(":memory:", clock=clock)
    yield s
    s.close()


@pytest.fixture
def articles():
    return [make_article(f"a{i}") for i in range(6)]
