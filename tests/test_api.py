from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import make_article
from feedlens.errors import (
    AnnotationParseError,
    ConfigurationError,
    EmptyResponseError,
    ProviderError,
    ProviderUnavailableError,
)
from feedlens.main import app, get_orchestrator
from feedlens.models import FeedResult
from feedlens.news_client import NewsPage
from feedlens.orchestrator import FeedRequest


def _result(cached=False, next_page=None):
    articles = [
        make_article("a0", sentiment="positive", cluster_id=0),
        make_article("a1", cluster_id=0),
    ]
    return FeedResult(
        summary="- Brief",
        top_keywords=["ai"],
        clusters=[{"id": 0, "label": "Models", "articleIds": ["a0", "a1"]}],
        sentiment_counts={"positive": 1, "neutral": 1, "negative": 0},
        articles=articles,
        next_page=next_page,
        cached=cached,
    )


@pytest.fixture
def orchestrator():
    orch = MagicMock()
    orch.analyze = AsyncMock(return_value=_result())
    orch.poll_for_new_articles = AsyncMock(return_value=0)
    orch.news_client.fetch_news = AsyncMock(
        return_value=NewsPage(articles=[make_article("n1")], next_cursor="next")
    )
    orch.cached_snapshot = MagicMock(return_value=None)
    return orch


@pytest.fixture
def client(orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert "timestamp" in resp.json()


def test_feed_envelope(client, orchestrator):
    resp = client.post("/api/feed", json={"topic": "chips", "region": "us"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["summary"] == "- Brief"
    assert body["topKeywords"] == ["ai"]
    assert body["clusters"][0]["articleIds"] == ["a0", "a1"]
    assert body["sentimentCounts"] == {"positive": 1, "neutral": 1, "negative": 0}
    assert body["articles"][0]["pubDate"] == "2026-01-15 10:00:00"
    assert body["articles"][0]["clusterId"] == 0
    assert body["cached"] is False
    assert body["nextPage"] is None

    request = orchestrator.analyze.await_args.args[0]
    assert request == FeedRequest(topic="chips", region="us")


def test_feed_defaults(client, orchestrator):
    client.post("/api/feed", json={})

    request = orchestrator.analyze.await_args.args[0]
    assert request.topic == "artificial intelligence"
    assert request.region == "de"
    assert request.num_clusters == 3
    assert request.use_cache is True


def test_feed_passes_article_ids_and_page(client, orchestrator):
    client.post(
        "/api/feed",
        json={"article_ids": ["x", "y"], "page": "p2", "num_clusters": 4, "use_cache": False},
    )

    request = orchestrator.analyze.await_args.args[0]
    assert request.article_ids == ["x", "y"]
    assert request.page == "p2"
    assert request.num_clusters == 4
    assert request.use_cache is False


def test_cached_feed_schedules_poll(client, orchestrator):
    orchestrator.analyze.return_value = _result(cached=True)

    resp = client.post("/api/feed", json={"topic": "chips", "region": "us"})

    assert resp.json()["cached"] is True
    orchestrator.poll_for_new_articles.assert_awaited_once_with("chips", "us")


def test_fresh_feed_does_not_poll(client, orchestrator):
    client.post("/api/feed", json={"topic": "chips"})
    orchestrator.poll_for_new_articles.assert_not_awaited()


def test_cached_id_set_does_not_poll(client, orchestrator):
    orchestrator.analyze.return_value = _result(cached=True)
    client.post("/api/feed", json={"article_ids": ["a0", "a1"]})
    orchestrator.poll_for_new_articles.assert_not_awaited()


@pytest.mark.parametrize(
    "error, status",
    [
        (ConfigurationError("OPENROUTER_API_KEY not configured"), 500),
        (ProviderError("NewsData", 401, "bad key"), 502),
        (EmptyResponseError("No response content"), 502),
        (AnnotationParseError("Could not parse annotation response"), 502),
        (ProviderUnavailableError("OpenRouter", "ReadTimeout('timed out')"), 502),
    ],
)
def test_feed_errors_map_to_status(client, orchestrator, error, status):
    orchestrator.analyze.side_effect = error

    resp = client.post("/api/feed", json={})

    assert resp.status_code == status
    assert resp.json() == {"success": False, "error": str(error)}


@pytest.mark.parametrize("num_clusters", [0, 11, "many"])
def test_invalid_cluster_count_rejected(client, orchestrator, num_clusters):
    resp = client.post("/api/feed", json={"num_clusters": num_clusters})

    assert resp.status_code == 400
    assert resp.json()["success"] is False
    orchestrator.analyze.assert_not_awaited()


def test_news_route(client, orchestrator):
    resp = client.get("/api/news", params={"topic": "chips", "country": "us", "page": "p1"})

    body = resp.json()
    assert body["success"] is True
    assert body["count"] == 1
    assert body["articles"][0]["article_id"] == "n1"
    assert body["nextPage"] == "next"
    orchestrator.news_client.fetch_news.assert_awaited_once_with("chips", "us", "p1")


def test_news_route_provider_error(client, orchestrator):
    orchestrator.news_client.fetch_news.side_effect = ProviderError("NewsData", 500, "x")
    resp = client.get("/api/news")
    assert resp.status_code == 502


def test_cached_route_without_snapshot(client, orchestrator):
    resp = client.get("/api/cached", params={"topic": "chips", "region": "us"})

    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "cached": False,
        "articles": [],
        "summary": "",
        "topKeywords": [],
        "clusters": [],
        "sentimentCounts": {"positive": 0, "neutral": 0, "negative": 0},
        "nextPage": None,
    }
    orchestrator.cached_snapshot.assert_called_once_with("chips", "us")


def test_cached_route_with_snapshot(client, orchestrator):
    orchestrator.cached_snapshot.return_value = _result(cached=True)

    body = client.get("/api/cached").json()

    assert body["cached"] is True
    assert body["summary"] == "- Brief"
    assert len(body["articles"]) == 2
    orchestrator.poll_for_new_articles.assert_not_awaited()


@pytest.mark.parametrize(
    "error", [httpx.ConnectTimeout("timed out"), httpx.ConnectError("refused")]
)
def test_unwrapped_transport_error_is_json(orchestrator, error):
    orchestrator.analyze.side_effect = error
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    try:
        resp = TestClient(app, raise_server_exceptions=False).post("/api/feed", json={})
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 502
    body = resp.json()
    assert body["success"] is False
    assert "Upstream request failed" in body["error"]
