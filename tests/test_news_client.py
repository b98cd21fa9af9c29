import httpx
import pytest
import respx
from httpx import Response

from feedlens.constants import NEWS_API_BASE
from feedlens.errors import (
    ConfigurationError,
    ProviderError,
    ProviderUnavailableError,
)
from feedlens.news_client import NewsClient


def _result(article_id, **kwargs):
    item = {
        "article_id": article_id,
        "title": f"Story {article_id}",
        "link": f"https://news.example/{article_id}",
        "description": "Something happened.",
        "content": None,
        "pubDate": "2026-01-15 09:30:00",
        "image_url": None,
        "source_id": "example",
        "source_name": "Example",
        "source_icon": None,
        "country": ["germany"],
        "category": ["technology"],
    }
    item.update(kwargs)
    return item


@pytest.mark.asyncio
@respx.mock
async def test_fetch_news_builds_query_and_filters_duplicates():
    route = respx.get(NEWS_API_BASE).mock(
        return_value=Response(
            200,
            json={
                "status": "success",
                "totalResults": 3,
                "results": [
                    _result("n1"),
                    _result("n2", duplicate=True),
                    _result("n3"),
                    _result("", title="no id"),
                ],
                "nextPage": "cursor-2",
            },
        )
    )

    async with NewsClient("news-key") as news:
        page = await news.fetch_news("climate", "us")

    params = route.calls.last.request.url.params
    assert params["apikey"] == "news-key"
    assert params["q"] == "climate"
    assert params["country"] == "us"
    assert params["language"] == "en"
    assert "page" not in params

    assert [a.article_id for a in page.articles] == ["n1", "n3"]
    assert page.articles[0].pub_date == "2026-01-15 09:30:00"
    assert page.articles[0].cluster_id == -1
    assert page.next_cursor == "cursor-2"


@pytest.mark.asyncio
@respx.mock
async def test_cursor_passed_as_page():
    route = respx.get(NEWS_API_BASE).mock(
        return_value=Response(200, json={"status": "success", "results": []})
    )

    async with httpx.AsyncClient() as client:
        news = NewsClient("news-key", client=client)
        page = await news.fetch_news("ai", "de", cursor="abc")

    assert route.calls.last.request.url.params["page"] == "abc"
    assert page.articles == []
    assert page.next_cursor is None


@pytest.mark.asyncio
@respx.mock
async def test_http_error_raises_provider_error():
    respx.get(NEWS_API_BASE).mock(return_value=Response(401, text="bad key"))

    async with NewsClient("news-key") as news:
        with pytest.raises(ProviderError) as exc_info:
            await news.fetch_news("ai", "de")

    assert exc_info.value.provider == "NewsData"
    assert exc_info.value.status_code == 401
    assert str(exc_info.value) == "NewsData API error: 401 - bad key"


@pytest.mark.asyncio
@respx.mock
async def test_error_status_in_body_raises():
    respx.get(NEWS_API_BASE).mock(
        return_value=Response(200, json={"status": "error", "results": []})
    )

    async with NewsClient("news-key") as news:
        with pytest.raises(ProviderError, match="status 'error'"):
            await news.fetch_news("ai", "de")


@pytest.mark.asyncio
@respx.mock
async def test_missing_key_makes_no_request():
    route = respx.get(NEWS_API_BASE).mock(
        return_value=Response(200, json={"status": "success", "results": []})
    )

    async with NewsClient(None) as news:
        with pytest.raises(ConfigurationError):
            await news.fetch_news("ai", "de")

    assert not route.called


@pytest.mark.asyncio
async def test_shared_client_not_closed():
    async with httpx.AsyncClient() as client:
        async with NewsClient("news-key", client=client):
            pass
        assert not client.is_closed


@pytest.mark.asyncio
@respx.mock
async def test_transport_failure_raises_unavailable():
    respx.get(NEWS_API_BASE).mock(side_effect=httpx.ConnectTimeout("timed out"))

    async with NewsClient("news-key") as news:
        with pytest.raises(ProviderUnavailableError) as exc_info:
            await news.fetch_news("ai", "de")

    assert exc_info.value.provider == "NewsData"
    assert "ConnectTimeout" in str(exc_info.value)


@pytest.mark.asyncio
@respx.mock
async def test_non_json_body_raises_unavailable():
    respx.get(NEWS_API_BASE).mock(return_value=Response(200, text="maintenance"))

    async with NewsClient("news-key") as news:
        with pytest.raises(ProviderUnavailableError, match="not JSON"):
            await news.fetch_news("ai", "de")
