from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

pytest.importorskip("pytest_httpx")

from ingestion.connectors.news_api import NewsAPIConnector
from ingestion.models.domain import FetchFailed, FetchRateLimited, SourceType
from ingestion.services.cooldown import CooldownGate
from ingestion.settings import Settings

BASE = "https://newsapi.org/v2/everything"
TIME_TO = datetime(2025, 1, 2, 12, 0, tzinfo=timezone.utc)
TIME_FROM = TIME_TO - timedelta(hours=6)


@pytest.fixture
def settings(base_env) -> Settings:
    return Settings(
        redis_url="redis://localhost:6379/0",
        postgres_dsn="sqlite:///./var/test.db",
        news_api_key="test-key",
        news_api_endpoint=BASE,
        news_api_page_size=20,
        news_api_lang="ko",
    )


def _article(index: int) -> dict:
    return {
        "source": {"id": None, "name": "Reuters"},
        "author": "Reporter",
        "title": f"Apple headline {index}",
        "description": f"Apple description {index}",
        "url": f"https://ex.com/{index}",
        "publishedAt": f"2025-01-02T0{index}:00:00Z",
    }


def test_newsapi_reads_until_empty_page(httpx_mock, settings):
    httpx_mock.add_response(method="GET", json={"status": "ok", "articles": [_article(1), _article(2)]})
    httpx_mock.add_response(method="GET", json={"status": "ok", "articles": []})

    items = NewsAPIConnector(CooldownGate(), settings).fetch("aapl", TIME_FROM, TIME_TO)

    assert [i.url for i in items] == ["https://ex.com/1", "https://ex.com/2"]
    assert items[0].source == "Reuters"
    assert items[0].source_type is SourceType.NEWS_API
    assert items[0].summary == "Apple description 1"
    assert items[0].published_at == "2025-01-02T01:00:00Z"

    requests = httpx_mock.get_requests()
    assert [r.url.params["page"] for r in requests] == ["1", "2"]
    first = requests[0]
    assert first.headers["X-Api-Key"] == "test-key"
    assert first.url.params["q"] == "AAPL"
    assert first.url.params["language"] == "ko"
    assert first.url.params["pageSize"] == "20"
    assert first.url.params["from"] == "2025-01-02T06:00:00"
    assert first.url.params["to"] == "2025-01-02T12:00:00"


def test_newsapi_stops_after_two_pages(httpx_mock, settings):
    httpx_mock.add_response(method="GET", json={"status": "ok", "articles": [_article(1)]})
    httpx_mock.add_response(method="GET", json={"status": "ok", "articles": [_article(2)]})

    items = NewsAPIConnector(CooldownGate(), settings).fetch("AAPL", TIME_FROM, TIME_TO)

    assert len(items) == 2
    assert len(httpx_mock.get_requests()) == 2


def test_newsapi_rate_limit_enters_cooldown(httpx_mock, settings):
    httpx_mock.add_response(method="GET", status_code=429, json={"status": "error", "code": "rateLimited"})
    gate = CooldownGate()

    outcome = NewsAPIConnector(gate, settings).fetch_outcome("AAPL", TIME_FROM, TIME_TO)

    assert isinstance(outcome, FetchRateLimited)
    assert gate.is_available("news_api") is False


def test_newsapi_error_body_is_provider_error(httpx_mock, settings):
    httpx_mock.add_response(
        method="GET",
        json={"status": "error", "code": "parameterInvalid", "message": "bad from date"},
    )
    gate = CooldownGate()

    outcome = NewsAPIConnector(gate, settings).fetch_outcome("AAPL", TIME_FROM, TIME_TO)

    assert isinstance(outcome, FetchFailed)
    assert outcome.detail == "bad from date"
    assert gate.is_available("news_api") is True


def test_newsapi_server_error_is_provider_error(httpx_mock, settings):
    httpx_mock.add_response(method="GET", status_code=503)

    outcome = NewsAPIConnector(CooldownGate(), settings).fetch_outcome("AAPL", TIME_FROM, TIME_TO)

    assert isinstance(outcome, FetchFailed)
    assert outcome.detail == "HTTP 503"
