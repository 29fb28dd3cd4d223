from __future__ import annotations

from datetime import datetime
from typing import Dict, List

import pytest

from ingestion.connectors.base import SourceFetcher
from ingestion.db import session_scope
from ingestion.db.models import JobRun, JobStage, JobStatus, NewsRecord
from ingestion.db.session import ensure_schema
from ingestion.models.domain import RawNewsItem, SourceType
from ingestion.repositories.watchlist import WatchlistRepository
from ingestion.services.cooldown import CooldownGate
from ingestion.services.orchestrator import FetchOrchestrator
from ingestion.tasks import fetch as fetch_module


class StubFetcher(SourceFetcher):
    source_type = SourceType.NEWS_API

    def __init__(self, gate: CooldownGate, news: Dict[str, List[RawNewsItem]], *, credentials: bool = True) -> None:
        super().__init__(gate)
        self._news = news
        self._credentials = credentials
        self.windows: List[tuple] = []

    def has_credentials(self) -> bool:
        return self._credentials

    def _fetch_raw(self, ticker: str, time_from: datetime, time_to: datetime) -> List[RawNewsItem]:
        self.windows.append((ticker, time_from, time_to))
        return list(self._news.get(ticker, []))


def _item(title: str, url: str) -> RawNewsItem:
    return RawNewsItem(title=title, url=url, source_type=SourceType.NEWS_API, published_at="20250102T100000")


@pytest.fixture
def db(base_env):
    ensure_schema()
    return base_env


def _install(monkeypatch, orchestrator) -> None:
    monkeypatch.setattr(fetch_module, "ORCHESTRATOR_FACTORY", lambda: orchestrator)


def _news_rows() -> List[NewsRecord]:
    with session_scope() as session:
        return session.query(NewsRecord).order_by(NewsRecord.title).all()


def test_fetch_news_for_ticker_saves_new_items_only(db, monkeypatch):
    fetcher = StubFetcher(
        CooldownGate(),
        {"AAPL": [_item("Apple beats estimates", "https://n/1"), _item("Fed holds rates", "https://n/2")]},
    )
    _install(monkeypatch, FetchOrchestrator([fetcher]))

    first = fetch_module.fetch_news_for_ticker_core("aapl", hours=12)
    second = fetch_module.fetch_news_for_ticker_core("AAPL", hours=12)

    assert first["success"] is True
    assert first["ticker"] == "AAPL"
    assert first["saved"] == 2
    assert first["found"] == 2
    assert second["saved"] == 0
    assert second["found"] == 2

    ticker, time_from, time_to = fetcher.windows[0]
    assert ticker == "AAPL"
    assert (time_to - time_from).total_seconds() == 12 * 3600

    rows = _news_rows()
    assert [r.ticker for r in rows] == ["AAPL", "AAPL"]

    with session_scope() as session:
        runs = session.query(JobRun).filter(JobRun.job_id == fetch_module.ticker_job_id("AAPL")).all()
    assert len(runs) == 2
    assert all(r.stage is JobStage.FETCH and r.status is JobStatus.SUCCEEDED for r in runs)


def test_fetch_news_for_ticker_defaults_to_configured_window(db, monkeypatch):
    fetcher = StubFetcher(CooldownGate(), {})
    _install(monkeypatch, FetchOrchestrator([fetcher]))

    result = fetch_module.fetch_news_for_ticker_core("MSFT")

    assert result["success"] is True
    assert result["saved"] == 0
    _ticker, time_from, time_to = fetcher.windows[0]
    assert (time_to - time_from).total_seconds() == 24 * 3600


def test_fetch_all_news_covers_active_watchlist(db, monkeypatch):
    with session_scope() as session:
        repo = WatchlistRepository(session)
        repo.add_ticker("AAPL")
        repo.add_ticker("TSLA")
        repo.add_ticker("MSFT")
        repo.remove_ticker("MSFT")

    fetcher = StubFetcher(
        CooldownGate(),
        {
            "AAPL": [_item("Apple beats estimates", "https://n/1")],
            "TSLA": [_item("Tesla recalls vehicles", "https://n/2"), _item("Tesla opens plant", "https://n/3")],
            "MSFT": [_item("Microsoft cloud", "https://n/4")],
        },
    )
    _install(monkeypatch, FetchOrchestrator([fetcher]))

    result = fetch_module.fetch_all_news_core()

    assert result["success"] is True
    assert result["tickers_processed"] == 2
    assert result["total_saved"] == 3
    assert result["error_count"] == 0
    assert sorted(w[0] for w in fetcher.windows) == ["AAPL", "TSLA"]
    assert all((w[2] - w[1]).total_seconds() == 6 * 3600 for w in fetcher.windows)


def test_fetch_all_news_skips_when_no_source_available(db, monkeypatch):
    gate = CooldownGate()
    gate.enter_cooldown("news_api", "429", 60)
    fetcher = StubFetcher(gate, {"AAPL": [_item("x", "https://n/x")]})
    _install(monkeypatch, FetchOrchestrator([fetcher]))

    result = fetch_module.fetch_all_news_core()

    assert result == {"success": False, "reason": "no_source_available"}
    assert fetcher.windows == []


class _PartlyBrokenOrchestrator:
    def available_sources(self) -> List[str]:
        return ["news_api"]

    def fetch_all(self, ticker, time_from, time_to, source_filter=None):  # noqa: ANN001
        if ticker == "BAD":
            raise RuntimeError("orchestrator exploded")
        return [_item(f"{ticker} headline", f"https://n/{ticker}")]


def test_fetch_all_news_counts_failing_ticker_and_continues(db, monkeypatch):
    with session_scope() as session:
        repo = WatchlistRepository(session)
        for symbol in ("AAPL", "BAD", "TSLA"):
            repo.add_ticker(symbol)
    _install(monkeypatch, _PartlyBrokenOrchestrator())

    result = fetch_module.fetch_all_news_core()

    assert result["success"] is True
    assert result["tickers_processed"] == 3
    assert result["error_count"] == 1
    assert result["total_saved"] == 2
    assert {r.ticker for r in _news_rows()} == {"AAPL", "TSLA"}


def test_fetch_news_for_ticker_reports_failure(db, monkeypatch):
    _install(monkeypatch, _PartlyBrokenOrchestrator())

    result = fetch_module.fetch_news_for_ticker_core("bad")

    assert result["success"] is False
    assert result["ticker"] == "BAD"
    assert "orchestrator exploded" in result["error"]

    with session_scope() as session:
        run = session.query(JobRun).filter(JobRun.job_id == "fetch_news_ticker:BAD").one()
    assert run.status is JobStatus.FAILED
