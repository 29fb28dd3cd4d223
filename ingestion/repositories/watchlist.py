"""Watchlist persistence: which tickers the fetch job covers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ingestion.db.models import WatchlistTicker
from ingestion.repositories.news import NotFound
from ingestion.utils.logging import get_logger

logger = get_logger(__name__)


class WatchlistRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def _find(self, ticker: str) -> Optional[WatchlistTicker]:
        stmt = select(WatchlistTicker).where(WatchlistTicker.ticker == ticker.upper())
        return self._session.execute(stmt).scalars().first()

    def list_active_tickers(self) -> List[str]:
        stmt = (
            select(WatchlistTicker.ticker)
            .where(WatchlistTicker.is_active.is_(True))
            .order_by(WatchlistTicker.ticker.asc())
        )
        return [row[0] for row in self._session.execute(stmt)]

    def get_ticker(self, ticker: str) -> WatchlistTicker:
        entry = self._find(ticker)
        if entry is None:
            raise NotFound("watchlist ticker", ticker.upper())
        return entry

    def add_ticker(self, ticker: str, name: str | None = None) -> WatchlistTicker:
        """Add a ticker, or reactivate it if it was removed earlier."""
        symbol = ticker.strip().upper()
        if not symbol:
            raise ValueError("ticker는 공백일 수 없습니다.")
        entry = self._find(symbol)
        if entry is None:
            entry = WatchlistTicker(
                ticker=symbol,
                name=name,
                added_at=datetime.now(timezone.utc),
                is_active=True,
            )
            self._session.add(entry)
            logger.info("watchlist.added", extra={"ticker": symbol})
        elif not entry.is_active:
            entry.is_active = True
            if name:
                entry.name = name
            logger.info("watchlist.reactivated", extra={"ticker": symbol})
        self._session.flush()
        return entry

    def remove_ticker(self, ticker: str) -> WatchlistTicker:
        """Deactivate a ticker; its news and snapshot rows are kept."""
        entry = self.get_ticker(ticker)
        entry.is_active = False
        self._session.flush()
        logger.info("watchlist.deactivated", extra={"ticker": entry.ticker})
        return entry
