"""Repository for news records and per-ticker sentiment snapshots."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from analysis.models.domain import TickerSentimentSnapshot
from ingestion.db.models import NewsRecord, NewsStatus, TickerSentiment
from ingestion.models.domain import RawNewsItem
from ingestion.utils.logging import get_logger

logger = get_logger(__name__)


class NotFound(Exception):
    """Requested entity does not exist."""

    def __init__(self, entity: str, key: object) -> None:
        super().__init__(f"{entity} not found: {key}")
        self.entity = entity
        self.key = key


class NewsRepository:
    """Persistence collaborator used by the fetch and analysis jobs."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def url_exists(self, url: str) -> bool:
        stmt = select(NewsRecord.id).where(NewsRecord.url == url).limit(1)
        return self._session.execute(stmt).first() is not None

    def save_if_not_duplicate_by_url(self, ticker: str, item: RawNewsItem) -> bool:
        """Insert `item` as a pending record; return False when its URL is already stored."""
        if item.url is not None and self.url_exists(item.url):
            logger.debug("news.skip_duplicate", extra={"url": item.url})
            return False
        record = NewsRecord(
            ticker=ticker.upper(),
            title=item.title[:500],
            summary=item.summary,
            published_date=item.published_at or None,
            source=item.source,
            source_type=item.source_type.value,
            url=item.url,
            relevance_score=item.relevance_score,
            engagement_score=item.engagement_score,
            author=(item.author or None) and item.author[:100],
            status=NewsStatus.PENDING,
            fetched_at=datetime.now(timezone.utc),
        )
        # A concurrent writer may have inserted the same URL after our check
        try:
            with self._session.begin_nested():
                self._session.add(record)
        except IntegrityError:
            logger.debug("news.skip_duplicate_race", extra={"url": item.url})
            return False
        return True

    def get(self, news_id: uuid.UUID) -> Optional[NewsRecord]:
        return self._session.get(NewsRecord, news_id)

    def find_pending_news(self, limit: int = 10) -> List[NewsRecord]:
        stmt = (
            select(NewsRecord)
            .where(NewsRecord.status == NewsStatus.PENDING)
            .order_by(NewsRecord.fetched_at.asc())
            .limit(limit)
        )
        return list(self._session.execute(stmt).scalars().all())

    def find_pending_news_for_ticker(self, ticker: str, limit: int = 100) -> List[NewsRecord]:
        stmt = (
            select(NewsRecord)
            .where(NewsRecord.ticker == ticker.upper(), NewsRecord.status == NewsStatus.PENDING)
            .order_by(NewsRecord.fetched_at.asc())
            .limit(limit)
        )
        return list(self._session.execute(stmt).scalars().all())

    def find_analyzed_with_sentiment(self, ticker: str) -> List[NewsRecord]:
        stmt = (
            select(NewsRecord)
            .where(
                NewsRecord.ticker == ticker.upper(),
                NewsRecord.status == NewsStatus.ANALYZED,
                NewsRecord.sentiment.is_not(None),
            )
            .order_by(NewsRecord.analyzed_at.asc(), NewsRecord.id.asc())
        )
        return list(self._session.execute(stmt).scalars().all())

    def count_by_status(self, ticker: str, status: NewsStatus) -> int:
        stmt = select(func.count(NewsRecord.id)).where(
            NewsRecord.ticker == ticker.upper(), NewsRecord.status == status
        )
        return int(self._session.execute(stmt).scalar_one())

    def count_pending(self, ticker: str) -> int:
        return self.count_by_status(ticker, NewsStatus.PENDING)

    def news_counts(self, ticker: str) -> dict[str, int]:
        pending = self.count_pending(ticker)
        analyzed = self.count_by_status(ticker, NewsStatus.ANALYZED)
        return {"pending": pending, "analyzed": analyzed, "total": pending + analyzed}

    def update_analysis(self, news_id: uuid.UUID, label: str, justification: str) -> bool:
        record = self.get(news_id)
        if record is None:
            return False
        record.sentiment = label
        record.justification = justification
        record.status = NewsStatus.ANALYZED
        record.analyzed_at = datetime.now(timezone.utc)
        self._session.flush()
        return True

    def get_sentiment(self, ticker: str) -> Optional[TickerSentiment]:
        stmt = select(TickerSentiment).where(TickerSentiment.ticker == ticker.upper())
        return self._session.execute(stmt).scalars().first()

    def require_sentiment(self, ticker: str) -> TickerSentiment:
        row = self.get_sentiment(ticker)
        if row is None:
            raise NotFound("ticker sentiment", ticker.upper())
        return row

    def upsert_sentiment_snapshot(self, ticker: str, snapshot: TickerSentimentSnapshot) -> TickerSentiment:
        row = self.get_sentiment(ticker)
        if row is None:
            row = TickerSentiment(ticker=ticker.upper())
            self._session.add(row)
        # Every field is overwritten; nothing is merged with the old row
        row.score = snapshot.raw_score_sum
        row.normalized_score = snapshot.normalized_score
        row.sentiment_label = snapshot.sentiment_label.value
        row.signal = snapshot.signal.value
        row.confidence = snapshot.confidence
        row.positive_count = snapshot.positive_count
        row.negative_count = snapshot.negative_count
        row.neutral_count = snapshot.neutral_count
        row.total_analyzed = snapshot.total_analyzed
        row.total_pending = snapshot.total_pending
        row.snapshot_at = snapshot.updated_at
        self._session.flush()
        return row
