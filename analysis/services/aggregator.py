"""종목별 감성 집계.

분석이 끝난 뉴스 전체를 다시 읽어 점수 합계/정규화 점수/신뢰도/시그널을 계산하고
스냅샷을 통째로 덮어쓴다(증분 병합 없음).
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from analysis.models.domain import SentimentCategory, TickerSentimentSnapshot, TradingSignal
from ingestion.utils.logging import get_logger

logger = get_logger(__name__)

# Evaluated highest threshold first
SENTIMENT_THRESHOLDS: Tuple[Tuple[float, TradingSignal, SentimentCategory], ...] = (
    (0.5, TradingSignal.STRONG_BUY, SentimentCategory.HIGHLY_POSITIVE),
    (0.2, TradingSignal.BUY, SentimentCategory.POSITIVE),
    (-0.2, TradingSignal.HOLD, SentimentCategory.NEUTRAL),
    (-0.5, TradingSignal.SELL, SentimentCategory.NEGATIVE),
)
_LOWEST = (TradingSignal.STRONG_SELL, SentimentCategory.HIGHLY_NEGATIVE)

SCORE_PRECISION = 4


def _bucket(score: float) -> Tuple[TradingSignal, SentimentCategory]:
    for threshold, signal, label in SENTIMENT_THRESHOLDS:
        if score >= threshold:
            return signal, label
    return _LOWEST


def signal_for(score: float) -> TradingSignal:
    return _bucket(score)[0]


def label_for(score: float) -> SentimentCategory:
    return _bucket(score)[1]


def compute_snapshot(
    ticker: str,
    labels: Sequence[Optional[str]],
    total_pending: int = 0,
    now: Optional[datetime] = None,
) -> TickerSentimentSnapshot:
    """Pure aggregation of analyzed labels into a snapshot."""
    scores = [SentimentCategory.score_of(label) for label in labels]
    total = len(scores)
    positive = sum(1 for s in scores if s > 0)
    negative = sum(1 for s in scores if s < 0)
    neutral = total - positive - negative
    raw_sum = sum(scores)

    if total == 0:
        normalized = 0.0
        confidence = 0.0
    else:
        normalized = round(raw_sum / total, SCORE_PRECISION)
        confidence = round(max(positive, negative, neutral) / total, SCORE_PRECISION)

    fields = dict(
        ticker=ticker,
        raw_score_sum=round(raw_sum, SCORE_PRECISION),
        normalized_score=normalized,
        sentiment_label=label_for(normalized),
        signal=signal_for(normalized),
        confidence=confidence,
        positive_count=positive,
        negative_count=negative,
        neutral_count=neutral,
        total_analyzed=total,
        total_pending=max(0, int(total_pending)),
    )
    if now is not None:
        fields["updated_at"] = now
    return TickerSentimentSnapshot(**fields)


class _AnalyzedRecord(Protocol):
    sentiment: Optional[str]


class SentimentStore(Protocol):
    def find_analyzed_with_sentiment(self, ticker: str) -> Iterable[_AnalyzedRecord]: ...

    def count_pending(self, ticker: str) -> int: ...

    def upsert_sentiment_snapshot(self, ticker: str, snapshot: TickerSentimentSnapshot) -> object: ...


class SentimentAggregator:
    def __init__(self, store: SentimentStore) -> None:
        self._store = store

    def recompute(self, ticker: str, now: Optional[datetime] = None) -> TickerSentimentSnapshot:
        symbol = ticker.upper()
        labels: List[Optional[str]] = [r.sentiment for r in self._store.find_analyzed_with_sentiment(symbol)]
        snapshot = compute_snapshot(symbol, labels, self._store.count_pending(symbol), now)
        self._store.upsert_sentiment_snapshot(symbol, snapshot)
        logger.info(
            "sentiment.recomputed",
            extra={
                "ticker": symbol,
                "normalized_score": snapshot.normalized_score,
                "signal": snapshot.signal.value,
                "total_analyzed": snapshot.total_analyzed,
            },
        )
        return snapshot
