"""DTO/스키마: 감성 분류 결과와 종목별 감성 스냅샷.

Pydantic v2 기반 스키마로 LLM 분류 출력과 집계 결과를 정규화한다.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SentimentCategory(str, Enum):
    """Fixed classification categories and their scores."""

    HIGHLY_NEGATIVE = "Highly Negative"
    NEGATIVE = "Negative"
    NEUTRAL = "Neutral"
    POSITIVE = "Positive"
    HIGHLY_POSITIVE = "Highly Positive"

    @property
    def score(self) -> float:
        return _CATEGORY_SCORES[self]

    @classmethod
    def from_label(cls, label: Optional[str]) -> Optional["SentimentCategory"]:
        if not label:
            return None
        wanted = label.strip().lower()
        for category in cls:
            if category.value.lower() == wanted:
                return category
        return None

    @classmethod
    def score_of(cls, label: Optional[str]) -> float:
        """Score of a stored label; unknown labels count as neutral."""
        category = cls.from_label(label)
        return category.score if category is not None else 0.0


_CATEGORY_SCORES = {
    SentimentCategory.HIGHLY_NEGATIVE: -1.0,
    SentimentCategory.NEGATIVE: -0.5,
    SentimentCategory.NEUTRAL: 0.0,
    SentimentCategory.POSITIVE: 0.5,
    SentimentCategory.HIGHLY_POSITIVE: 1.0,
}


class TradingSignal(str, Enum):
    STRONG_BUY = "STRONG BUY"
    BUY = "BUY"
    HOLD = "HOLD"
    SELL = "SELL"
    STRONG_SELL = "STRONG SELL"


class ClassificationResult(BaseModel):
    """LLM 분류 결과 (라벨 + 근거)."""

    label: SentimentCategory
    justification: str = Field(..., max_length=2000)

    @field_validator("label", mode="before")
    @classmethod
    def _label_case_insensitive(cls, v: object) -> object:
        if isinstance(v, str):
            category = SentimentCategory.from_label(v)
            if category is None:
                raise ValueError(f"알 수 없는 감성 라벨: {v}")
            return category
        return v

    @field_validator("justification")
    @classmethod
    def _strip(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("justification은 공백일 수 없습니다.")
        return s


class TickerSentimentSnapshot(BaseModel):
    """종목별 감성 집계 스냅샷. 매번 전체 재계산된다."""

    model_config = ConfigDict(frozen=True)

    ticker: str
    raw_score_sum: float = 0.0
    normalized_score: float = Field(0.0, ge=-1.0, le=1.0)
    sentiment_label: SentimentCategory = SentimentCategory.NEUTRAL
    signal: TradingSignal = TradingSignal.HOLD
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    positive_count: int = Field(0, ge=0)
    negative_count: int = Field(0, ge=0)
    neutral_count: int = Field(0, ge=0)
    total_analyzed: int = Field(0, ge=0)
    total_pending: int = Field(0, ge=0)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("ticker")
    @classmethod
    def _ticker_upper(cls, v: str) -> str:
        s = v.strip().upper()
        if not s:
            raise ValueError("ticker는 공백일 수 없습니다.")
        return s
