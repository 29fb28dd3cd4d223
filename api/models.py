from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

JobStatusValue = Literal["idle", "running", "completed", "failed"]


class JobTriggerResponse(BaseModel):
    message: str
    job_id: str
    status: Literal["running"] = "running"


class JobInfo(BaseModel):
    status: JobStatusValue
    last_run_at: Optional[datetime] = None
    last_duration_seconds: Optional[float] = None
    last_result: Optional[dict[str, Any]] = None
    last_error: Optional[str] = None


class JobStatusResponse(BaseModel):
    jobs: dict[str, JobInfo] = Field(default_factory=dict)


class ServiceStatus(BaseModel):
    available: bool
    cooldown_until: Optional[datetime] = None
    message: Optional[str] = None


class ServiceStatusResponse(BaseModel):
    services: dict[str, ServiceStatus] = Field(default_factory=dict)


class NewsCounts(BaseModel):
    pending: int = 0
    analyzed: int = 0
    total: int = 0


class TickerSentimentResponse(BaseModel):
    ticker: str
    score: float
    normalized_score: float
    sentiment_label: Optional[str] = None
    signal: Optional[str] = None
    confidence: float
    positive_count: int
    negative_count: int
    neutral_count: int
    total_analyzed: int
    total_pending: int
    snapshot_at: datetime
    news: NewsCounts = Field(default_factory=NewsCounts)


class WatchlistTickerCreate(BaseModel):
    ticker: str = Field(..., min_length=1, max_length=16)
    name: Optional[str] = Field(None, max_length=200)

    @field_validator("ticker")
    @classmethod
    def _upper(cls, v: str) -> str:
        s = v.strip().upper()
        if not s:
            raise ValueError("ticker must not be blank")
        return s


class WatchlistTicker(BaseModel):
    ticker: str
    name: Optional[str] = None
    added_at: datetime
    is_active: bool
