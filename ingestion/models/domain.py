"""Domain DTOs for the ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SourceType(str, Enum):
    """Provider identifiers. Values double as cooldown service names."""

    ALPHA_VANTAGE = "alpha_vantage"
    NEWS_API = "news_api"
    REDDIT = "reddit"


class RawNewsItem(BaseModel):
    """One news item normalized from a provider response.

    `published_at` keeps the provider's own timestamp string; parsing happens
    only when items are ordered (see `ingestion.services.deduplicator`).
    """

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., max_length=500)
    summary: str = Field("", description="Body excerpt or description")
    published_at: str = Field("", description="Source-native timestamp string")
    source: Optional[str] = Field(None, description="Human readable origin, e.g. 'Reuters' or 'r/stocks'")
    source_type: SourceType
    url: Optional[str] = None
    relevance_score: Optional[float] = Field(None, ge=0.0, le=1.0)
    engagement_score: Optional[int] = None
    author: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _strip_title(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("title must not be blank")
        return s

    @field_validator("url")
    @classmethod
    def _blank_url_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        s = v.strip()
        return s or None


@dataclass(frozen=True)
class FetchOk:
    items: List[RawNewsItem] = field(default_factory=list)


@dataclass(frozen=True)
class FetchRateLimited:
    service: str
    remaining_seconds: int


@dataclass(frozen=True)
class FetchFailed:
    service: str
    detail: str


FetchOutcome = Union[FetchOk, FetchRateLimited, FetchFailed]
