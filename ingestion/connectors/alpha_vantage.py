"""Alpha Vantage NEWS_SENTIMENT connector."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from ingestion.models.domain import RawNewsItem, SourceType
from ingestion.services.cooldown import CooldownGate
from ingestion.settings import Settings, get_settings
from ingestion.utils.logging import get_logger

from .base import ProviderError, SourceFetcher

logger = get_logger(__name__)

_QUERY_TIME_FORMAT = "%Y%m%dT%H%M"
_RATE_LIMIT_MARKERS = ("rate limit", "frequency", "call volume")


def _is_rate_limit_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _RATE_LIMIT_MARKERS)


def _relevance_of(item: Dict[str, Any], ticker: str) -> Optional[float]:
    entries = item.get("ticker_sentiment") or []
    # Prefer the entry for the requested ticker; fall back to the first one
    chosen = next((e for e in entries if str(e.get("ticker", "")).upper() == ticker), None)
    if chosen is None and entries:
        chosen = entries[0]
    if not chosen:
        return None
    try:
        score = float(chosen.get("relevance_score"))
    except (TypeError, ValueError):
        return None
    return min(max(score, 0.0), 1.0)


class AlphaVantageConnector(SourceFetcher):
    """Primary financial-news feed."""

    source_type = SourceType.ALPHA_VANTAGE

    def __init__(self, gate: CooldownGate, settings: Settings | None = None, **kwargs: Any) -> None:
        self._settings = settings or get_settings()
        kwargs.setdefault("timeout_seconds", float(self._settings.provider_timeout_seconds))
        kwargs.setdefault("cooldown_seconds", int(self._settings.provider_cooldown_seconds))
        super().__init__(gate, **kwargs)

    def has_credentials(self) -> bool:
        key = self._settings.alpha_vantage_api_key
        return key is not None and bool(key.get_secret_value().strip())

    def _fetch_raw(self, ticker: str, time_from: datetime, time_to: datetime) -> List[RawNewsItem]:
        assert self._settings.alpha_vantage_api_key is not None
        params = {
            "function": "NEWS_SENTIMENT",
            "tickers": ticker,
            "apikey": self._settings.alpha_vantage_api_key.get_secret_value(),
            "time_from": time_from.strftime(_QUERY_TIME_FORMAT),
            "time_to": time_to.strftime(_QUERY_TIME_FORMAT),
        }
        logger.info("fetch.alpha_vantage.start", extra={"ticker": ticker})
        resp = self._http().get(self._settings.alpha_vantage_endpoint, params=params)

        if resp.status_code == 429:
            raise self._throttled("Rate limit exceeded (429)")
        if resp.status_code >= 400:
            raise ProviderError(self.service, f"HTTP {resp.status_code}")

        data = resp.json()
        if data.get("Error Message"):
            raise ProviderError(self.service, str(data["Error Message"]))
        for key in ("Note", "Information"):
            message = data.get(key)
            if not message:
                continue
            if _is_rate_limit_message(str(message)):
                raise self._throttled(str(message))
            logger.warning("fetch.alpha_vantage.note", extra={"ticker": ticker, "note": message})

        items = self._normalize(ticker, data.get("feed") or [])
        logger.info("fetch.alpha_vantage.done", extra={"ticker": ticker, "items": len(items)})
        return items

    def _normalize(self, ticker: str, feed: List[Dict[str, Any]]) -> List[RawNewsItem]:
        items: List[RawNewsItem] = []
        for raw in feed:
            try:
                items.append(
                    RawNewsItem(
                        title=str(raw.get("title") or ""),
                        summary=str(raw.get("summary") or "").strip(),
                        published_at=str(raw.get("time_published") or ""),
                        source=raw.get("source"),
                        source_type=self.source_type,
                        url=raw.get("url"),
                        relevance_score=_relevance_of(raw, ticker),
                    )
                )
            except ValueError as exc:
                logger.warning("fetch.alpha_vantage.skip_item", extra={"ticker": ticker, "error": str(exc)})
        return items
