"""News API connector (newsapi.org `everything` search)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from ingestion.models.domain import RawNewsItem, SourceType
from ingestion.services.cooldown import CooldownGate
from ingestion.settings import Settings, get_settings
from ingestion.utils.logging import get_logger

from .base import ProviderError, SourceFetcher

logger = get_logger(__name__)

_MAX_PAGES = 2
_QUERY_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


class NewsAPIConnector(SourceFetcher):
    """Connector for NewsAPI-like sources.

    - 429 → cooldown + RateLimited
    - 그 외 4xx/5xx → ProviderError
    - 최대 2페이지까지 조회, 빈 페이지에서 중단
    """

    source_type = SourceType.NEWS_API

    def __init__(self, gate: CooldownGate, settings: Settings | None = None, **kwargs: Any) -> None:
        self._settings = settings or get_settings()
        kwargs.setdefault("timeout_seconds", float(self._settings.provider_timeout_seconds))
        kwargs.setdefault("cooldown_seconds", int(self._settings.provider_cooldown_seconds))
        super().__init__(gate, **kwargs)

    def has_credentials(self) -> bool:
        key = self._settings.news_api_key
        return key is not None and bool(key.get_secret_value().strip())

    def _fetch_raw(self, ticker: str, time_from: datetime, time_to: datetime) -> List[RawNewsItem]:
        cfg = self._settings
        assert cfg.news_api_key is not None
        headers = {"X-Api-Key": cfg.news_api_key.get_secret_value()}
        params: Dict[str, Any] = {
            "q": ticker,
            "language": cfg.news_api_lang,
            "pageSize": int(cfg.news_api_page_size),
            "sortBy": cfg.news_api_sort_by,
            "from": time_from.strftime(_QUERY_TIME_FORMAT),
            "to": time_to.strftime(_QUERY_TIME_FORMAT),
            "page": 1,
        }

        articles: List[Dict[str, Any]] = []
        for page in range(1, _MAX_PAGES + 1):
            params["page"] = page
            resp = self._http().get(cfg.news_api_endpoint, headers=headers, params=params)

            if resp.status_code == 429:
                raise self._throttled("Rate limit exceeded (429)")
            if resp.status_code >= 400:
                raise ProviderError(self.service, f"HTTP {resp.status_code}")

            data = resp.json()
            if data.get("status") == "error":
                if data.get("code") == "rateLimited":
                    raise self._throttled(str(data.get("message") or "rateLimited"))
                raise ProviderError(self.service, str(data.get("message") or data.get("code")))
            page_items = data.get("articles") or []
            if not page_items:
                break
            articles.extend(page_items)

        return self._normalize(ticker, articles)

    def _normalize(self, ticker: str, articles: List[Dict[str, Any]]) -> List[RawNewsItem]:
        items: List[RawNewsItem] = []
        for it in articles:
            source = it.get("source") or {}
            # NewsAPI publishes ISO-8601 with a trailing Z
            published = str(it.get("publishedAt") or "")
            try:
                items.append(
                    RawNewsItem(
                        title=str(it.get("title") or ""),
                        summary=str(it.get("description") or it.get("content") or "").strip(),
                        published_at=published,
                        source=source.get("name") if isinstance(source, dict) else str(source),
                        source_type=self.source_type,
                        url=it.get("url"),
                        author=it.get("author"),
                    )
                )
            except ValueError as exc:
                logger.warning("fetch.news_api.skip_item", extra={"ticker": ticker, "error": str(exc)})
        logger.info("fetch.news_api.done", extra={"ticker": ticker, "items": len(items)})
        return items
