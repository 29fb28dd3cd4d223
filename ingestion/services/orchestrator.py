"""Concurrent multi-source fetch with a bounded wait."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from ingestion.connectors.base import SourceFetcher
from ingestion.models.domain import (
    FetchFailed,
    FetchOk,
    FetchOutcome,
    FetchRateLimited,
    RawNewsItem,
)
from ingestion.services.deduplicator import deduplicate, sort_by_recency
from ingestion.utils.logging import get_logger

DEFAULT_FETCH_TIMEOUT_SECONDS = 30.0

logger = get_logger(__name__)


class FetchOrchestrator:
    """Fans out one ticker/time-window to every available SourceFetcher.

    Each provider runs on its own thread. The whole aggregation waits at most
    `timeout_seconds`; providers still running afterwards are abandoned and
    their late results dropped. A provider that is rate limited, fails, or
    times out contributes nothing and never fails the aggregation.
    """

    def __init__(
        self,
        fetchers: Sequence[SourceFetcher],
        *,
        timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
    ) -> None:
        self._fetchers = list(fetchers)
        self._timeout = timeout_seconds

    @property
    def fetchers(self) -> List[SourceFetcher]:
        return list(self._fetchers)

    def available_sources(self) -> List[str]:
        return [f.service for f in self._fetchers if f.is_available()]

    def _selected(self, source_filter: Optional[Iterable[str]]) -> List[SourceFetcher]:
        allowed = {str(s) for s in source_filter} if source_filter is not None else None
        selected: List[SourceFetcher] = []
        for fetcher in self._fetchers:
            if allowed is not None and fetcher.service not in allowed:
                continue
            if not fetcher.is_available():
                logger.info("orchestrator.source_unavailable", extra={"service": fetcher.service})
                continue
            selected.append(fetcher)
        return selected

    def fetch_all(
        self,
        ticker: str,
        time_from: datetime,
        time_to: datetime,
        source_filter: Optional[Iterable[str]] = None,
    ) -> List[RawNewsItem]:
        ticker = ticker.upper()
        selected = self._selected(source_filter)
        logger.info(
            "orchestrator.start",
            extra={
                "ticker": ticker,
                "time_from": time_from.isoformat(),
                "time_to": time_to.isoformat(),
                "sources": [f.service for f in selected],
            },
        )
        if not selected:
            return []

        executor = ThreadPoolExecutor(max_workers=len(selected), thread_name_prefix=f"fetch-{ticker}")
        futures: Dict[Future[FetchOutcome], str] = {}
        try:
            for fetcher in selected:
                futures[executor.submit(fetcher.fetch_outcome, ticker, time_from, time_to)] = fetcher.service
            done, not_done = wait(futures, timeout=self._timeout)
        finally:
            # Do not join stragglers; their results are discarded.
            executor.shutdown(wait=False)

        # Submission order keeps the dedup tie-break independent of completion order
        collected: List[RawNewsItem] = []
        for future, service in futures.items():
            if future in done:
                collected.extend(self._items_of(future, service, ticker))
            elif future in not_done:
                logger.warning(
                    "orchestrator.timeout",
                    extra={"ticker": ticker, "service": service, "timeout": self._timeout},
                )

        unique = deduplicate(collected)
        result = sort_by_recency(unique)
        logger.info(
            "orchestrator.done",
            extra={"ticker": ticker, "raw": len(collected), "unique": len(result)},
        )
        return result

    def _items_of(self, future: Future[FetchOutcome], service: str, ticker: str) -> List[RawNewsItem]:
        try:
            outcome = future.result()
        except Exception as exc:
            logger.warning(
                "orchestrator.source_error",
                extra={"ticker": ticker, "service": service, "error": repr(exc)},
            )
            return []
        if isinstance(outcome, FetchOk):
            return list(outcome.items)
        if isinstance(outcome, FetchRateLimited):
            logger.warning(
                "orchestrator.rate_limited",
                extra={"ticker": ticker, "service": service, "remaining_seconds": outcome.remaining_seconds},
            )
        elif isinstance(outcome, FetchFailed):
            logger.warning(
                "orchestrator.source_failed",
                extra={"ticker": ticker, "service": service, "detail": outcome.detail},
            )
        return []
