"""SourceFetcher abstraction, errors, and helpers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

import httpx

from ingestion.models.domain import (
    FetchFailed,
    FetchOk,
    FetchOutcome,
    FetchRateLimited,
    RawNewsItem,
    SourceType,
)
from ingestion.services.cooldown import DEFAULT_COOLDOWN_SECONDS, CooldownGate
from ingestion.utils.logging import get_logger

logger = get_logger(__name__)


class ConnectorError(Exception):
    """Base connector error."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(message)
        self.service = service


class RateLimited(ConnectorError):
    """The provider is cooling down after a throttling response."""

    def __init__(self, service: str, remaining_seconds: int) -> None:
        super().__init__(service, f"{service} rate limit exceeded. Retry in {remaining_seconds} seconds.")
        self.remaining_seconds = remaining_seconds


class ProviderError(ConnectorError):
    """Transport, HTTP or payload failure of one provider."""

    def __init__(self, service: str, detail: str) -> None:
        super().__init__(service, f"{service} API error: {detail}")
        self.detail = detail


class SourceFetcher(ABC):
    """One news provider.

    Subclasses implement `has_credentials` and `_fetch_raw`; everything that
    is shared (cooldown checks, throttling, outcome wrapping) lives here.
    """

    source_type: SourceType

    def __init__(
        self,
        gate: CooldownGate,
        *,
        client: Optional[httpx.Client] = None,
        timeout_seconds: float = 30.0,
        cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
    ) -> None:
        self._gate = gate
        self._client = client
        self._timeout = timeout_seconds
        self._cooldown_seconds = cooldown_seconds

    @property
    def service(self) -> str:
        return self.source_type.value

    @abstractmethod
    def has_credentials(self) -> bool:
        """Whether the provider is configured well enough to be called."""

    def is_available(self) -> bool:
        return self.has_credentials() and self._gate.is_available(self.service)

    def fetch(self, ticker: str, time_from: datetime, time_to: datetime) -> List[RawNewsItem]:
        if not self.has_credentials():
            raise ProviderError(self.service, "credentials not configured")
        if not self._gate.is_available(self.service):
            raise RateLimited(self.service, self._gate.remaining_cooldown(self.service))
        try:
            return self._fetch_raw(ticker.upper(), time_from, time_to)
        except ConnectorError:
            raise
        except httpx.HTTPError as exc:
            raise ProviderError(self.service, f"transport error: {exc}") from exc
        except (ValueError, KeyError, TypeError) as exc:
            raise ProviderError(self.service, f"malformed response: {exc}") from exc

    def fetch_outcome(self, ticker: str, time_from: datetime, time_to: datetime) -> FetchOutcome:
        try:
            return FetchOk(self.fetch(ticker, time_from, time_to))
        except RateLimited as exc:
            return FetchRateLimited(self.service, exc.remaining_seconds)
        except ProviderError as exc:
            return FetchFailed(self.service, exc.detail)

    @abstractmethod
    def _fetch_raw(self, ticker: str, time_from: datetime, time_to: datetime) -> List[RawNewsItem]:
        """Call the provider and normalize its response."""

    def _throttled(self, reason: str) -> RateLimited:
        self._gate.enter_cooldown(self.service, reason, self._cooldown_seconds)
        return RateLimited(self.service, self._cooldown_seconds)

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=float(self._timeout))
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
