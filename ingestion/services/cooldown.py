"""Per-service cooldown tracking for rate-limited external APIs."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

from ingestion.utils.logging import get_logger

DEFAULT_COOLDOWN_SECONDS = 60

Clock = Callable[[], datetime]

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CooldownState:
    cooldown_until: Optional[datetime] = None
    reason: Optional[str] = None


class CooldownStore(Protocol):
    """Where cooldown states live; `load` returns a copy, `save` replaces."""

    def load(self, service: str) -> CooldownState: ...

    def save(self, service: str, state: CooldownState) -> None: ...

    def services(self) -> List[str]: ...


class MemoryCooldownStore:
    """Process-local store."""

    def __init__(self) -> None:
        self._states: Dict[str, CooldownState] = {}

    def load(self, service: str) -> CooldownState:
        state = self._states.get(service)
        return replace(state) if state is not None else CooldownState()

    def save(self, service: str, state: CooldownState) -> None:
        self._states[service] = replace(state)

    def services(self) -> List[str]:
        return list(self._states)


class CooldownGate:
    """서비스별 쿨다운 상태 관리.

    - 만료는 조회 시점에 지연 처리한다 (백그라운드 타이머 없음).
    - `enter_cooldown`은 기존 쿨다운을 무조건 덮어쓴다 (누적 백오프 없음).
    - 서비스마다 독립된 락을 사용하므로 서로 다른 서비스는 경합하지 않는다.
    - 상태는 `store`에 보관한다. 여러 프로세스가 같은 쿨다운을 보려면
      `DatabaseCooldownStore`처럼 공유 저장소를 넘긴다.
    """

    def __init__(self, clock: Clock | None = None, store: CooldownStore | None = None) -> None:
        self._clock = clock or _utcnow
        self._store: CooldownStore = store if store is not None else MemoryCooldownStore()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, service: str) -> threading.Lock:
        # dict.setdefault is atomic, so racing callers end up sharing one lock
        return self._locks.setdefault(service, threading.Lock())

    def _current(self, service: str) -> CooldownState:
        """Load the state, clearing it first if it has expired. Caller holds the lock."""
        state = self._store.load(service)
        if state.cooldown_until is not None and self._clock() >= state.cooldown_until:
            self._store.save(service, CooldownState())
            logger.info("cooldown.cleared", extra={"service": service})
            return CooldownState()
        return state

    def is_available(self, service: str) -> bool:
        with self._lock_for(service):
            return self._current(service).cooldown_until is None

    def enter_cooldown(self, service: str, reason: str, seconds: int = DEFAULT_COOLDOWN_SECONDS) -> None:
        until = self._clock() + timedelta(seconds=seconds)
        with self._lock_for(service):
            self._store.save(service, CooldownState(cooldown_until=until, reason=reason))
        logger.warning("cooldown.enter", extra={"service": service, "seconds": seconds, "reason": reason})

    def clear_cooldown(self, service: str) -> None:
        with self._lock_for(service):
            had_cooldown = self._store.load(service).cooldown_until is not None
            self._store.save(service, CooldownState())
        if had_cooldown:
            logger.info("cooldown.cleared", extra={"service": service})

    def remaining_cooldown(self, service: str) -> int:
        """Seconds left in the active cooldown, rounded up; 0 when available."""
        with self._lock_for(service):
            until = self._current(service).cooldown_until
            if until is None:
                return 0
            return max(0, math.ceil((until - self._clock()).total_seconds()))

    def status(self, service: str) -> Dict[str, Any]:
        with self._lock_for(service):
            state = self._current(service)
        available = state.cooldown_until is None
        return {
            "available": available,
            "cooldown_until": state.cooldown_until.isoformat() if state.cooldown_until else None,
            "message": None if available else state.reason,
        }

    def all_statuses(self) -> Dict[str, Dict[str, Any]]:
        return {service: self.status(service) for service in self._store.services()}
