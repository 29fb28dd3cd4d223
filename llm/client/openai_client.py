"""OpenAI LLM 클라이언트 래퍼 (뉴스 감성 분류).

특징
- 구조화(JSON) 출력 강제 및 파싱 → ClassificationResult 스키마로 검증
- 재시도/타임아웃/비용 상한(요청당) 적용
- 429/쿼터 초과 시 "openai" 서비스를 쿨다운에 넣고 None(Unavailable) 반환
- Provider 주입으로 테스트 시 네트워크/실제 의존성 제거
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from analysis.models.domain import ClassificationResult
from analysis.prompts.templates import build_classification_messages
from ingestion.services.cooldown import CooldownGate
from ingestion.utils.logging import get_logger
from llm.settings import AnalysisSettings, get_analysis_settings

logger = get_logger(__name__)

OPENAI_SERVICE = "openai"


class LLMError(Exception):
    """LLM 호출 관련 기본 오류."""


class TransientLLMError(LLMError):
    """일시 오류(재시도 대상)."""


class PermanentLLMError(LLMError):
    """영구 오류(재시도 불가)."""


class ThrottledLLMError(LLMError):
    """Provider가 요청량 제한(429/쿼터)을 알린 경우."""


class ClassificationUnavailable(LLMError):
    """분류기를 지금 사용할 수 없음(쿨다운/키 없음/스로틀링)."""

    def __init__(self, reason: str, remaining_seconds: int = 0) -> None:
        super().__init__(reason)
        self.reason = reason
        self.remaining_seconds = remaining_seconds


ProviderFn = Callable[[Dict[str, Any]], Dict[str, Any]]


_PRICE_PER_1K_TOKENS_USD: Dict[str, Dict[str, float]] = {
    "gpt-4o-mini": {"prompt": 0.00015, "completion": 0.0006},
    "gpt-4.1": {"prompt": 0.0030, "completion": 0.0100},
}

_THROTTLE_MARKERS = ("429", "rate limit", "rate_limit", "quota", "resource exhausted")


def _estimate_cost_usd(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    price = _PRICE_PER_1K_TOKENS_USD.get(model, _PRICE_PER_1K_TOKENS_USD["gpt-4o-mini"])
    return (
        (prompt_tokens / 1000.0) * price["prompt"]
        + (completion_tokens / 1000.0) * price["completion"]
    )


def looks_throttled(exc: BaseException) -> bool:
    if isinstance(exc, ThrottledLLMError):
        return True
    if getattr(exc, "status_code", None) == 429:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _THROTTLE_MARKERS)


def _load_structured_content(content: str, attempts_left: int) -> Dict[str, Any]:
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        if attempts_left > 0:
            raise TransientLLMError("LLM 응답 JSON 파싱 실패") from exc
        raise PermanentLLMError("LLM 응답 JSON 파싱 실패") from exc
    if not isinstance(data, dict):
        raise PermanentLLMError("LLM 응답이 JSON 객체가 아닙니다.")
    return data


def _field(data: Dict[str, Any], name: str) -> Any:
    # Models are inconsistent about key casing
    for key in (name, name.lower(), name.capitalize()):
        if key in data:
            return data[key]
    return None


@dataclass(frozen=True)
class OpenAIClient:
    settings: AnalysisSettings
    provider: Optional[ProviderFn] = None
    gate: CooldownGate = field(default_factory=CooldownGate)
    monotonic: Callable[[], float] = time.monotonic

    @classmethod
    def from_env(
        cls,
        provider: Optional[ProviderFn] = None,
        gate: Optional[CooldownGate] = None,
    ) -> "OpenAIClient":
        return cls(get_analysis_settings(), provider=provider, gate=gate or CooldownGate())

    def is_available(self) -> bool:
        has_backend = self.provider is not None or self.settings.has_api_key()
        return has_backend and self.gate.is_available(OPENAI_SERVICE)

    def remaining_cooldown(self) -> int:
        return self.gate.remaining_cooldown(OPENAI_SERVICE)

    def _get_provider(self) -> ProviderFn:
        if self.provider is not None:
            return self.provider
        if self.settings.openai_api_key is None:
            raise ClassificationUnavailable("openai_api_key_missing")
        # 지연 import: 라이브러리가 없으면 명확한 에러
        try:
            import openai  # type: ignore
        except Exception as exc:  # pragma: no cover - 테스트에선 provider 주입
            raise PermanentLLMError("openai 라이브러리를 찾을 수 없습니다.") from exc

        client = openai.OpenAI(
            api_key=self.settings.openai_api_key.get_secret_value(),
            timeout=float(self.settings.analysis_request_timeout_seconds),
        )

        def _call(payload: Dict[str, Any]) -> Dict[str, Any]:  # pragma: no cover - 네트워크 미사용
            try:
                resp = client.chat.completions.create(**payload)
            except openai.RateLimitError as exc:
                raise ThrottledLLMError(str(exc)) from exc
            except (openai.APIConnectionError, openai.APITimeoutError, openai.InternalServerError) as exc:
                raise TransientLLMError(str(exc)) from exc
            except openai.APIError as exc:
                raise PermanentLLMError(str(exc)) from exc
            return {
                "choices": [
                    {
                        "message": {"content": resp.choices[0].message.content},
                    }
                ],
                "usage": {
                    "prompt_tokens": getattr(resp.usage, "prompt_tokens", 0),
                    "completion_tokens": getattr(resp.usage, "completion_tokens", 0),
                },
                "model": resp.model,
            }

        return _call

    def _build_payload(self, ticker: str, text: str) -> Dict[str, Any]:
        msgs = build_classification_messages(
            ticker, text, max_chars=int(self.settings.analysis_max_input_chars)
        )
        return {
            "model": self.settings.analysis_model,
            "messages": msgs,
            "temperature": float(self.settings.analysis_temperature),
            "max_tokens": int(self.settings.analysis_max_tokens),
            "response_format": {"type": "json_object"},
        }

    def _parse(self, resp: Dict[str, Any], retries_left: int) -> ClassificationResult:
        model = resp.get("model") or self.settings.analysis_model
        usage = resp.get("usage") or {}
        cost = _estimate_cost_usd(
            model,
            int(usage.get("prompt_tokens", 0)),
            int(usage.get("completion_tokens", 0)),
        )
        if cost > float(self.settings.analysis_cost_limit_usd):
            raise PermanentLLMError("LLM 비용 상한 초과")

        content = resp.get("choices", [{}])[0].get("message", {}).get("content", "") or ""
        data = _load_structured_content(content, retries_left)
        try:
            return ClassificationResult(
                label=_field(data, "SENTIMENT"),
                justification=str(_field(data, "JUSTIFICATION") or ""),
            )
        except ValidationError as exc:
            if retries_left > 0:
                raise TransientLLMError(f"LLM 응답 스키마 불일치: {exc}") from exc
            raise PermanentLLMError(f"LLM 응답 스키마 불일치: {exc}") from exc

    def classify_or_raise(self, ticker: str, text: str) -> ClassificationResult:
        """Classify one news text; raise ClassificationUnavailable when throttled.

        The request timeout bounds the retry loop only: a response that
        arrives late is still used, and the budget is checked before each
        further attempt.
        """
        if not self.gate.is_available(OPENAI_SERVICE):
            raise ClassificationUnavailable("openai_cooldown", self.remaining_cooldown())

        provider = self._get_provider()
        payload = self._build_payload(ticker, text)
        max_attempts = int(self.settings.analysis_retry_max_attempts)
        budget = float(self.settings.analysis_request_timeout_seconds)
        started = self.monotonic()

        attempt = 0
        while True:
            attempt += 1
            try:
                return self._parse(provider(payload), max_attempts - attempt)
            except TransientLLMError as exc:
                if attempt > max_attempts:
                    raise TransientLLMError(f"LLM 호출 재시도 한도 초과: {exc}") from exc
                if self.monotonic() - started > budget:
                    raise TransientLLMError("LLM 요청 타임아웃 초과") from exc
                logger.debug("classify.retry", extra={"ticker": ticker, "attempt": attempt, "error": str(exc)})
            except LLMError as exc:
                if looks_throttled(exc):
                    raise self._throttle(str(exc)) from exc
                raise
            except Exception as exc:
                if looks_throttled(exc):
                    raise self._throttle(str(exc)) from exc
                raise PermanentLLMError(f"LLM 호출 실패: {exc}") from exc

    def classify(self, ticker: str, text: str) -> Optional[ClassificationResult]:
        """Classify one news text; None means unavailable, leave the item pending."""
        try:
            return self.classify_or_raise(ticker, text)
        except ClassificationUnavailable as exc:
            logger.info(
                "classify.unavailable",
                extra={"ticker": ticker, "reason": exc.reason, "remaining_seconds": exc.remaining_seconds},
            )
            return None

    def _throttle(self, reason: str) -> ClassificationUnavailable:
        seconds = int(self.settings.openai_cooldown_seconds)
        self.gate.enter_cooldown(OPENAI_SERVICE, reason[:200], seconds)
        return ClassificationUnavailable("openai_rate_limited", seconds)
