"""Settings for the sentiment classifier (OpenAI LLM)."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field, PositiveFloat, PositiveInt, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AnalysisSettings(BaseSettings):
    """Environment-driven configuration for the classification stage."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    openai_api_key: Optional[SecretStr] = Field(
        None,
        alias="OPENAI_API_KEY",
        description="OpenAI API key; classifier is unavailable without it",
    )
    analysis_model: str = Field("gpt-4o-mini", alias="ANALYSIS_MODEL", description="OpenAI model name")
    analysis_max_tokens: PositiveInt = Field(256, alias="ANALYSIS_MAX_TOKENS", description="Max completion tokens")
    analysis_temperature: PositiveFloat = Field(0.2, alias="ANALYSIS_TEMPERATURE", description="Sampling temperature")
    analysis_cost_limit_usd: PositiveFloat = Field(0.02, alias="ANALYSIS_COST_LIMIT_USD", description="Per-request cost cap (USD)")
    analysis_request_timeout_seconds: PositiveInt = Field(
        15,
        alias="ANALYSIS_REQUEST_TIMEOUT_SECONDS",
        description="HTTP request timeout in seconds",
    )
    analysis_retry_max_attempts: PositiveInt = Field(2, alias="ANALYSIS_RETRY_MAX_ATTEMPTS", description="Max retry attempts")
    analysis_max_input_chars: PositiveInt = Field(
        4000,
        alias="ANALYSIS_MAX_INPUT_CHARS",
        description="News text is truncated to this many characters",
    )
    openai_cooldown_seconds: PositiveInt = Field(
        60,
        alias="OPENAI_COOLDOWN_SECONDS",
        description="Cooldown entered when OpenAI signals throttling",
    )

    @field_validator("openai_api_key", mode="before")
    @classmethod
    def _blank_key_is_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def has_api_key(self) -> bool:
        return self.openai_api_key is not None


@lru_cache()
def get_analysis_settings() -> AnalysisSettings:
    try:
        return AnalysisSettings()
    except ValidationError as exc:
        raise RuntimeError(f"분석 설정 검증 실패: {exc}") from exc


def reset_analysis_settings_cache() -> None:
    get_analysis_settings.cache_clear()  # type: ignore[attr-defined]
