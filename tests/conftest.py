from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

_PROVIDER_ENV = (
    "ALPHA_VANTAGE_API_KEY",
    "NEWS_API_KEY",
    "REDDIT_CLIENT_ID",
    "REDDIT_CLIENT_SECRET",
    "OPENAI_API_KEY",
    "SCHEDULER_ENABLED",
)


def _reset_caches() -> None:
    from ingestion.runtime import reset_runtime
    from ingestion.settings import reset_settings_cache
    from llm.settings import reset_analysis_settings_cache

    reset_runtime()
    reset_settings_cache()
    reset_analysis_settings_cache()


@pytest.fixture
def base_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Minimal valid environment backed by a per-test SQLite file."""
    db_path = tmp_path / "news.db"
    monkeypatch.setenv("INGESTION_REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.setenv("POSTGRES_DSN", f"sqlite:///{db_path}")
    for key in _PROVIDER_ENV:
        monkeypatch.delenv(key, raising=False)
    _reset_caches()
    yield db_path
    _reset_caches()
