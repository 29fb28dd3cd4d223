import pytest

from llm.settings import get_analysis_settings, reset_analysis_settings_cache


@pytest.fixture(autouse=True)
def _reset_cache():
    reset_analysis_settings_cache()
    yield
    reset_analysis_settings_cache()


def test_defaults(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ANALYSIS_MODEL", raising=False)
    monkeypatch.delenv("OPENAI_COOLDOWN_SECONDS", raising=False)

    settings = get_analysis_settings()

    assert settings.has_api_key() is False
    assert settings.analysis_model == "gpt-4o-mini"
    assert settings.openai_cooldown_seconds == 60
    assert settings.analysis_max_input_chars == 4000


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-live")
    monkeypatch.setenv("ANALYSIS_MODEL", "gpt-4.1")
    monkeypatch.setenv("OPENAI_COOLDOWN_SECONDS", "120")

    settings = get_analysis_settings()

    assert settings.openai_api_key.get_secret_value() == "sk-live"
    assert settings.analysis_model == "gpt-4.1"
    assert settings.openai_cooldown_seconds == 120


def test_blank_key_is_treated_as_missing(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "   ")

    assert get_analysis_settings().has_api_key() is False


def test_invalid_value_raises_runtime_error(monkeypatch):
    monkeypatch.setenv("ANALYSIS_MAX_TOKENS", "0")

    with pytest.raises(RuntimeError):
        get_analysis_settings()
