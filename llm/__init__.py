"""LLM module - OpenAI sentiment classifier and settings."""

from llm.client.openai_client import (
    ClassificationUnavailable,
    LLMError,
    OpenAIClient,
    PermanentLLMError,
    ProviderFn,
    ThrottledLLMError,
    TransientLLMError,
)
from llm.settings import AnalysisSettings, get_analysis_settings

__all__ = [
    "ClassificationUnavailable",
    "LLMError",
    "OpenAIClient",
    "PermanentLLMError",
    "ProviderFn",
    "ThrottledLLMError",
    "TransientLLMError",
    "AnalysisSettings",
    "get_analysis_settings",
]
