"""LLM client module."""

from llm.client.openai_client import (
    ClassificationUnavailable,
    LLMError,
    OpenAIClient,
    PermanentLLMError,
    ProviderFn,
    ThrottledLLMError,
    TransientLLMError,
)

__all__ = [
    "ClassificationUnavailable",
    "LLMError",
    "OpenAIClient",
    "PermanentLLMError",
    "ProviderFn",
    "ThrottledLLMError",
    "TransientLLMError",
]
