"""
LLM Provider factory.
"""

from typing import Optional

from lessonaudit.config import settings
from lessonaudit.llm import LLMProvider


def get_provider(provider_name: Optional[str] = None) -> LLMProvider:
    """Return the configured LLM provider."""
    provider_name = provider_name or settings.LLM_PROVIDER
    if provider_name == "gemini":
        from lessonaudit.llm.gemini import GeminiProvider
        return GeminiProvider()
    else:
        raise ValueError(f"Unknown LLM provider: {provider_name}")
