"""Provider factory for creating inference provider instances."""

from __future__ import annotations

import logging
import os

from timeline_resolver.inference.base import InferenceProvider, ProviderSpec
from timeline_resolver.utils import AsyncHttpClient

logger = logging.getLogger(__name__)

# Supported wire formats
KINDS = ("chat_completions", "gemini")


class ProviderFactory:
    """Factory for creating inference providers from table rows.

    Supported kinds:
    - "chat_completions": OpenAI-compatible endpoints (DeepSeek, Groq, OpenAI)
    - "gemini": Google Gemini generateContent
    """

    @staticmethod
    def resolve_api_key(spec: ProviderSpec, api_key: str | None = None) -> str | None:
        """Explicit key first, then the provider's environment variable."""
        if api_key:
            return api_key
        if spec.api_key_env:
            return os.environ.get(spec.api_key_env) or None
        return None

    @staticmethod
    def create(spec: ProviderSpec, http: AsyncHttpClient, api_key: str | None = None) -> InferenceProvider:
        """Create a provider instance from a spec.

        Args:
            spec: Row of the provider table
            http: Shared async HTTP client
            api_key: Optional explicit API key (defaults to ``spec.api_key_env``)

        Returns:
            InferenceProvider instance

        Raises:
            ValueError: If the kind is not supported or no API key is available
        """
        key = ProviderFactory.resolve_api_key(spec, api_key)
        if not key:
            raise ValueError(f"{spec.name} API key required. Set {spec.api_key_env or 'api_key'}.")

        kind = spec.kind.lower()
        if kind == "chat_completions":
            from timeline_resolver.inference.chat_backend import ChatCompletionsProvider

            return ChatCompletionsProvider(spec, http, key)

        elif kind == "gemini":
            from timeline_resolver.inference.gemini_backend import GeminiProvider

            return GeminiProvider(spec, http, key)

        else:
            raise ValueError(f"Unsupported provider kind: {spec.kind}. Supported: {', '.join(KINDS)}")

    @staticmethod
    def create_all(specs: list[ProviderSpec], http: AsyncHttpClient) -> list[InferenceProvider]:
        """Create every enabled provider that has an API key, skipping the rest with a warning."""
        providers: list[InferenceProvider] = []
        for spec in specs:
            if not spec.enabled:
                continue
            try:
                providers.append(ProviderFactory.create(spec, http))
            except ValueError as e:
                logger.warning("Skipping provider %s: %s", spec.name, e)
        return providers
