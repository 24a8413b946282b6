"""Abstract base for inference providers.

A provider is one chat-completion style endpoint. Subclasses supply only
the wire format (how to build the request and where the reply text lives);
status classification, JSON recovery and conversion to a
:class:`~timeline_resolver.models.TierResult` are shared.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from timeline_resolver.errors import ProviderError, ProviderRateLimited
from timeline_resolver.inference.parsing import coerce_period_payload, extract_json_object
from timeline_resolver.inference.prompts import build_period_prompt
from timeline_resolver.models import (
    ANSWER_SENTINELS,
    SENTINEL_LABELS,
    Outcome,
    SubjectMetadata,
    TierResult,
    format_period,
)
from timeline_resolver.utils import AsyncHttpClient

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429


@dataclass
class ProviderSpec:
    """One row of the provider priority table.

    Attributes:
        name: Provider name, also used as its source tag
        priority: Lower runs first
        rate_limit_per_hour: Rolling request budget
        reasoning: Reasoning-quality tier ("high", "medium", "low")
        enabled: Disabled providers never participate
        kind: Wire format ("chat_completions" or "gemini")
        endpoint: Request URL
        model: Model name sent to the endpoint
        api_key_env: Environment variable holding the API key
        timeout: Per-call timeout in seconds
        temperature: Sampling temperature
        max_tokens: Maximum reply tokens
    """

    name: str
    priority: int
    rate_limit_per_hour: int
    reasoning: str = "medium"
    enabled: bool = True
    kind: str = "chat_completions"
    endpoint: str = ""
    model: str = ""
    api_key_env: str | None = None
    timeout: float = 30.0
    temperature: float = 0.1
    max_tokens: int = 2048

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderSpec:
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "priority": self.priority,
            "rate_limit_per_hour": self.rate_limit_per_hour,
            "reasoning": self.reasoning,
            "enabled": self.enabled,
            "kind": self.kind,
            "endpoint": self.endpoint,
            "model": self.model,
            "api_key_env": self.api_key_env,
            "timeout": self.timeout,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }


DEFAULT_PROVIDERS: tuple[ProviderSpec, ...] = (
    ProviderSpec(
        name="deepseek",
        priority=1,
        rate_limit_per_hour=50,
        reasoning="high",
        kind="chat_completions",
        endpoint="https://api.deepseek.com/v1/chat/completions",
        model="deepseek-chat",
        api_key_env="DEEPSEEK_API_KEY",
    ),
    ProviderSpec(
        name="gemini",
        priority=2,
        rate_limit_per_hour=50,
        reasoning="medium",
        kind="gemini",
        endpoint="https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
        model="gemini-2.0-flash",
        api_key_env="GEMINI_API_KEY",
    ),
    ProviderSpec(
        name="groq",
        priority=3,
        rate_limit_per_hour=100,
        reasoning="low",
        enabled=False,
        kind="chat_completions",
        endpoint="https://api.groq.com/openai/v1/chat/completions",
        model="llama-3.3-70b-versatile",
        api_key_env="GROQ_API_KEY",
    ),
)


class InferenceProvider(ABC):
    """Base class for inference providers.

    Subclasses must implement:
    - build_request: URL, headers and JSON body for a prompt
    - extract_text: the reply text inside a decoded response body
    """

    def __init__(self, spec: ProviderSpec, http: AsyncHttpClient | None = None, api_key: str | None = None) -> None:
        """Initialize the provider.

        Args:
            spec: The provider's row of the priority table
            http: Shared async HTTP client
            api_key: API key for the endpoint
        """
        self.spec = spec
        self.http = http
        self.api_key = api_key

    @property
    def name(self) -> str:
        return self.spec.name

    @abstractmethod
    def build_request(self, prompt: str) -> tuple[str, dict[str, str], dict[str, Any]]:
        """Return ``(url, headers, json_body)`` for ``prompt``."""
        ...

    @abstractmethod
    def extract_text(self, payload: dict[str, Any]) -> str | None:
        """Return the reply text from a decoded response body."""
        ...

    async def complete(self, prompt: str) -> str:
        """Send ``prompt`` and return the raw reply text.

        Raises:
            ProviderRateLimited: On HTTP 429
            ProviderError: On transport failure, any other non-2xx status,
                or a body without reply text
        """
        if self.http is None:
            raise ProviderError(self.name, "no HTTP client configured")
        url, headers, body = self.build_request(prompt)
        try:
            resp = await self.http.post(
                url, service=self.name, json_body=body, headers=headers, timeout=self.spec.timeout
            )
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"{type(e).__name__}: {e}") from e

        if resp.status_code == RATE_LIMIT_STATUS:
            raise ProviderRateLimited(self.name, "HTTP 429")
        if not resp.is_success:
            raise ProviderError(self.name, f"HTTP {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise ProviderError(self.name, "response body is not JSON") from e
        text = self.extract_text(payload) if isinstance(payload, dict) else None
        if not text:
            raise ProviderError(self.name, "empty reply")
        return text

    async def infer(self, metadata: SubjectMetadata) -> TierResult:
        """Ask the provider for the period of ``metadata``.

        A parseable answer without a year or sentinel is a clean no-match
        attributed to this provider; an unparseable one raises.
        """
        text = await self.complete(build_period_prompt(metadata))
        data = extract_json_object(text)
        if data is None:
            logger.warning("%s returned no parseable answer: %.200r", self.name, text)
            raise ProviderError(self.name, "unparseable reply")

        fields = coerce_period_payload(data)
        start = fields["start_year"]
        period = fields["period"]
        if start is None and period not in ANSWER_SENTINELS:
            return TierResult(
                outcome=Outcome.NO_MATCH,
                source=self.name,
                confidence=fields["confidence"],
                detail="no period in reply",
            )
        if start is not None and (not period or period in SENTINEL_LABELS):
            period = format_period(start, fields["end_year"])
        return TierResult(
            outcome=Outcome.RESOLVED,
            source=self.name,
            start_year=start,
            end_year=fields["end_year"],
            additional_years=fields["additional_years"],
            period_label=period,
            confidence=fields["confidence"],
        )
