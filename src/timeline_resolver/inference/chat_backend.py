"""OpenAI-compatible chat-completions provider (DeepSeek, Groq, OpenAI, ...)."""

from __future__ import annotations

from typing import Any

from timeline_resolver.inference.base import InferenceProvider

SYSTEM_MESSAGE = "You are a film historian. Respond with a single JSON object."


class ChatCompletionsProvider(InferenceProvider):
    """Provider speaking the ``/v1/chat/completions`` wire format."""

    def build_request(self, prompt: str) -> tuple[str, dict[str, str], dict[str, Any]]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        payload = {
            "model": self.spec.model,
            "temperature": self.spec.temperature,
            "max_tokens": self.spec.max_tokens,
            "messages": [
                {"role": "system", "content": SYSTEM_MESSAGE},
                {"role": "user", "content": prompt},
            ],
        }
        return self.spec.endpoint, headers, payload

    def extract_text(self, payload: dict[str, Any]) -> str | None:
        choices = payload.get("choices") or []
        if not choices:
            return None
        message = choices[0].get("message") or {}
        content = message.get("content")
        return content if isinstance(content, str) else None
