"""Google Gemini ``generateContent`` provider."""

from __future__ import annotations

from typing import Any

from timeline_resolver.inference.base import InferenceProvider


class GeminiProvider(InferenceProvider):
    """Provider speaking the Gemini ``generateContent`` wire format.

    The endpoint may contain a ``{model}`` placeholder; the key travels in
    the ``x-goog-api-key`` header rather than the query string.
    """

    def build_request(self, prompt: str) -> tuple[str, dict[str, str], dict[str, Any]]:
        url = self.spec.endpoint.format(model=self.spec.model)
        headers = {"x-goog-api-key": self.api_key} if self.api_key else {}
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.spec.temperature,
                "maxOutputTokens": self.spec.max_tokens,
            },
        }
        return url, headers, payload

    def extract_text(self, payload: dict[str, Any]) -> str | None:
        candidates = payload.get("candidates") or []
        if not candidates:
            return None
        parts = (candidates[0].get("content") or {}).get("parts") or []
        texts = [p.get("text") for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
        return "".join(texts) or None
