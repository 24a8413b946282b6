"""Tests for inference providers, the provider factory and the cascade."""

from __future__ import annotations

import asyncio
import json
import time

import httpx
import pytest

from timeline_resolver.errors import ProviderError, ProviderRateLimited
from timeline_resolver.inference.base import DEFAULT_PROVIDERS, ProviderSpec
from timeline_resolver.inference.cascade import InferenceCascade
from timeline_resolver.inference.chat_backend import ChatCompletionsProvider
from timeline_resolver.inference.factory import ProviderFactory
from timeline_resolver.inference.gemini_backend import GeminiProvider
from timeline_resolver.inference.prompts import build_period_prompt
from timeline_resolver.models import (
    NO_PERIOD,
    UNKNOWN,
    Confidence,
    Outcome,
    Source,
    TierResult,
)
from timeline_resolver.utils import AsyncRateLimiter


def _chat_reply(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture
def chat_spec():
    return ProviderSpec(
        name="deepseek",
        priority=1,
        rate_limit_per_hour=50,
        endpoint="https://llm.test/v1/chat/completions",
        model="deepseek-chat",
    )


@pytest.fixture
def gemini_spec():
    return ProviderSpec(
        name="gemini",
        priority=2,
        rate_limit_per_hour=50,
        kind="gemini",
        endpoint="https://gemini.test/models/{model}:generateContent",
        model="gemini-2.0-flash",
    )


class TestPrompt:
    """Tests for the shared prompt."""

    def test_includes_metadata(self, make_metadata):
        prompt = build_period_prompt(
            make_metadata(title="Dunkirk", release_date="2017-07-21", overview="Allied soldiers are surrounded.")
        )
        assert "Dunkirk" in prompt
        assert "2017" in prompt
        assert "Allied soldiers are surrounded." in prompt
        assert '"startYear"' in prompt


class TestChatCompletionsProvider:
    """Tests for the OpenAI-compatible wire format."""

    def test_resolves_from_fenced_reply(self, mock_http, chat_spec, make_metadata):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            content = '```json\n{"startYear": 1940, "endYear": null, "period": "1940", "confidence": "high"}\n```'
            return httpx.Response(200, json=_chat_reply(content))

        provider = ChatCompletionsProvider(chat_spec, mock_http(handler), "secret")
        result = asyncio.run(provider.infer(make_metadata(title="Dunkirk")))

        assert result.outcome is Outcome.RESOLVED
        assert result.source == "deepseek"
        assert result.start_year == 1940
        assert result.confidence is Confidence.HIGH
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["model"] == "deepseek-chat"
        assert seen["body"]["messages"][-1]["role"] == "user"

    def test_sentinel_reply(self, mock_http, chat_spec, make_metadata):
        content = '{"startYear": null, "period": "NO_PERIOD", "confidence": "high"}'
        provider = ChatCompletionsProvider(
            chat_spec, mock_http(lambda r: httpx.Response(200, json=_chat_reply(content))), "k"
        )
        result = asyncio.run(provider.infer(make_metadata()))
        assert result.period_label == NO_PERIOD
        assert result.usable

    def test_empty_answer_is_no_match(self, mock_http, chat_spec, make_metadata):
        """A well-formed answer without a year is a clean miss attributed to the provider."""
        content = '{"startYear": null, "period": "", "confidence": "low"}'
        provider = ChatCompletionsProvider(
            chat_spec, mock_http(lambda r: httpx.Response(200, json=_chat_reply(content))), "k"
        )
        result = asyncio.run(provider.infer(make_metadata()))
        assert result.outcome is Outcome.NO_MATCH
        assert result.source == "deepseek"

    def test_429_raises_rate_limited(self, mock_http, chat_spec, make_metadata):
        provider = ChatCompletionsProvider(chat_spec, mock_http(lambda r: httpx.Response(429)), "k")
        with pytest.raises(ProviderRateLimited):
            asyncio.run(provider.infer(make_metadata()))

    def test_server_error_raises_provider_error(self, mock_http, chat_spec, make_metadata):
        provider = ChatCompletionsProvider(chat_spec, mock_http(lambda r: httpx.Response(503)), "k")
        with pytest.raises(ProviderError):
            asyncio.run(provider.infer(make_metadata()))

    def test_non_json_body_raises_provider_error(self, mock_http, chat_spec, make_metadata):
        provider = ChatCompletionsProvider(
            chat_spec, mock_http(lambda r: httpx.Response(200, text="<html>oops</html>")), "k"
        )
        with pytest.raises(ProviderError):
            asyncio.run(provider.infer(make_metadata()))

    def test_garbage_reply_raises_provider_error(self, mock_http, chat_spec, make_metadata):
        provider = ChatCompletionsProvider(
            chat_spec, mock_http(lambda r: httpx.Response(200, json=_chat_reply("I cannot say."))), "k"
        )
        with pytest.raises(ProviderError):
            asyncio.run(provider.infer(make_metadata()))

    def test_transport_error_raises_provider_error(self, mock_http, chat_spec, make_metadata):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        provider = ChatCompletionsProvider(chat_spec, mock_http(handler), "k")
        with pytest.raises(ProviderError):
            asyncio.run(provider.infer(make_metadata()))


class TestGeminiProvider:
    """Tests for the Gemini wire format."""

    def test_request_and_reply(self, mock_http, gemini_spec, make_metadata):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers.get("x-goog-api-key")
            parts = [{"text": '{"startYear": 1863, "additionalYears": [1944], '}, {"text": '"confidence": "medium"}'}]
            return httpx.Response(200, json={"candidates": [{"content": {"parts": parts}}]})

        provider = GeminiProvider(gemini_spec, mock_http(handler), "g-key")
        result = asyncio.run(provider.infer(make_metadata()))

        assert seen["url"] == "https://gemini.test/models/gemini-2.0-flash:generateContent"
        assert seen["key"] == "g-key"
        assert result.start_year == 1863
        assert result.additional_years == [1944]
        assert result.confidence is Confidence.MEDIUM

    def test_no_candidates_is_an_error(self, mock_http, gemini_spec, make_metadata):
        provider = GeminiProvider(gemini_spec, mock_http(lambda r: httpx.Response(200, json={"candidates": []})), "k")
        with pytest.raises(ProviderError):
            asyncio.run(provider.infer(make_metadata()))


class TestProviderFactory:
    """Tests for provider construction from table rows."""

    def test_default_table(self):
        """DeepSeek first, Gemini second, Groq present but disabled."""
        rows = {spec.name: spec for spec in DEFAULT_PROVIDERS}
        assert rows["deepseek"].priority < rows["gemini"].priority < rows["groq"].priority
        assert not rows["groq"].enabled

    def test_create_by_kind(self, mock_http, chat_spec, gemini_spec):
        http = mock_http(lambda r: httpx.Response(200))
        assert isinstance(ProviderFactory.create(chat_spec, http, "k"), ChatCompletionsProvider)
        assert isinstance(ProviderFactory.create(gemini_spec, http, "k"), GeminiProvider)

    def test_key_from_environment(self, mock_http, chat_spec, monkeypatch):
        chat_spec.api_key_env = "TEST_DEEPSEEK_KEY"
        monkeypatch.setenv("TEST_DEEPSEEK_KEY", "from-env")
        provider = ProviderFactory.create(chat_spec, mock_http(lambda r: httpx.Response(200)))
        assert provider.api_key == "from-env"

    def test_missing_key_raises(self, mock_http, chat_spec, monkeypatch):
        chat_spec.api_key_env = "TEST_MISSING_KEY"
        monkeypatch.delenv("TEST_MISSING_KEY", raising=False)
        with pytest.raises(ValueError, match="API key required"):
            ProviderFactory.create(chat_spec, mock_http(lambda r: httpx.Response(200)))

    def test_unknown_kind_raises(self, mock_http, chat_spec):
        chat_spec.kind = "carrier_pigeon"
        with pytest.raises(ValueError, match="Unsupported provider kind"):
            ProviderFactory.create(chat_spec, mock_http(lambda r: httpx.Response(200)), "k")

    def test_create_all_skips_unavailable(self, mock_http, chat_spec, gemini_spec, monkeypatch):
        chat_spec.api_key_env = "TEST_DEEPSEEK_KEY"
        gemini_spec.api_key_env = "TEST_GEMINI_KEY"
        monkeypatch.setenv("TEST_DEEPSEEK_KEY", "k")
        monkeypatch.delenv("TEST_GEMINI_KEY", raising=False)
        disabled = ProviderSpec(
            name="groq", priority=3, rate_limit_per_hour=100, enabled=False, api_key_env="TEST_DEEPSEEK_KEY"
        )
        http = mock_http(lambda r: httpx.Response(200))
        providers = ProviderFactory.create_all([chat_spec, gemini_spec, disabled], http)
        assert [p.name for p in providers] == ["deepseek"]


class TestInferenceCascade:
    """Tests for priority-ordered fallback."""

    def test_falls_through_rate_limit_and_garbage(self, fake_provider, make_metadata):
        """Rate-limited and broken providers are skipped; the next valid answer wins."""
        limited = fake_provider("first", priority=1, reply=ProviderRateLimited("first", "HTTP 429"))
        broken = fake_provider("second", priority=2, reply=ProviderError("second", "unparseable reply"))
        good = fake_provider(
            "third",
            priority=3,
            reply=TierResult(outcome=Outcome.RESOLVED, source="third", start_year=1944, confidence=Confidence.HIGH),
        )
        cascade = InferenceCascade([good, broken, limited])

        result = asyncio.run(cascade.run(make_metadata()))

        assert result.source == "third"
        assert result.start_year == 1944
        assert result.trail == ["first_rate_limit", "second_error", "third"]
        assert (limited.calls, broken.calls, good.calls) == (1, 1, 1)

    def test_priority_order_and_short_circuit(self, fake_provider, make_metadata):
        answer = TierResult(outcome=Outcome.RESOLVED, source="a", start_year=1863)
        a = fake_provider("a", priority=1, reply=answer)
        b = fake_provider("b", priority=2, reply=answer)
        cascade = InferenceCascade([b, a])
        assert cascade.provider_names == ["a", "b"]
        asyncio.run(cascade.run(make_metadata()))
        assert (a.calls, b.calls) == (1, 0)

    def test_disabled_providers_never_run(self, fake_provider, make_metadata):
        off = fake_provider("off", enabled=False)
        cascade = InferenceCascade([off])
        result = asyncio.run(cascade.run(make_metadata()))
        assert off.calls == 0
        assert result.source == Source.INFERENCE_UNAVAILABLE
        assert result.outcome is Outcome.NO_MATCH

    def test_exhausted_budget_is_a_rate_limit(self, fake_provider, make_metadata):
        """An exhausted hourly budget skips the provider without calling it."""
        answer = TierResult(outcome=Outcome.RESOLVED, source="solo", start_year=1944)
        solo = fake_provider("solo", reply=answer, rate_limit_per_hour=1)
        cascade = InferenceCascade([solo])

        async def scenario():
            first = await cascade.run(make_metadata())
            second = await cascade.run(make_metadata())
            return first, second

        first, second = asyncio.run(scenario())
        assert first.start_year == 1944
        assert second.outcome is Outcome.RATE_LIMITED
        assert second.source == "solo_rate_limit"
        assert second.period_label == UNKNOWN
        assert solo.calls == 1

    def test_custom_budgets(self, fake_provider, make_metadata):
        solo = fake_provider("solo")
        limiter = AsyncRateLimiter(1, window=3600)
        limiter.timestamps.append(time.time())
        cascade = InferenceCascade([solo], budgets={"solo": limiter})
        result = asyncio.run(cascade.run(make_metadata()))
        assert result.outcome is Outcome.RATE_LIMITED
        assert solo.calls == 0

    def test_exhaustion_reports_last_attempt(self, fake_provider, make_metadata):
        a = fake_provider("a", priority=1, reply=ProviderError("a", "HTTP 500"))
        b = fake_provider("b", priority=2, reply=None)
        result = asyncio.run(InferenceCascade([a, b]).run(make_metadata()))
        assert result.period_label == UNKNOWN
        assert result.outcome is Outcome.NO_MATCH
        assert result.source == "b"
        assert result.trail == ["a_error", "b"]
        assert not result.usable

    def test_provider_timeout(self, fake_provider, make_metadata):
        slow = fake_provider("slow", timeout=0.01)

        async def sleepy(metadata):
            await asyncio.sleep(1)

        slow.infer = sleepy
        result = asyncio.run(InferenceCascade([slow]).run(make_metadata()))
        assert result.outcome is Outcome.ERROR
        assert result.source == "slow_error"
        assert result.detail == "timeout"
