"""Tests for utility functions."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from timeline_resolver.utils import (
    AsyncRateLimiter,
    AsyncRateLimiterRegistry,
    DiskCache,
    atomic_write_json,
    normalize_title_for_match,
    safe_lower,
    strip_diacritics,
    title_similarity,
    year_from_date,
)


class TestSafeLower:
    """Tests for safe_lower function."""

    def test_safe_lower_normal(self):
        assert safe_lower("HELLO") == "hello"

    def test_safe_lower_none(self):
        assert safe_lower(None) == ""

    def test_safe_lower_strips_whitespace(self):
        assert safe_lower("  HELLO  ") == "hello"


class TestStripDiacritics:
    """Tests for strip_diacritics function."""

    def test_strip_diacritics_accent(self):
        assert strip_diacritics("Amélie") == "Amelie"

    def test_strip_diacritics_no_change(self):
        assert strip_diacritics("hello") == "hello"


class TestNormalizeTitleForMatch:
    """Tests for normalize_title_for_match function."""

    def test_normalize_removes_punctuation(self):
        assert normalize_title_for_match("Dunkirk (2017 film)") == "dunkirk 2017 film"

    def test_normalize_keeps_japanese(self):
        """Full-width punctuation is folded and Japanese characters survive."""
        assert normalize_title_for_match("ダンケルク（2017年の映画）") == "ダンケルク 2017年の映画"

    def test_normalize_empty(self):
        assert normalize_title_for_match("") == ""


class TestTitleSimilarity:
    """Tests for title_similarity function."""

    def test_identical_after_normalization(self):
        assert title_similarity("Blade Runner 2049", "blade runner: 2049") == 100

    def test_word_order_ignored(self):
        assert title_similarity("Runner Blade", "Blade Runner") == 100

    def test_empty_is_zero(self):
        assert title_similarity("", "Blade Runner") == 0.0


class TestYearFromDate:
    """Tests for year_from_date function."""

    @pytest.mark.parametrize(
        "value,expected",
        [("1997-12-19", 1997), ("2049", 2049), ("", None), (None, None), ("unknown", None)],
    )
    def test_year_from_date(self, value, expected):
        assert year_from_date(value) == expected


class TestDiskCache:
    """Tests for the JSON response cache."""

    def test_persists_between_instances(self, tmp_path):
        path = str(tmp_path / "http.json")
        DiskCache(path).set("k", {"v": 1})
        assert DiskCache(path).get("k") == {"v": 1}

    def test_disabled_without_path(self):
        cache = DiskCache(None)
        cache.set("k", 1)
        assert cache.get("k") is None

    def test_unreadable_file_ignored(self, tmp_path):
        path = tmp_path / "http.json"
        path.write_text("{not json", encoding="utf-8")
        assert DiskCache(str(path)).get("k") is None

    def test_atomic_write_creates_directories(self, tmp_path):
        path = tmp_path / "nested" / "out.json"
        atomic_write_json(str(path), {"タイトル": "ダンケルク"})
        assert json.loads(path.read_text(encoding="utf-8")) == {"タイトル": "ダンケルク"}


class TestAsyncRateLimiter:
    """Tests for sliding-window rate limiting."""

    def test_try_acquire_respects_budget(self):
        limiter = AsyncRateLimiter(2, window=3600)

        async def acquire_three():
            return [await limiter.try_acquire() for _ in range(3)]

        assert asyncio.run(acquire_three()) == [True, True, False]
        assert limiter.remaining == 0

    def test_expired_timestamps_free_slots(self):
        limiter = AsyncRateLimiter(1, window=60)
        limiter.timestamps = [0.0]
        assert limiter.remaining == 1

    def test_minimum_of_one_request(self):
        assert AsyncRateLimiter(0).max_requests == 1

    def test_registry_uses_custom_limits(self):
        registry = AsyncRateLimiterRegistry({"tmdb": 5})
        assert registry.get("tmdb").max_requests == 5
        assert registry.get("wikipedia").max_requests == 60
        assert registry.get("tmdb") is registry.get("tmdb")


class TestAsyncHttpClient:
    """Tests for the async HTTP client."""

    def test_get_passes_params_and_headers(self, mock_http):
        seen = {}

        def handler(request):
            seen["q"] = request.url.params["q"]
            seen["agent"] = request.headers["user-agent"]
            return httpx.Response(200, json={"ok": True})

        http = mock_http(handler, user_agent="tester/1.0")
        resp = asyncio.run(http.get("https://example.org/api", params={"q": "dunkirk"}))

        assert resp.json() == {"ok": True}
        assert seen == {"q": "dunkirk", "agent": "tester/1.0"}

    def test_retries_retryable_status(self, mock_http, monkeypatch):
        statuses = [503, 200]
        sleeps = []

        async def no_sleep(delay):
            sleeps.append(delay)

        monkeypatch.setattr("timeline_resolver.utils.asyncio.sleep", no_sleep)
        http = mock_http(lambda request: httpx.Response(statuses.pop(0), json={}), max_attempts=3)
        resp = asyncio.run(http.get("https://example.org/api"))

        assert resp.status_code == 200
        assert sleeps == [1.0]

    def test_no_retry_service_returns_first_response(self, mock_http):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        http = mock_http(handler, max_attempts=4, no_retry_services={"deepseek"})
        resp = asyncio.run(http.post("https://example.org/chat", service="deepseek", json_body={}))

        assert resp.status_code == 429
        assert len(calls) == 1

    def test_transport_error_raises(self, mock_http):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(httpx.ConnectError):
            asyncio.run(mock_http(handler).get("https://example.org/api"))

    def test_get_responses_are_cached(self, mock_http, tmp_path):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"n": len(calls)})

        http = mock_http(handler, cache=DiskCache(str(tmp_path / "http.json")))

        async def twice():
            first = await http.get("https://example.org/api", params={"q": "x"})
            second = await http.get("https://example.org/api", params={"q": "x"})
            return first, second

        first, second = asyncio.run(twice())
        assert first.json() == second.json() == {"n": 1}
        assert second.headers["X-From-Cache"] == "1"
        assert len(calls) == 1
