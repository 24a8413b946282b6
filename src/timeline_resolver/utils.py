"""Shared utilities for the resolver.

Includes text normalization, async rate limiting (per-minute service limits
and rolling provider budgets), an on-disk JSON cache for GET responses, and
the async HTTP client every external collaborator goes through.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
import threading
import time
import unicodedata
from typing import Any

import httpx
from rapidfuzz.fuzz import token_sort_ratio

logger = logging.getLogger(__name__)

# ------------- Text Normalization -------------

_DATE_YEAR_RE = re.compile(r"^\s*(-?\d{1,4})")


def safe_lower(x: str | None) -> str:
    """Null-safe lowercase and strip."""
    return (x or "").lower().strip()


def strip_diacritics(text: str) -> str:
    """Remove diacritics from text (e.g., 'époque' -> 'epoque')."""
    nfkd = unicodedata.normalize("NFKD", text)
    return "".join([c for c in nfkd if not unicodedata.combining(c)])


def normalize_title_for_match(title: str) -> str:
    """Normalize a title for deduplication and fuzzy matching.

    Strips diacritics, punctuation, and extra whitespace and lowercases.
    Word characters from any script are kept so Japanese titles do not
    collapse to an empty string.
    """
    if not title:
        return ""
    t = unicodedata.normalize("NFKC", title)
    t = strip_diacritics(t).lower()
    t = re.sub(r"[^\w\s]", " ", t)
    t = t.replace("_", " ")
    t = re.sub(r"\s+", " ", t).strip()
    return t


def title_similarity(a: str, b: str) -> float:
    """Token-sort similarity of two titles in [0, 100]."""
    na, nb = normalize_title_for_match(a), normalize_title_for_match(b)
    if not na or not nb:
        return 0.0
    return token_sort_ratio(na, nb)


def year_from_date(value: str | None) -> int | None:
    """Extract the year from an ISO-ish date string ("1997-12-19" -> 1997)."""
    if not value:
        return None
    m = _DATE_YEAR_RE.match(str(value))
    if not m:
        return None
    return int(m.group(1))


# ------------- Caching -------------


class DiskCache:
    """Thread-safe on-disk JSON cache for API responses."""

    def __init__(self, path: str | None) -> None:
        self.path = path
        self.lock = threading.Lock()
        self.data: dict[str, Any] = {}
        if path and os.path.exists(path):
            try:
                with open(path, encoding="utf-8") as f:
                    self.data = json.load(f)
            except (OSError, json.JSONDecodeError):
                logger.warning("Ignoring unreadable HTTP cache %s", path)
                self.data = {}

    def get(self, key: str) -> Any | None:
        """Get a cached value by key."""
        if not self.path:
            return None
        with self.lock:
            return self.data.get(key)

    def set(self, key: str, value: Any) -> None:
        """Set a cached value."""
        if not self.path:
            return
        with self.lock:
            self.data[key] = value
            atomic_write_json(self.path, self.data, prefix=".tmp_http_cache_")


def atomic_write_json(path: str, data: Any, prefix: str = ".tmp_", indent: int | None = None) -> None:
    """Write JSON to ``path`` via a temp file in the same directory and ``os.replace``."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    tmp = tempfile.NamedTemporaryFile(
        "w", delete=False, encoding="utf-8", suffix=".json", prefix=prefix, dir=directory
    )
    try:
        json.dump(data, tmp, indent=indent, ensure_ascii=False)
        tmp.flush()
        os.fsync(tmp.fileno())
    finally:
        tmp.close()
    os.replace(tmp.name, path)


# ------------- Async Rate Limiting -------------


class AsyncRateLimiter:
    """Async-compatible rate limiter using a sliding window.

    ``wait()`` sleeps until a slot is free, which suits polite per-minute
    limits on public APIs. ``try_acquire()`` never sleeps: it reports
    whether a slot was free and takes it, which is how rolling per-provider
    budgets are enforced (an exhausted budget is skipped, not waited on).
    """

    def __init__(self, max_requests: int, window: float = 60.0) -> None:
        """Initialize the async rate limiter.

        Args:
            max_requests: Maximum number of requests allowed per window.
                         Minimum value is 1.
            window: Window length in seconds (60 for per-minute limits,
                    3600 for hourly provider budgets).
        """
        self.max_requests = max(max_requests, 1)
        self.window = window
        self.lock = asyncio.Lock()
        self.timestamps: list[float] = []

    def _prune(self, now: float) -> None:
        self.timestamps = [t for t in self.timestamps if now - t < self.window]

    @property
    def remaining(self) -> int:
        """Requests still available in the current window."""
        self._prune(time.time())
        return max(self.max_requests - len(self.timestamps), 0)

    async def wait(self) -> None:
        """Async wait until a request can be made within the rate limit."""
        async with self.lock:
            now = time.time()
            self._prune(now)

            if len(self.timestamps) >= self.max_requests:
                earliest = min(self.timestamps)
                sleep_for = self.window - (now - earliest) + 0.01
                if sleep_for > 0:
                    await asyncio.sleep(sleep_for)
                    now = time.time()
                    self._prune(now)

            self.timestamps.append(now)

    async def try_acquire(self) -> bool:
        """Take a slot if one is free; return False instead of waiting."""
        async with self.lock:
            now = time.time()
            self._prune(now)
            if len(self.timestamps) >= self.max_requests:
                return False
            self.timestamps.append(now)
            return True


class AsyncRateLimiterRegistry:
    """Manages per-service async rate limiters.

    Each external service gets its own AsyncRateLimiter so a slow public
    API never throttles an unrelated one.
    """

    DEFAULT_LIMITS = {
        "wikipedia": 60,  # Wikipedia: polite, no auth
        "tmdb": 40,  # TMDb: ~40 req / 10s historically, stay well below
        "shared_store": 120,
    }

    def __init__(self, limits: dict[str, int] | None = None) -> None:
        """Initialize the registry with optional custom limits.

        Args:
            limits: Optional dict of service name to requests per minute.
                   Overrides DEFAULT_LIMITS for specified services.
        """
        self._limits = {**self.DEFAULT_LIMITS, **(limits or {})}
        self._limiters: dict[str, AsyncRateLimiter] = {}

    def get(self, service: str) -> AsyncRateLimiter:
        """Get or create async rate limiter for service."""
        if service not in self._limiters:
            limit = self._limits.get(service, 30)
            self._limiters[service] = AsyncRateLimiter(limit)
        return self._limiters[service]

    async def wait(self, service: str) -> None:
        """Async wait for rate limit on specified service."""
        await self.get(service).wait()


# ------------- Async HTTP Client -------------


class AsyncHttpClient:
    """Async HTTP client with rate limiting, caching, and retry logic.

    This client provides async HTTP requests with:
    - Per-service rate limiting via AsyncRateLimiterRegistry
    - Response caching via DiskCache (GET only)
    - Automatic retry with exponential backoff for transient failures

    Services listed in ``no_retry_services`` get a single attempt, so a 429
    from an inference provider reaches the caller immediately instead of
    being retried here.
    """

    RETRYABLE_STATUS = {429, 500, 502, 503, 504}

    def __init__(
        self,
        rate_limiters: AsyncRateLimiterRegistry | None = None,
        cache: DiskCache | None = None,
        timeout: float = 20.0,
        user_agent: str = "timeline-resolver/0.1",
        no_retry_services: set[str] | None = None,
        max_attempts: int = 4,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the async HTTP client.

        Args:
            rate_limiters: Registry for per-service rate limiting
            cache: Optional DiskCache for caching GET responses
            timeout: Request timeout in seconds
            user_agent: User-Agent header value
            no_retry_services: Services that must never be retried
            max_attempts: Attempts per request for retryable services
            transport: Optional httpx transport (used to mock in tests)
        """
        self.rate_limiters = rate_limiters or AsyncRateLimiterRegistry()
        self.cache = cache
        self.timeout = timeout
        self.user_agent = user_agent
        self.no_retry_services = set(no_retry_services or ())
        self.max_attempts = max(max_attempts, 1)
        self.transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client instance."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": self.user_agent},
                follow_redirects=True,
                transport=self.transport,
            )
        return self._client

    def _mock_response(self, data: Any) -> httpx.Response:
        """Create a response object from cached JSON data."""
        return httpx.Response(
            200,
            content=json.dumps(data).encode("utf-8"),
            headers={"Content-Type": "application/json", "X-From-Cache": "1"},
        )

    async def request(
        self,
        method: str,
        url: str,
        service: str = "default",
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | list[Any] | None = None,
        headers: dict[str, str] | None = None,
        accept: str = "application/json",
        timeout: float | None = None,
    ) -> httpx.Response:
        """Make async HTTP request with rate limiting and retry.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Request URL
            service: Service name for rate limiting (e.g., 'wikipedia')
            params: Query parameters
            json_body: JSON body for POST requests
            headers: Additional headers (not part of the cache key)
            accept: Accept header value
            timeout: Per-request timeout override in seconds

        Returns:
            The final httpx.Response. A retryable status that persists past
            the last attempt is returned as-is so callers can classify it.

        Raises:
            httpx.HTTPError: If the last attempt failed at the transport level
        """
        cache_key = None
        if method == "GET" and self.cache:
            cache_key = json.dumps(
                {"m": method, "u": url, "p": params, "a": accept},
                sort_keys=True,
            )
            cached = self.cache.get(cache_key)
            if cached is not None:
                return self._mock_response(cached)

        request_headers = {**(headers or {}), "Accept": accept}
        if json_body is not None:
            request_headers["Content-Type"] = "application/json"

        attempts = 1 if service in self.no_retry_services else self.max_attempts
        request_timeout = httpx.Timeout(timeout) if timeout is not None else None
        backoff = 1.0
        last_error: httpx.HTTPError | None = None

        for attempt in range(attempts):
            await self.rate_limiters.wait(service)
            try:
                kwargs: dict[str, Any] = {"params": params, "json": json_body, "headers": request_headers}
                if request_timeout is not None:
                    kwargs["timeout"] = request_timeout
                resp = await self.client.request(method, url, **kwargs)
            except httpx.HTTPError as exc:
                last_error = exc
                logger.debug("%s %s failed (attempt %d/%d): %s", method, url, attempt + 1, attempts, exc)
            else:
                if resp.status_code in self.RETRYABLE_STATUS and attempt < attempts - 1:
                    logger.debug("%s %s returned %d, retrying", method, url, resp.status_code)
                else:
                    if cache_key and resp.is_success and "application/json" in resp.headers.get("content-type", ""):
                        try:
                            self.cache.set(cache_key, resp.json())
                        except (OSError, ValueError) as exc:
                            logger.debug("Could not cache response for %s: %s", url, exc)
                    return resp
            if attempt < attempts - 1:
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 16.0)

        assert last_error is not None
        raise last_error

    async def get(
        self,
        url: str,
        service: str = "default",
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        accept: str = "application/json",
        timeout: float | None = None,
    ) -> httpx.Response:
        """Convenience method for GET requests."""
        return await self.request(
            "GET", url, service=service, params=params, headers=headers, accept=accept, timeout=timeout
        )

    async def post(
        self,
        url: str,
        service: str = "default",
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | list[Any] | None = None,
        headers: dict[str, str] | None = None,
        accept: str = "application/json",
        timeout: float | None = None,
    ) -> httpx.Response:
        """Convenience method for POST requests."""
        return await self.request(
            "POST",
            url,
            service=service,
            params=params,
            json_body=json_body,
            headers=headers,
            accept=accept,
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the async HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> AsyncHttpClient:
        """Enter async context manager."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Exit async context manager."""
        await self.close()
