"""Shared fixtures for timeline_resolver tests."""

from __future__ import annotations

import logging
from typing import Any, Callable

import httpx
import pytest

from timeline_resolver import (
    AttributionEntry,
    AttributionStore,
    EphemeralCache,
    Outcome,
    Reliability,
    SubjectMetadata,
    TierResult,
)
from timeline_resolver.cache import DurableStore
from timeline_resolver.errors import StoreUnavailable
from timeline_resolver.inference.base import InferenceProvider, ProviderSpec
from timeline_resolver.utils import AsyncHttpClient


@pytest.fixture
def make_metadata():
    """Factory fixture for creating subject metadata."""

    def _make_metadata(**kwargs) -> SubjectMetadata:
        data: dict[str, Any] = {
            "subject_id": "1",
            "title": "Example Film",
            "original_title": "Example Film",
            "release_date": "2010-06-01",
            "overview": "",
            "overview_secondary": "",
            "genres": ["Drama"],
        }
        data.update(kwargs)
        return SubjectMetadata(**data)

    return _make_metadata


@pytest.fixture
def make_entry():
    """Factory fixture for creating attribution entries."""

    def _make_entry(**kwargs) -> AttributionEntry:
        data: dict[str, Any] = {
            "subject_id": "1",
            "canonical_title": "Example Film",
            "original_title": "Example Film",
            "start_year": 1944,
            "end_year": None,
            "period_label": "1944",
            "reliability": Reliability.HIGH,
            "source": "pattern",
            "created_at": 1000.0,
            "updated_at": 1000.0,
        }
        data.update(kwargs)
        return AttributionEntry(**data)

    return _make_entry


@pytest.fixture
def logger():
    """Create a test logger."""
    return logging.getLogger("test")


# ------------- Fake Collaborators -------------


class FakeDurableStore(DurableStore):
    """In-memory durable store that counts calls and can be switched off."""

    def __init__(self, rows: dict[str, AttributionEntry] | None = None, available: bool = True):
        self.rows = dict(rows or {})
        self.available = available
        self.get_calls = 0
        self.upsert_calls = 0

    async def get(self, subject_id):
        self.get_calls += 1
        if not self.available:
            raise StoreUnavailable("offline")
        return self.rows.get(subject_id)

    async def upsert(self, entry):
        self.upsert_calls += 1
        if not self.available:
            raise StoreUnavailable("offline")
        self.rows[entry.subject_id] = entry


@pytest.fixture
def fake_durable():
    """Create an empty in-memory durable store."""
    return FakeDurableStore()


@pytest.fixture
def make_durable():
    """Factory fixture for creating in-memory durable stores."""

    def _create(rows: dict[str, AttributionEntry] | None = None, available: bool = True) -> FakeDurableStore:
        return FakeDurableStore(rows, available=available)

    return _create


@pytest.fixture
def memory_store(fake_durable, logger):
    """Attribution store with an in-memory ephemeral layer and a fake durable layer."""
    cache = EphemeralCache()
    store = AttributionStore(cache, fake_durable, logger=logger)
    store.init(1)
    return store


class FakeProvider(InferenceProvider):
    """Provider that returns a scripted reply (or raises) and counts calls."""

    def __init__(
        self,
        name: str,
        priority: int = 1,
        reply: TierResult | Exception | None = None,
        rate_limit_per_hour: int = 50,
        enabled: bool = True,
        timeout: float = 5.0,
    ):
        spec = ProviderSpec(
            name=name,
            priority=priority,
            rate_limit_per_hour=rate_limit_per_hour,
            enabled=enabled,
            timeout=timeout,
        )
        super().__init__(spec)
        self.reply = reply
        self.calls = 0

    def build_request(self, prompt):
        raise NotImplementedError("FakeProvider does not build requests")

    def extract_text(self, payload):
        raise NotImplementedError("FakeProvider does not parse payloads")

    async def infer(self, metadata):
        self.calls += 1
        if isinstance(self.reply, Exception):
            raise self.reply
        if self.reply is None:
            return TierResult(outcome=Outcome.NO_MATCH, source=self.name)
        return self.reply


@pytest.fixture
def fake_provider():
    """Factory fixture for creating fake providers."""

    def _create(name: str = "fake", **kwargs) -> FakeProvider:
        return FakeProvider(name, **kwargs)

    return _create


@pytest.fixture
def mock_http():
    """Factory fixture: AsyncHttpClient whose requests go to ``handler``.

    Retries are disabled so error statuses surface on the first attempt.
    """

    def _create(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> AsyncHttpClient:
        kwargs.setdefault("max_attempts", 1)
        return AsyncHttpClient(transport=httpx.MockTransport(handler), **kwargs)

    return _create
