"""Two-layer attribution cache: ephemeral (local, versioned) and durable (shared).

The ephemeral layer is fast and process local; it carries a version tag and
is dropped wholesale when the running version changes. The durable layer is
the shared store of record, keyed by subject id with upsert semantics.
:class:`AttributionStore` composes the two with read-through / write-through
behaviour.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

import httpx

from timeline_resolver.errors import StoreUnavailable
from timeline_resolver.models import AttributionEntry
from timeline_resolver.utils import AsyncHttpClient, atomic_write_json

logger = logging.getLogger(__name__)


def decode_row(row: Any, origin: str) -> AttributionEntry:
    """Decode a durable row, reporting a malformed one as an unavailable read."""
    try:
        return AttributionEntry.from_dict(row)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise StoreUnavailable(f"Malformed entry in {origin}: {e}") from e


def decode_rows(rows: Iterable[Any], origin: str) -> dict[str, AttributionEntry]:
    """Decode a batch of rows, skipping malformed ones."""
    found: dict[str, AttributionEntry] = {}
    for row in rows:
        try:
            entry = decode_row(row, origin)
        except StoreUnavailable as e:
            logger.warning("Skipping row: %s", e)
            continue
        found[entry.subject_id] = entry
    return found


# ------------- Ephemeral Cache -------------


class EphemeralCache:
    """Version-tagged, thread-safe local cache of serialised entries.

    Features:
    - In-memory dict, optionally mirrored to a JSON snapshot file
    - Atomic file writes using temp file + os.replace
    - Explicit ``init(version)`` / ``reset()`` lifecycle: a version mismatch
      drops every entry (forced cold start)
    """

    VERSION_KEY = "_version"

    def __init__(self, path: str | None = None) -> None:
        """Initialize the cache.

        Args:
            path: Optional snapshot file. If None, the cache lives in memory only.
        """
        self.path = path
        self.lock = threading.Lock()
        self.version: int | None = None
        self._entries: dict[str, dict[str, Any]] = {}

    def _load(self) -> dict[str, Any]:
        if not self.path or not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to load ephemeral cache %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self) -> None:
        if not self.path:
            return
        try:
            atomic_write_json(
                self.path,
                {self.VERSION_KEY: self.version, "entries": self._entries},
                prefix=".tmp_ephemeral_cache_",
            )
        except OSError as e:
            logger.warning("Failed to save ephemeral cache %s: %s", self.path, e)

    def init(self, version: int) -> None:
        """Bind the cache to ``version``, dropping everything tagged otherwise."""
        with self.lock:
            data = self._load() if not self._entries else {self.VERSION_KEY: self.version, "entries": self._entries}
            stored_version = data.get(self.VERSION_KEY)
            if stored_version == version:
                self._entries = dict(data.get("entries") or {})
            else:
                if data.get("entries"):
                    logger.info(
                        "Ephemeral cache version %s does not match %s; dropping %d entries",
                        stored_version,
                        version,
                        len(data["entries"]),
                    )
                self._entries = {}
            self.version = version
            self._save()

    def reset(self) -> None:
        """Remove every entry, keeping the current version tag."""
        with self.lock:
            self._entries.clear()
            self._save()

    def get(self, subject_id: str) -> AttributionEntry | None:
        with self.lock:
            data = self._entries.get(subject_id)
        if data is None:
            return None
        try:
            return AttributionEntry.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding malformed cached entry %s: %s", subject_id, e)
            self.delete(subject_id)
            return None

    def set(self, entry: AttributionEntry) -> None:
        with self.lock:
            self._entries[entry.subject_id] = entry.to_dict()
            self._save()

    def delete(self, subject_id: str) -> bool:
        """Remove one entry. Returns True if it was present."""
        with self.lock:
            existed = self._entries.pop(subject_id, None) is not None
            if existed:
                self._save()
            return existed

    def clear(self) -> None:
        self.reset()

    def __contains__(self, subject_id: object) -> bool:
        with self.lock:
            return subject_id in self._entries

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)


# ------------- Durable Stores -------------


class DurableStore(ABC):
    """Shared store of record, keyed by subject id.

    Implementations raise :class:`StoreUnavailable` when the backing store
    cannot be reached; callers decide whether that is fatal.
    """

    @abstractmethod
    async def get(self, subject_id: str) -> AttributionEntry | None:
        """Fetch one entry, or None if the store has none."""

    @abstractmethod
    async def upsert(self, entry: AttributionEntry) -> None:
        """Insert or replace the entry for ``entry.subject_id``."""

    async def get_many(self, subject_ids: Iterable[str]) -> dict[str, AttributionEntry]:
        """Batch get. The default implementation loops over :meth:`get`."""
        found: dict[str, AttributionEntry] = {}
        for subject_id in subject_ids:
            entry = await self.get(subject_id)
            if entry is not None:
                found[subject_id] = entry
        return found


class JsonFileStore(DurableStore):
    """Durable store backed by a single JSON document on disk.

    Upserts keep the ``created_at`` of the entry they replace, so the file
    records when a subject was first attributed.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self.lock = threading.Lock()
        self.data: dict[str, dict[str, Any]] = {}
        if os.path.exists(path):
            try:
                with open(path, encoding="utf-8") as f:
                    loaded = json.load(f)
                self.data = loaded if isinstance(loaded, dict) else {}
            except (OSError, json.JSONDecodeError) as e:
                raise StoreUnavailable(f"Cannot read durable store {path}: {e}") from e

    async def get(self, subject_id: str) -> AttributionEntry | None:
        with self.lock:
            data = self.data.get(subject_id)
        return decode_row(data, self.path) if data else None

    async def upsert(self, entry: AttributionEntry) -> None:
        record = entry.to_dict()
        with self.lock:
            previous = self.data.get(entry.subject_id)
            created = previous.get("created_at") if isinstance(previous, dict) else None
            if isinstance(created, (int, float)) and created:
                record["created_at"] = min(created, record["created_at"])
            self.data[entry.subject_id] = record
            try:
                atomic_write_json(self.path, self.data, prefix=".tmp_durable_store_", indent=2)
            except OSError as e:
                raise StoreUnavailable(f"Cannot write durable store {self.path}: {e}") from e

    async def get_many(self, subject_ids: Iterable[str]) -> dict[str, AttributionEntry]:
        with self.lock:
            rows = [self.data[sid] for sid in subject_ids if sid in self.data]
        return decode_rows(rows, self.path)


class HttpSharedStore(DurableStore):
    """Durable store behind a small HTTP endpoint.

    Protocol:
    - ``GET {base_url}?subject_id=ID`` returns one entry, 404 when absent
    - ``GET {base_url}?subject_ids=A,B`` returns ``{"entries": [...]}``
    - ``POST {base_url}`` with the entry JSON upserts it
    """

    SERVICE = "shared_store"

    def __init__(self, http: AsyncHttpClient, base_url: str, timeout: float | None = None) -> None:
        self.http = http
        self.base_url = base_url
        self.timeout = timeout

    async def get(self, subject_id: str) -> AttributionEntry | None:
        resp = await self._call("GET", params={"subject_id": subject_id})
        if resp.status_code == 404:
            return None
        self._check(resp)
        payload = self._json(resp)
        data = payload.get("entry", payload) if isinstance(payload, dict) else None
        if not data:
            return None
        return decode_row(data, self.base_url)

    async def upsert(self, entry: AttributionEntry) -> None:
        resp = await self._call("POST", json_body=entry.to_dict())
        self._check(resp)

    async def get_many(self, subject_ids: Iterable[str]) -> dict[str, AttributionEntry]:
        ids = [sid for sid in subject_ids]
        if not ids:
            return {}
        resp = await self._call("GET", params={"subject_ids": ",".join(ids)})
        self._check(resp)
        payload = self._json(resp)
        rows = (payload.get("entries") if isinstance(payload, dict) else payload) or []
        if not isinstance(rows, list):
            raise StoreUnavailable("Shared store returned an unexpected batch payload")
        return decode_rows(rows, self.base_url)

    async def _call(self, method: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self.http.request(method, self.base_url, service=self.SERVICE, timeout=self.timeout, **kwargs)
        except httpx.HTTPError as e:
            raise StoreUnavailable(f"Shared store unreachable: {e}") from e

    @staticmethod
    def _check(resp: httpx.Response) -> None:
        if not resp.is_success:
            raise StoreUnavailable(f"Shared store returned HTTP {resp.status_code}")

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise StoreUnavailable(f"Shared store returned invalid JSON: {e}") from e


# ------------- Attribution Store -------------


class AttributionStore:
    """Read-through / write-through facade over the two cache layers.

    The ephemeral copy is authoritative for the session: durable writes are
    fire-and-forget and their failures are logged, never raised.
    """

    def __init__(
        self,
        ephemeral: EphemeralCache,
        durable: DurableStore | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.ephemeral = ephemeral
        self.durable = durable
        self.logger = logger or logging.getLogger(__name__)
        self._pending_writes: set[asyncio.Task[None]] = set()

    def init(self, version: int) -> None:
        self.ephemeral.init(version)

    def reset(self) -> None:
        self.ephemeral.reset()

    def peek(self, subject_id: str) -> AttributionEntry | None:
        """Ephemeral-only lookup, usable from synchronous code."""
        return self.ephemeral.get(subject_id)

    async def get(self, subject_id: str) -> AttributionEntry | None:
        """Return the cached entry, backfilling the ephemeral layer on a durable hit."""
        entry = self.ephemeral.get(subject_id)
        if entry is not None:
            return entry
        if self.durable is None:
            return None
        try:
            entry = await self.durable.get(subject_id)
        except StoreUnavailable as e:
            self.logger.warning("Durable store read failed for %s: %s", subject_id, e)
            return None
        if entry is not None:
            self.ephemeral.set(entry)
        return entry

    async def get_many(self, subject_ids: Iterable[str]) -> dict[str, AttributionEntry]:
        """Batch read-through; durable misses are simply absent from the result."""
        found: dict[str, AttributionEntry] = {}
        missing: list[str] = []
        for subject_id in subject_ids:
            entry = self.ephemeral.get(subject_id)
            if entry is not None:
                found[subject_id] = entry
            else:
                missing.append(subject_id)
        if missing and self.durable is not None:
            try:
                fetched = await self.durable.get_many(missing)
            except StoreUnavailable as e:
                self.logger.warning("Durable batch read failed for %d subjects: %s", len(missing), e)
                fetched = {}
            for subject_id, entry in fetched.items():
                self.ephemeral.set(entry)
                found[subject_id] = entry
        return found

    def put(self, entry: AttributionEntry) -> None:
        """Write ``entry`` to the ephemeral layer now and to the durable layer in the background."""
        if entry.is_pending:
            raise ValueError(f"Refusing to cache pending placeholder for {entry.subject_id}")
        self.ephemeral.set(entry)
        if self.durable is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._write_durable(entry))
            return
        task = loop.create_task(self._write_durable(entry))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _write_durable(self, entry: AttributionEntry) -> None:
        started = time.time()
        try:
            await self.durable.upsert(entry)
        except StoreUnavailable as e:
            self.logger.warning("Durable write failed for %s: %s", entry.subject_id, e)
            return
        self.logger.debug("Persisted %s in %.3fs", entry.subject_id, time.time() - started)

    def invalidate(self, subject_id: str) -> None:
        """Drop the ephemeral copy; the durable row stays until the next put."""
        if self.ephemeral.delete(subject_id):
            self.logger.debug("Invalidated cached entry for %s", subject_id)

    async def flush(self) -> None:
        """Wait for background durable writes to finish."""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes))
