"""Resolution orchestrator: sequences the tiers against the cache.

Each subject resolves in its own asyncio task. Within a subject the tiers
run strictly in order and stop at the first usable result:

    cache -> pattern extractor -> reference lookup -> inference cascade

The outcome is graded, wrapped in an :class:`AttributionEntry` and written
through the store, unless the caller stopped tracking the subject meanwhile.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from enum import Enum
from typing import Any

from timeline_resolver.cache import AttributionStore
from timeline_resolver.extractor import PatternExtractor
from timeline_resolver.inference.cascade import InferenceCascade
from timeline_resolver.models import (
    DEFAULT_PENDING_LABEL,
    SENTINEL_LABELS,
    UNKNOWN,
    AttributionEntry,
    Outcome,
    Reliability,
    Source,
    SubjectMetadata,
    TierResult,
    format_period,
)
from timeline_resolver.reference import ReferenceLookupClient
from timeline_resolver.reliability import ReliabilityClassifier

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[AttributionEntry], Any]

RESOLVER_ERROR_SOURCE = "resolver_error"


class ResolutionState(Enum):
    """Per-subject state of the resolution state machine."""

    UNRESOLVED = "unresolved"
    PENDING = "pending"
    RESOLVING_CACHE = "resolving_cache"
    RESOLVING_PATTERN = "resolving_pattern"
    RESOLVING_REFERENCE = "resolving_reference"
    RESOLVING_INFERENCE = "resolving_inference"
    RESOLVED_FINAL = "resolved_final"
    RESOLVED_RETRYABLE = "resolved_retryable"


class ResolutionOrchestrator:
    """Runs the tiered resolution for subjects and owns their lifecycle.

    Collaborators are injected so tests can count calls on each tier:
    - store: two-layer attribution cache
    - extractor: pattern/keyword tier (synchronous)
    - reference: reference lookup tier (optional)
    - cascade: inference tier (optional)
    """

    def __init__(
        self,
        store: AttributionStore,
        extractor: PatternExtractor | None = None,
        reference: ReferenceLookupClient | None = None,
        cascade: InferenceCascade | None = None,
        classifier: ReliabilityClassifier | None = None,
        reference_timeout: float = 30.0,
        inference_timeout: float = 120.0,
        pending_label: str = DEFAULT_PENDING_LABEL,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.extractor = extractor or PatternExtractor()
        self.reference = reference
        self.cascade = cascade
        self.classifier = classifier or ReliabilityClassifier()
        self.reference_timeout = reference_timeout
        self.inference_timeout = inference_timeout
        self.pending_label = pending_label
        self.logger = logger or logging.getLogger(__name__)
        self._tracked: set[str] = set()
        self._states: dict[str, ResolutionState] = {}
        self._tasks: dict[str, asyncio.Task[AttributionEntry]] = {}
        self._callbacks: dict[str, list[CompletionCallback]] = {}
        self._callback_tasks: set[asyncio.Task[Any]] = set()

    # ------------- Tracking -------------

    def track(self, subject_id: str) -> None:
        self._tracked.add(subject_id)

    def untrack(self, subject_id: str) -> None:
        """Stop caring about ``subject_id``; an in-flight result will be discarded."""
        self._tracked.discard(subject_id)
        self._callbacks.pop(subject_id, None)

    def is_tracked(self, subject_id: str) -> bool:
        return subject_id in self._tracked

    def state(self, subject_id: str) -> ResolutionState:
        return self._states.get(subject_id, ResolutionState.UNRESOLVED)

    def _set_state(self, subject_id: str, state: ResolutionState) -> None:
        self._states[subject_id] = state
        self.logger.debug("%s -> %s", subject_id, state.value)

    # ------------- Public API -------------

    def request(self, metadata: SubjectMetadata, on_complete: CompletionCallback | None = None) -> AttributionEntry:
        """Non-blocking entry point for the UI; must be called from a running loop.

        Returns a final cached entry directly. Otherwise starts (or joins) the
        background resolution and returns a Pending placeholder; ``on_complete``
        receives the final entry.
        """
        subject_id = metadata.subject_id
        self.track(subject_id)
        cached = self.store.peek(subject_id)
        if cached is not None and cached.is_final:
            self._set_state(subject_id, ResolutionState.RESOLVED_FINAL)
            if on_complete is not None:
                result = on_complete(cached)
                if asyncio.iscoroutine(result):
                    task = asyncio.get_running_loop().create_task(result)
                    self._callback_tasks.add(task)
                    task.add_done_callback(self._callback_tasks.discard)
            return cached

        if on_complete is not None:
            self._callbacks.setdefault(subject_id, []).append(on_complete)
        if subject_id not in self._tasks:
            task = asyncio.get_running_loop().create_task(self._run_background(metadata))
            self._tasks[subject_id] = task
            task.add_done_callback(lambda _t, sid=subject_id: self._tasks.pop(sid, None))
        if self.state(subject_id) is ResolutionState.UNRESOLVED:
            self._set_state(subject_id, ResolutionState.PENDING)
        return AttributionEntry.pending(metadata, self.pending_label)

    async def _run_background(self, metadata: SubjectMetadata) -> AttributionEntry:
        subject_id = metadata.subject_id
        try:
            entry = await self._resolve(metadata)
        except Exception:
            self.logger.exception("Resolution of %s crashed", subject_id)
            entry = self._build_entry(
                metadata,
                TierResult(outcome=Outcome.ERROR, source=RESOLVER_ERROR_SOURCE, detail="internal error"),
                Reliability.LOW,
                created_at=None,
            )
            if self.is_tracked(subject_id):
                self._set_state(subject_id, ResolutionState.RESOLVED_RETRYABLE)
        for callback in self._callbacks.pop(subject_id, []):
            if not self.is_tracked(subject_id):
                break
            try:
                result = callback(entry)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                self.logger.exception("Completion callback for %s failed", subject_id)
        return entry

    async def resolve(self, metadata: SubjectMetadata) -> AttributionEntry:
        """Resolve one subject through the tiers and cache the outcome.

        Never raises for tier or store failures: the worst outcome is an
        UNKNOWN entry graded Low.
        """
        self.track(metadata.subject_id)
        return await self._resolve(metadata)

    async def _resolve(self, metadata: SubjectMetadata) -> AttributionEntry:
        subject_id = metadata.subject_id
        self._set_state(subject_id, ResolutionState.RESOLVING_CACHE)
        cached = await self.store.get(subject_id)
        if cached is not None and cached.is_final:
            self.logger.debug("Cache hit for %s (%s)", subject_id, cached.reliability.value)
            self._set_state(subject_id, ResolutionState.RESOLVED_FINAL)
            return cached
        if cached is not None:
            self.logger.info("Re-resolving %s: cached entry is %s", subject_id, cached.reliability.value)
            self.store.invalidate(subject_id)

        trail: list[TierResult] = []
        result = await self._run_tiers(metadata, trail)

        reliability = self.classifier.classify(result, metadata.genres, trail)
        entry = self._build_entry(
            metadata, result, reliability, created_at=cached.created_at if cached else None, trail=trail
        )

        if not self.is_tracked(subject_id):
            self.logger.info("Discarding result for untracked subject %s", subject_id)
            self._states.pop(subject_id, None)
            return entry

        self.store.put(entry)
        self._set_state(
            subject_id,
            ResolutionState.RESOLVED_FINAL if entry.is_final else ResolutionState.RESOLVED_RETRYABLE,
        )
        self.logger.info(
            "Resolved %s (%s): %s [%s, %s]",
            subject_id,
            metadata.title,
            entry.period_label,
            entry.source,
            entry.reliability.value,
        )
        return entry

    async def resolve_many(self, subjects: Iterable[SubjectMetadata]) -> list[AttributionEntry]:
        """Resolve several subjects concurrently; results follow input order."""
        return list(await asyncio.gather(*(self.resolve(m) for m in subjects)))

    async def warm(self, subject_ids: Iterable[str]) -> dict[str, AttributionEntry]:
        """Batch-load cached entries into the ephemeral layer."""
        return await self.store.get_many(list(subject_ids))

    async def apply_override(
        self,
        subject_id: str,
        start_year: int | None,
        end_year: int | None = None,
        period_label: str | None = None,
        canonical_title: str = "",
        original_title: str = "",
        notes: str | None = None,
    ) -> AttributionEntry:
        """Store a user-supplied attribution, graded Verified, bypassing every tier.

        Raises:
            ValueError: If the override is inconsistent (e.g. no year and no sentinel label)
        """
        if start_year is not None and end_year is not None and end_year < start_year:
            raise ValueError(f"end_year {end_year} precedes start_year {start_year}")
        label = period_label or format_period(start_year, end_year)
        if start_year is None and label not in SENTINEL_LABELS:
            raise ValueError("An override without a start year needs a sentinel period label")

        previous = await self.store.get(subject_id)
        now = time.time()
        entry = AttributionEntry(
            subject_id=subject_id,
            canonical_title=canonical_title or (previous.canonical_title if previous else ""),
            original_title=original_title or (previous.original_title if previous else ""),
            start_year=start_year,
            end_year=end_year,
            period_label=label,
            reliability=self.classifier.classify(
                TierResult(outcome=Outcome.RESOLVED, source=Source.USER_SUPPLIED, start_year=start_year),
                user_supplied=True,
            ),
            source=Source.USER_SUPPLIED,
            notes=notes,
            created_at=previous.created_at if previous else now,
            updated_at=now,
        )
        self.store.put(entry)
        self._set_state(subject_id, ResolutionState.RESOLVED_FINAL)
        self.logger.info("Applied user override for %s: %s", subject_id, label)
        return entry

    async def drain(self) -> None:
        """Wait for background resolutions and durable writes to finish."""
        while self._tasks or self._callback_tasks:
            await asyncio.gather(*self._tasks.values(), *self._callback_tasks, return_exceptions=True)
        await self.store.flush()

    # ------------- Tiers -------------

    async def _run_tiers(self, metadata: SubjectMetadata, trail: list[TierResult]) -> TierResult:
        subject_id = metadata.subject_id

        self._set_state(subject_id, ResolutionState.RESOLVING_PATTERN)
        result = self.extractor.extract(metadata)
        trail.append(result)
        if result.usable:
            return result

        if self.reference is not None:
            self._set_state(subject_id, ResolutionState.RESOLVING_REFERENCE)
            result = await self._guarded(
                self.reference.lookup(metadata), self.reference_timeout, Source.REFERENCE_ERROR, "reference lookup"
            )
            trail.append(result)
            if result.usable:
                return result

        if self.cascade is not None:
            self._set_state(subject_id, ResolutionState.RESOLVING_INFERENCE)
            result = await self._guarded(
                self.cascade.run(metadata), self.inference_timeout, Source.INFERENCE_UNAVAILABLE, "inference cascade"
            )
            trail.append(result)
            if result.usable:
                return result

        # nothing usable: report the last tier's failure as UNKNOWN
        return TierResult(
            outcome=result.outcome,
            source=result.source,
            period_label=UNKNOWN,
            confidence=result.confidence,
            detail=result.detail,
            trail=result.trail,
        )

    async def _guarded(self, call: Awaitable[TierResult], timeout: float, source: str, what: str) -> TierResult:
        """Await a tier with a timeout; timeouts and transport errors become ERROR results."""
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.warning("%s timed out after %.1fs", what, timeout)
            return TierResult(outcome=Outcome.ERROR, source=source, detail="timeout")
        except Exception as e:
            self.logger.exception("%s failed", what)
            return TierResult(outcome=Outcome.ERROR, source=source, detail=f"{type(e).__name__}: {e}")

    # ------------- Entries -------------

    def _build_entry(
        self,
        metadata: SubjectMetadata,
        result: TierResult,
        reliability: Reliability,
        created_at: float | None,
        trail: list[TierResult] | None = None,
    ) -> AttributionEntry:
        now = time.time()
        label = result.period_label
        if result.start_year is None and label not in SENTINEL_LABELS:
            label = UNKNOWN
        elif result.start_year is not None and (not label or label in SENTINEL_LABELS):
            label = format_period(result.start_year, result.end_year)

        steps = [r.source for r in (trail or [])[:-1]] + (result.trail or [result.source])
        notes = f"{result.confidence.value} confidence; tiers: {' -> '.join(steps)}"
        if result.detail:
            notes = f"{notes}; {result.detail}"

        return AttributionEntry(
            subject_id=metadata.subject_id,
            canonical_title=metadata.title,
            original_title=metadata.original_title,
            start_year=result.start_year,
            end_year=result.end_year,
            additional_years=tuple(result.additional_years) if result.additional_years else None,
            period_label=label,
            reliability=reliability,
            source=result.source,
            notes=notes,
            created_at=created_at or now,
            updated_at=now,
        )
