"""Grading resolved attributions.

The grade decides whether an entry is final (never re-resolved) or
retryable. The genre heuristics are a judgment call, so they live in a
policy table that configuration can override.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from timeline_resolver.models import (
    LONG_AGO,
    NO_PERIOD,
    Confidence,
    GenreFamily,
    Outcome,
    Reliability,
    Source,
    TierResult,
    has_genre,
)


@dataclass(frozen=True)
class ReliabilityPolicy:
    """Tunable inputs of the reliability rules.

    Attributes:
        timeless_genres: Genres for which a timeless label is the expected answer
        timeless_labels: Labels accepted as final for timeless genres
        suspicious_genres: Genres whose works almost always have a datable setting
        failure_outcomes: Final outcomes that mark a failed (not empty) cascade
        low_confidences: Reported confidences that are not trusted
        reference_failure_sources: Reference outcomes that count against the result
        error_sources_low: Grade Low when the final source names an error
        untimed_requires_timeless_genre: Grade Low when a work outside the timeless
            genres ends without a year
    """

    timeless_genres: frozenset[GenreFamily] = field(
        default_factory=lambda: frozenset({GenreFamily.FANTASY, GenreFamily.ANIMATION, GenreFamily.FAMILY})
    )
    timeless_labels: frozenset[str] = field(default_factory=lambda: frozenset({NO_PERIOD, LONG_AGO}))
    suspicious_genres: frozenset[GenreFamily] = field(default_factory=lambda: frozenset({GenreFamily.SCIENCE_FICTION}))
    failure_outcomes: frozenset[Outcome] = field(
        default_factory=lambda: frozenset({Outcome.RATE_LIMITED, Outcome.ERROR})
    )
    low_confidences: frozenset[Confidence] = field(default_factory=lambda: frozenset({Confidence.LOW}))
    reference_failure_sources: frozenset[str] = field(
        default_factory=lambda: frozenset({Source.REFERENCE_NOT_FOUND, Source.REFERENCE_NO_PERIOD})
    )
    error_sources_low: bool = False
    untimed_requires_timeless_genre: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReliabilityPolicy:
        """Build a policy from config; genre and label lists use their string values."""
        kwargs: dict[str, Any] = {}
        if "timeless_genres" in data:
            kwargs["timeless_genres"] = frozenset(GenreFamily(g) for g in data["timeless_genres"])
        if "timeless_labels" in data:
            kwargs["timeless_labels"] = frozenset(data["timeless_labels"])
        if "suspicious_genres" in data:
            kwargs["suspicious_genres"] = frozenset(GenreFamily(g) for g in data["suspicious_genres"])
        if "failure_outcomes" in data:
            kwargs["failure_outcomes"] = frozenset(Outcome(o) for o in data["failure_outcomes"])
        if "low_confidences" in data:
            kwargs["low_confidences"] = frozenset(Confidence(c) for c in data["low_confidences"])
        if "reference_failure_sources" in data:
            kwargs["reference_failure_sources"] = frozenset(data["reference_failure_sources"])
        for flag in ("error_sources_low", "untimed_requires_timeless_genre"):
            if flag in data:
                kwargs[flag] = bool(data[flag])
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timeless_genres": sorted(g.value for g in self.timeless_genres),
            "timeless_labels": sorted(self.timeless_labels),
            "suspicious_genres": sorted(g.value for g in self.suspicious_genres),
            "failure_outcomes": sorted(o.value for o in self.failure_outcomes),
            "low_confidences": sorted(c.value for c in self.low_confidences),
            "reference_failure_sources": sorted(self.reference_failure_sources),
            "error_sources_low": self.error_sources_low,
            "untimed_requires_timeless_genre": self.untimed_requires_timeless_genre,
        }


class ReliabilityClassifier:
    """Applies the ordered reliability rules; the first rule that matches wins."""

    def __init__(self, policy: ReliabilityPolicy | None = None) -> None:
        self.policy = policy or ReliabilityPolicy()

    def classify(
        self,
        result: TierResult,
        genres: Iterable[str] | None = None,
        trail: Sequence[TierResult] = (),
        user_supplied: bool = False,
    ) -> Reliability:
        """Grade the final tier result of one resolution.

        Args:
            result: Result of the tier that resolved, or of the last tier tried
            genres: Genre tags of the subject
            trail: Results of every tier tried before ``result``
            user_supplied: True for explicit user overrides

        Returns:
            The reliability grade to store with the entry.
        """
        policy = self.policy
        tags = list(genres or ())

        if user_supplied:
            return Reliability.VERIFIED
        if result.start_year is not None:
            return Reliability.HIGH
        if has_genre(tags, *policy.timeless_genres) and result.period_label in policy.timeless_labels:
            return Reliability.HIGH
        if has_genre(tags, *policy.suspicious_genres):
            return Reliability.LOW
        if result.outcome in policy.failure_outcomes:
            return Reliability.LOW
        if result.confidence in policy.low_confidences:
            return Reliability.LOW
        sources = {r.source for r in trail} | {result.source}
        if sources & policy.reference_failure_sources:
            return Reliability.LOW
        if policy.error_sources_low and "error" in result.source:
            return Reliability.LOW
        if policy.untimed_requires_timeless_genre and not has_genre(tags, *policy.timeless_genres):
            return Reliability.LOW
        return Reliability.HIGH
