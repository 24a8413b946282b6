"""Core data model: attribution entries, subject metadata and tier results."""

from __future__ import annotations

import re
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from timeline_resolver.utils import year_from_date

# ------------- Sentinels & Bounds -------------

NO_PERIOD = "NO_PERIOD"
LONG_AGO = "LONG_AGO"
NEAR_FUTURE = "NEAR_FUTURE"
UNKNOWN = "UNKNOWN"

SENTINEL_LABELS = frozenset({NO_PERIOD, LONG_AGO, NEAR_FUTURE, UNKNOWN})
# Sentinels that count as an answer; UNKNOWN means resolution failed
ANSWER_SENTINELS = frozenset({NO_PERIOD, LONG_AGO, NEAR_FUTURE})

YEAR_MIN = 1800
YEAR_MAX = 2200
MULTI_ERA_GAP = 20

DEFAULT_PENDING_LABEL = "analyzing…"


class Reliability(Enum):
    """Trust level of a cached attribution."""

    VERIFIED = "verified"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def is_final(self) -> bool:
        """Final entries are never re-resolved."""
        return self in (Reliability.VERIFIED, Reliability.HIGH)


class Confidence(Enum):
    """Confidence a tier reports for its own answer."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, value: Any, default: Confidence | None = None) -> Confidence:
        """Lenient conversion from provider output; unknown values fall back to ``default``."""
        fallback = default or cls.MEDIUM
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return fallback
        try:
            return cls(value.strip().lower())
        except ValueError:
            return fallback


class Outcome(Enum):
    """How a single tier ended."""

    RESOLVED = "resolved"
    NO_MATCH = "no_match"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"


class Source:
    """Source tags written on entries.

    Inference providers are recorded under their own name, so this is a
    namespace of known tags rather than a closed enum.
    """

    PATTERN = "pattern"
    KEYWORD = "keyword"
    REFERENCE_LOOKUP = "reference_lookup"
    REFERENCE_NOT_FOUND = "reference_lookup_not_found"
    REFERENCE_NO_PERIOD = "reference_lookup_no_period"
    REFERENCE_ERROR = "reference_lookup_error"
    INFERENCE_UNAVAILABLE = "inference_unavailable"
    USER_SUPPLIED = "user_supplied"
    PENDING = "pending"

    @staticmethod
    def rate_limit(provider: str) -> str:
        return f"{provider}_rate_limit"

    @staticmethod
    def error(provider: str) -> str:
        return f"{provider}_error"


# ------------- Genre Matching -------------


class GenreFamily(Enum):
    """Genre families the resolver reasons about.

    Upstream genre tags arrive localised, so each family carries English and
    Japanese aliases.
    """

    FANTASY = "fantasy"
    ANIMATION = "animation"
    FAMILY = "family"
    SCIENCE_FICTION = "science fiction"
    WAR = "war"
    HISTORY = "history"
    WESTERN = "western"

    @property
    def aliases(self) -> tuple[str, ...]:
        return _GENRE_ALIASES[self]

    def matches(self, genres: Iterable[str] | None) -> bool:
        """Return True if any tag in ``genres`` belongs to this family."""
        for tag in genres or ():
            tag_l = tag.lower().strip()
            for alias in self.aliases:
                if alias.isascii():
                    if re.search(rf"\b{re.escape(alias)}\b", tag_l):
                        return True
                elif alias in tag_l:
                    return True
        return False


_GENRE_ALIASES: dict[GenreFamily, tuple[str, ...]] = {
    GenreFamily.FANTASY: ("fantasy", "ファンタジー"),
    GenreFamily.ANIMATION: ("animation", "アニメ"),
    GenreFamily.FAMILY: ("family", "ファミリー", "家族"),
    GenreFamily.SCIENCE_FICTION: ("science fiction", "sci-fi", "sf", "サイエンスフィクション"),
    GenreFamily.WAR: ("war", "戦争"),
    GenreFamily.HISTORY: ("history", "historical", "歴史"),
    GenreFamily.WESTERN: ("western", "西部劇"),
}


def has_genre(genres: Iterable[str] | None, *families: GenreFamily) -> bool:
    """Return True if ``genres`` touches any of ``families``."""
    tags = list(genres or ())
    return any(family.matches(tags) for family in families)


# ------------- Period Labels -------------


def format_year(year: int) -> str:
    """Render a year, using BC notation for negative years."""
    if year < 0:
        return f"{-year} BC"
    return str(year)


def format_period(start_year: int | None, end_year: int | None = None) -> str:
    """Human readable label for a year or range."""
    if start_year is None:
        return UNKNOWN
    if end_year is None or end_year == start_year:
        return format_year(start_year)
    return f"{format_year(start_year)}-{format_year(end_year)}"


# ------------- Data Classes -------------


@dataclass
class SubjectMetadata:
    """Read-only metadata about a work, as returned by the upstream provider.

    Attributes:
        subject_id: Stable external identifier for the work
        title: Display title in the primary locale
        original_title: Title in the original language
        release_date: ISO date string ("YYYY-MM-DD") or None
        overview: Synopsis in the primary locale
        overview_secondary: Synopsis in the secondary locale
        genres: Localised genre tag names
    """

    subject_id: str
    title: str
    original_title: str = ""
    release_date: str | None = None
    overview: str = ""
    overview_secondary: str = ""
    genres: list[str] = field(default_factory=list)

    @property
    def release_year(self) -> int | None:
        return year_from_date(self.release_date)

    def combined_text(self) -> str:
        """Lowercase title, original title and both synopses, newline separated."""
        parts = [self.title, self.original_title, self.overview, self.overview_secondary]
        return "\n".join(p for p in parts if p).lower()


@dataclass
class TierResult:
    """Outcome of one resolution tier.

    ``trail`` lists the source tags of every attempt that led here; the
    cascade fills it so entry notes can show which providers were tried.
    """

    outcome: Outcome
    source: str
    start_year: int | None = None
    end_year: int | None = None
    additional_years: list[int] | None = None
    period_label: str = UNKNOWN
    confidence: Confidence = Confidence.LOW
    detail: str | None = None
    trail: list[str] = field(default_factory=list)

    @property
    def has_year(self) -> bool:
        return self.start_year is not None

    @property
    def usable(self) -> bool:
        """A concrete year or an answer sentinel; later tiers must not run."""
        if self.outcome is not Outcome.RESOLVED:
            return False
        return self.start_year is not None or self.period_label in ANSWER_SENTINELS

    @classmethod
    def no_match(cls, source: str, detail: str | None = None) -> TierResult:
        return cls(outcome=Outcome.NO_MATCH, source=source, detail=detail)

    @classmethod
    def sentinel(cls, label: str, source: str, confidence: Confidence = Confidence.HIGH) -> TierResult:
        return cls(outcome=Outcome.RESOLVED, source=source, period_label=label, confidence=confidence)


@dataclass(frozen=True)
class AttributionEntry:
    """The resolved in-story period of one subject.

    Entries are immutable value objects: every change produces a new entry
    which replaces the old one wholesale in the stores.
    """

    subject_id: str
    canonical_title: str
    original_title: str
    start_year: int | None
    end_year: int | None
    period_label: str
    reliability: Reliability
    source: str
    additional_years: tuple[int, ...] | None = None
    notes: str | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    is_pending: bool = False

    def __post_init__(self) -> None:
        if not self.subject_id:
            raise ValueError("subject_id must not be empty")
        if self.additional_years is not None:
            years = tuple(int(y) for y in self.additional_years)
            object.__setattr__(self, "additional_years", years or None)
        if self.is_pending:
            return
        if self.start_year is None and self.period_label not in SENTINEL_LABELS:
            raise ValueError(f"Entry {self.subject_id} has no start year but non-sentinel label {self.period_label!r}")
        if self.additional_years and self.start_year is None:
            raise ValueError(f"Entry {self.subject_id} has additional years without a start year")

    @property
    def is_final(self) -> bool:
        return not self.is_pending and self.reliability.is_final

    @classmethod
    def pending(cls, metadata: SubjectMetadata, label: str = DEFAULT_PENDING_LABEL) -> AttributionEntry:
        """Placeholder handed to callers while resolution runs in the background."""
        now = time.time()
        return cls(
            subject_id=metadata.subject_id,
            canonical_title=metadata.title,
            original_title=metadata.original_title,
            start_year=None,
            end_year=None,
            period_label=label,
            reliability=Reliability.LOW,
            source=Source.PENDING,
            created_at=now,
            updated_at=now,
            is_pending=True,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serialisable dict."""
        return {
            "subject_id": self.subject_id,
            "canonical_title": self.canonical_title,
            "original_title": self.original_title,
            "start_year": self.start_year,
            "end_year": self.end_year,
            "additional_years": list(self.additional_years) if self.additional_years else None,
            "period_label": self.period_label,
            "reliability": self.reliability.value,
            "source": self.source,
            "notes": self.notes,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AttributionEntry:
        """Create an entry from a dict produced by :meth:`to_dict`."""
        additional = data.get("additional_years")
        return cls(
            subject_id=str(data["subject_id"]),
            canonical_title=data.get("canonical_title") or "",
            original_title=data.get("original_title") or "",
            start_year=data.get("start_year"),
            end_year=data.get("end_year"),
            additional_years=tuple(additional) if additional else None,
            period_label=data.get("period_label") or UNKNOWN,
            reliability=Reliability(data.get("reliability", Reliability.LOW.value)),
            source=data.get("source") or "",
            notes=data.get("notes"),
            created_at=float(data.get("created_at") or time.time()),
            updated_at=float(data.get("updated_at") or time.time()),
        )
