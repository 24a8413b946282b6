"""Regex tiers for direct period extraction.

Tiers are ordered most specific first. The extractor stops at the first
tier with any match, so a bare "in 1999" never competes with an explicit
"set in 1944" in the same synopsis.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from timeline_resolver.models import YEAR_MAX, YEAR_MIN, Confidence

# A four digit year not glued to other digits and not a decade ("1990s")
_Y = r"(\d{4})(?!\d)"
_Y_NOT_DECADE = r"(\d{4})(?!\d|'?s\b)"
_TRAVEL = r"\b(?:back|sent|travel(?:s|ed|led|ing|ling)?|transported)\b[^.\n]*?"


@dataclass(frozen=True)
class PatternTier:
    """An ordered group of year patterns sharing a confidence level."""

    name: str
    patterns: tuple[re.Pattern[str], ...]
    confidence: Confidence
    is_range: bool = False
    is_decade: bool = False


@dataclass(frozen=True)
class TierMatch:
    """Years a tier found, in order of appearance."""

    tier: PatternTier
    years: list[int]
    ranges: list[tuple[int, int]]


PATTERN_TIERS: tuple[PatternTier, ...] = (
    PatternTier(
        "explicit",
        (
            re.compile(rf"\bset (?:in|during) (?:the year )?{_Y_NOT_DECADE}"),
            re.compile(rf"\b(?:takes|taking|took) place (?:in|during) (?:the year )?{_Y_NOT_DECADE}"),
            re.compile(rf"\b(?:occurs|happens|happening) in (?:the year )?{_Y_NOT_DECADE}"),
            re.compile(r"舞台は(\d{4})年(?!代)"),
            re.compile(r"(\d{4})年を舞台"),
            re.compile(r"^(\d{4})年[、,]", re.MULTILINE),
        ),
        Confidence.HIGH,
    ),
    PatternTier(
        "range",
        (
            re.compile(r"(?<!\d)(\d{4})\s*[-–—~〜]\s*(\d{4})(?!\d)"),
            re.compile(rf"\bfrom {_Y} (?:to|until|through) {_Y}"),
            re.compile(rf"\bbetween {_Y} and {_Y}"),
        ),
        Confidence.HIGH,
        is_range=True,
    ),
    PatternTier(
        "time_travel",
        (
            re.compile(rf"{_TRAVEL}\bto (?:the year )?{_Y_NOT_DECADE}"),
            re.compile(rf"{_TRAVEL}\bin {_Y_NOT_DECADE}"),
        ),
        Confidence.MEDIUM,
    ),
    PatternTier(
        "decade",
        (
            re.compile(r"\b(?:early|mid|late)[\s-]+(\d{3}0)'?s\b"),
            re.compile(r"(?<!\d)(\d{3}0)年代"),
            re.compile(r"(?<!\d)(\d{3}0)'?s\b"),
        ),
        Confidence.MEDIUM,
        is_decade=True,
    ),
    PatternTier(
        "bare",
        (
            re.compile(rf"\bin {_Y_NOT_DECADE}"),
            re.compile(r"(?<!\d)(\d{4})年(?!代)"),
        ),
        Confidence.MEDIUM,
    ),
)

TITLE_YEAR_RE = re.compile(r"(?<!\d)(\d{4})(?!\d)")


def year_in_bounds(year: int) -> bool:
    return YEAR_MIN <= year <= YEAR_MAX


def run_tier(tier: PatternTier, text: str, release_year: int | None = None) -> TierMatch | None:
    """Apply every pattern of ``tier`` to ``text``.

    Years outside the plausible range and years equal to the release year
    are dropped. Returns None when nothing survives.
    """
    years: list[int] = []
    ranges: list[tuple[int, int]] = []
    for pattern in tier.patterns:
        for m in pattern.finditer(text):
            found = [int(g) for g in m.groups() if g]
            if tier.is_range:
                if len(found) != 2:
                    continue
                start, end = sorted(found)
                if start == end or not (year_in_bounds(start) and year_in_bounds(end)):
                    continue
                # range endpoints are kept even when one equals the release year
                ranges.append((start, end))
                years.extend(y for y in (start, end) if y not in years)
                continue
            for year in found:
                if not year_in_bounds(year) or year == release_year:
                    continue
                if year not in years:
                    years.append(year)
    if not years:
        return None
    return TierMatch(tier=tier, years=years, ranges=ranges)


def first_matching_tier(
    text: str,
    release_year: int | None = None,
    tiers: Iterable[PatternTier] = PATTERN_TIERS,
) -> TierMatch | None:
    """Run tiers in order and return the first with any surviving year."""
    for tier in tiers:
        match = run_tier(tier, text, release_year)
        if match is not None:
            return match
    return None


def title_year(title: str | None) -> int | None:
    """A literal, plausible year inside a title ("Blade Runner 2049" -> 2049)."""
    if not title:
        return None
    for m in TITLE_YEAR_RE.finditer(title):
        year = int(m.group(1))
        if year_in_bounds(year):
            return year
    return None


# ------------- Century Expressions -------------

_CENTURY_EN_RE = re.compile(
    r"\b(?:(early|mid|middle of the|late|beginning of the|end of the|turn of the)[\s-]+)?"
    r"(\d{1,2})(?:st|nd|rd|th)[\s-]+century\b"
)
_CENTURY_JA_RE = re.compile(r"(\d{1,2})世紀(初頭|前半|半ば|中頃|中期|後半|末)?")

CENTURY_EARLY = 20
CENTURY_MID = 50
CENTURY_LATE = 80
MIN_CENTURY = 1
MAX_CENTURY = 21

_QUALIFIER_OFFSETS = {
    "early": CENTURY_EARLY,
    "beginning of the": CENTURY_EARLY,
    "初頭": CENTURY_EARLY,
    "前半": CENTURY_EARLY,
    "mid": CENTURY_MID,
    "middle of the": CENTURY_MID,
    "半ば": CENTURY_MID,
    "中頃": CENTURY_MID,
    "中期": CENTURY_MID,
    "late": CENTURY_LATE,
    "end of the": CENTURY_LATE,
    "後半": CENTURY_LATE,
    "末": CENTURY_LATE,
}

_QUALIFIER_LABELS = {CENTURY_EARLY: "early", CENTURY_MID: "mid", CENTURY_LATE: "late"}


@dataclass(frozen=True)
class CenturyMatch:
    century: int
    year: int
    label: str


def _ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def century_year(century: int, qualifier: str | None = None) -> int:
    """Representative year of a century expression.

    Unqualified centuries map to the midpoint ``(c - 1) * 100 + 50``;
    "turn of the" maps to the boundary at the end of the century.
    """
    if qualifier == "turn of the":
        return century * 100
    offset = _QUALIFIER_OFFSETS.get(qualifier or "", CENTURY_MID)
    return (century - 1) * 100 + offset


def find_centuries(text: str) -> list[CenturyMatch]:
    """All century expressions in ``text``, English and Japanese."""
    found: list[CenturyMatch] = []
    raw = [(m.group(2), m.group(1)) for m in _CENTURY_EN_RE.finditer(text)]
    raw += [(m.group(1), m.group(2)) for m in _CENTURY_JA_RE.finditer(text)]
    for number, qualifier in raw:
        century = int(number)
        if not MIN_CENTURY <= century <= MAX_CENTURY:
            continue
        year = century_year(century, qualifier)
        if qualifier == "turn of the":
            label = f"turn of the {_ordinal(century)} century"
        elif qualifier:
            label = f"{_QUALIFIER_LABELS[_QUALIFIER_OFFSETS[qualifier]]} {_ordinal(century)} century"
        else:
            label = f"{_ordinal(century)} century"
        found.append(CenturyMatch(century=century, year=year, label=label))
    return found


# ------------- Sentinel Phrases -------------

FANTASY_FRANCHISES = (
    "lord of the rings",
    "the hobbit",
    "middle-earth",
    "middle earth",
    "ロード・オブ・ザ・リング",
    "ホビット",
    "ミドルアース",
    "中つ国",
)

FANTASY_WORLD_PHRASES = (
    "fictional world",
    "fictional land",
    "fictional kingdom",
    "fantasy world",
    "imaginary world",
    "imaginary land",
    "mythical land",
    "mythical kingdom",
    "magical kingdom",
    "架空の世界",
    "架空の国",
    "ファンタジー世界",
    "異世界",
)

LONG_AGO_RE = re.compile(r"\ba long,? long time ago\b|\ba long time ago\b|はるか昔|遥か昔|遠い昔")


def mentions_fantasy_world(text: str) -> bool:
    """Known fantasy franchise or fictional-world phrasing."""
    return any(phrase in text for phrase in FANTASY_FRANCHISES + FANTASY_WORLD_PHRASES)


def mentions_long_ago(text: str) -> bool:
    return LONG_AGO_RE.search(text) is not None
