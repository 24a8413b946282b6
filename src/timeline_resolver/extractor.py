"""Direct extraction of the in-story period from title and synopsis text."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence

from timeline_resolver.keywords import GENRE_GATED_KEYWORDS, PERIOD_KEYWORDS, match_keywords
from timeline_resolver.models import (
    LONG_AGO,
    MULTI_ERA_GAP,
    NO_PERIOD,
    Confidence,
    GenreFamily,
    Outcome,
    Source,
    SubjectMetadata,
    TierResult,
    format_period,
    format_year,
    has_genre,
)
from timeline_resolver.patterns import (
    PATTERN_TIERS,
    PatternTier,
    TierMatch,
    find_centuries,
    first_matching_tier,
    mentions_fantasy_world,
    mentions_long_ago,
    title_year,
)

logger = logging.getLogger(__name__)


def aggregate_years(
    years: Iterable[int],
    source: str,
    confidence: Confidence,
    ranges: Sequence[tuple[int, int]] = (),
    preferred_year: int | None = None,
    label: str | None = None,
) -> TierResult:
    """Fold the years one tier found into a single attribution.

    - ``preferred_year`` (a year literally in the title) wins as start year
      when it is among the matches, and suppresses multi-era handling.
    - A spread wider than ``MULTI_ERA_GAP`` is a multi-era work: every year
      but the minimum becomes an additional year, and the end year is only
      kept when an explicit range starting at the minimum was matched.
    - Otherwise the span becomes start/end.
    """
    unique = sorted(set(years))
    if not unique:
        raise ValueError("aggregate_years() needs at least one year")
    start = unique[0]
    end: int | None = None
    additional: list[int] | None = None

    if preferred_year is not None and preferred_year in unique:
        start = preferred_year
        end = unique[-1] if unique[-1] > start else None
        confidence = Confidence.HIGH
    elif unique[-1] - unique[0] > MULTI_ERA_GAP:
        end = next((e for s, e in ranges if s == start), None)
        additional = unique[1:]
    elif unique[-1] != start:
        end = unique[-1]

    if label is None or len(unique) > 1:
        if additional and end is None:
            label = ", ".join(format_year(y) for y in unique)
        else:
            label = format_period(start, end)

    return TierResult(
        outcome=Outcome.RESOLVED,
        source=source,
        start_year=start,
        end_year=end,
        additional_years=additional,
        period_label=label,
        confidence=confidence,
    )


class PatternExtractor:
    """Regex and keyword-table extraction, cheapest tier of the pipeline.

    Order of evaluation:
    1. Sentinels: fantasy world with a Fantasy genre tag (NO_PERIOD), then
       "a long time ago" phrasing (LONG_AGO)
    2. Pattern tiers, first tier with any match wins
    3. Century expressions
    4. Curated keyword table (with genre-gated keys)
    """

    def __init__(
        self,
        keyword_table: Mapping[str, int] | None = None,
        gated_keywords: Mapping[str, tuple[GenreFamily, ...]] | None = None,
        tiers: Sequence[PatternTier] = PATTERN_TIERS,
        logger: logging.Logger | None = None,
    ) -> None:
        self.keyword_table = PERIOD_KEYWORDS if keyword_table is None else keyword_table
        self.gated_keywords = GENRE_GATED_KEYWORDS if gated_keywords is None else gated_keywords
        self.tiers = tuple(tiers)
        self.logger = logger or logging.getLogger(__name__)

    def extract(self, metadata: SubjectMetadata) -> TierResult:
        """Resolve ``metadata`` from its own text, or report no match."""
        text = metadata.combined_text()
        genres = metadata.genres

        if has_genre(genres, GenreFamily.FANTASY) and mentions_fantasy_world(text):
            self.logger.debug("Fantasy world detected for %s", metadata.subject_id)
            return TierResult.sentinel(NO_PERIOD, Source.PATTERN)
        if mentions_long_ago(text):
            self.logger.debug("'Long ago' phrasing detected for %s", metadata.subject_id)
            return TierResult.sentinel(LONG_AGO, Source.PATTERN)

        preferred = title_year(metadata.title) or title_year(metadata.original_title)
        result = self.extract_text(text, metadata.release_year, preferred_year=preferred)
        if result.usable:
            return result

        hits = match_keywords(text, genres, self.keyword_table, self.gated_keywords)
        if hits:
            self.logger.debug("Keyword hits for %s: %s", metadata.subject_id, [h.keyword for h in hits])
            return aggregate_years(
                [h.year for h in hits],
                source=Source.KEYWORD,
                confidence=Confidence.MEDIUM,
                preferred_year=preferred,
            )
        return TierResult.no_match(Source.PATTERN)

    def extract_text(
        self,
        text: str,
        release_year: int | None = None,
        preferred_year: int | None = None,
        source: str = Source.PATTERN,
    ) -> TierResult:
        """Run the pattern tiers and century rules over arbitrary lowercase text."""
        match = first_matching_tier(text, release_year, self.tiers)
        if match is not None:
            self.logger.debug("Pattern tier '%s' matched years %s", match.tier.name, match.years)
            return self._from_tier_match(match, source, preferred_year)

        centuries = find_centuries(text)
        if centuries:
            self.logger.debug("Century expressions matched: %s", [c.label for c in centuries])
            return aggregate_years(
                [c.year for c in centuries],
                source=source,
                confidence=Confidence.MEDIUM,
                label=centuries[0].label,
            )
        return TierResult.no_match(source)

    @staticmethod
    def _from_tier_match(match: TierMatch, source: str, preferred_year: int | None) -> TierResult:
        label = None
        if match.tier.is_decade and len(match.years) == 1:
            label = f"{match.years[0]}s"
        result = aggregate_years(
            match.years,
            source=source,
            confidence=match.tier.confidence,
            ranges=match.ranges,
            preferred_year=preferred_year,
            label=label,
        )
        result.detail = match.tier.name
        return result
