"""Reference lookup tier: encyclopedia prose about the work, re-scanned for a period.

Queries Wikipedia's opensearch API in each configured locale, merges and
deduplicates candidate articles, then runs the pattern tiers over each
article's intro extract until one yields a period.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

import httpx

from timeline_resolver.extractor import PatternExtractor, aggregate_years
from timeline_resolver.keywords import REFERENCE_KEYWORDS, match_keywords
from timeline_resolver.models import Confidence, Outcome, Source, SubjectMetadata, TierResult
from timeline_resolver.utils import AsyncHttpClient, normalize_title_for_match, title_similarity

logger = logging.getLogger(__name__)

WIKIPEDIA_API = "https://{locale}.wikipedia.org/w/api.php"

FILM_WORDS = {"en": "film", "ja": "映画"}

# Disambiguation markers of articles about something other than the film
EXCLUDED_MARKERS = (
    "tv series",
    "television",
    "miniseries",
    "album",
    "novel",
    "book",
    "soundtrack",
    "video game",
    "song",
    "テレビドラマ",
    "小説",
    "漫画",
    "アルバム",
)

_PAREN_RE = re.compile(r"\s*[(（][^)）]*[)）]\s*$")
_FILM_YEAR_RE = re.compile(r"[(（](\d{4})")


@dataclass
class ReferenceCandidate:
    """A candidate article for the subject."""

    title: str
    locale: str
    score: float = 0.0


def _bare_title(title: str) -> str:
    """Title without its trailing disambiguation parenthetical."""
    return _PAREN_RE.sub("", title).strip()


def _is_excluded(title: str) -> bool:
    lowered = title.lower()
    return any(marker in lowered for marker in EXCLUDED_MARKERS)


class ReferenceLookupClient:
    """Finds encyclopedia prose for a subject and extracts a period from it."""

    SERVICE = "wikipedia"

    def __init__(
        self,
        http: AsyncHttpClient,
        extractor: PatternExtractor | None = None,
        locales: Sequence[str] = ("en", "ja"),
        search_limit: int = 3,
        extract_sentences: int = 10,
        keyword_table: Mapping[str, int] | None = None,
        api_url: str = WIKIPEDIA_API,
        logger: logging.Logger | None = None,
    ) -> None:
        self.http = http
        self.extractor = extractor or PatternExtractor()
        self.locales = tuple(locales)
        self.search_limit = search_limit
        self.extract_sentences = extract_sentences
        self.keyword_table = REFERENCE_KEYWORDS if keyword_table is None else keyword_table
        self.api_url = api_url
        self.logger = logger or logging.getLogger(__name__)

    # ------------- Search -------------

    def build_query(self, metadata: SubjectMetadata, locale: str) -> str:
        """Search string for one locale: original title for English, display title otherwise."""
        if locale == "en":
            title = metadata.original_title or metadata.title
        else:
            title = metadata.title or metadata.original_title
        parts = [title]
        if metadata.release_year:
            parts.append(str(metadata.release_year))
        parts.append(FILM_WORDS.get(locale, "film"))
        return " ".join(parts)

    async def _opensearch(self, locale: str, query: str) -> list[str]:
        resp = await self.http.get(
            self.api_url.format(locale=locale),
            service=self.SERVICE,
            params={
                "action": "opensearch",
                "search": query,
                "limit": self.search_limit,
                "namespace": 0,
                "format": "json",
            },
        )
        if not resp.is_success:
            raise httpx.HTTPStatusError(f"Status {resp.status_code}", request=resp.request, response=resp)
        payload = resp.json()
        if not isinstance(payload, list) or len(payload) < 2:
            return []
        return [t for t in payload[1] if isinstance(t, str)]

    def rank_candidates(
        self, metadata: SubjectMetadata, candidates: list[ReferenceCandidate]
    ) -> list[ReferenceCandidate]:
        """Drop excluded and duplicate articles and order the rest by title similarity."""
        seen: set[str] = set()
        ranked: list[ReferenceCandidate] = []
        names = [n for n in (metadata.title, metadata.original_title) if n]
        for cand in candidates:
            if _is_excluded(cand.title):
                continue
            key = normalize_title_for_match(cand.title)
            if not key or key in seen:
                continue
            seen.add(key)
            bare = _bare_title(cand.title)
            cand.score = max((title_similarity(bare, n) for n in names), default=0.0)
            m = _FILM_YEAR_RE.search(cand.title)
            if m and metadata.release_year and int(m.group(1)) == metadata.release_year:
                cand.score += 10.0
            ranked.append(cand)
        ranked.sort(key=lambda c: c.score, reverse=True)
        return ranked

    async def search(self, metadata: SubjectMetadata) -> tuple[list[ReferenceCandidate], int]:
        """Candidate articles across locales, plus the number of locales that failed."""
        candidates: list[ReferenceCandidate] = []
        failures = 0
        for locale in self.locales:
            query = self.build_query(metadata, locale)
            try:
                titles = await self._opensearch(locale, query)
            except httpx.HTTPError as e:
                failures += 1
                self.logger.warning("Reference search failed (%s) for %r: %s", locale, query, e)
                continue
            self.logger.debug("Reference search (%s) %r -> %s", locale, query, titles)
            candidates.extend(ReferenceCandidate(title=t, locale=locale) for t in titles)
        return self.rank_candidates(metadata, candidates), failures

    # ------------- Extracts -------------

    async def fetch_extract(self, title: str, locale: str) -> str:
        """Plain-text intro extract of one article ("" when missing)."""
        resp = await self.http.get(
            self.api_url.format(locale=locale),
            service=self.SERVICE,
            params={
                "action": "query",
                "prop": "extracts",
                "exintro": 1,
                "explaintext": 1,
                "exsentences": self.extract_sentences,
                "redirects": 1,
                "titles": title,
                "format": "json",
                "formatversion": 2,
            },
        )
        if not resp.is_success:
            raise httpx.HTTPStatusError(f"Status {resp.status_code}", request=resp.request, response=resp)
        pages = (resp.json().get("query") or {}).get("pages") or []
        if isinstance(pages, dict):
            pages = list(pages.values())
        for page in pages:
            extract = page.get("extract")
            if extract:
                return extract
        return ""

    def analyze(self, prose: str, metadata: SubjectMetadata) -> TierResult:
        """Run the pattern tiers, then the reference keyword table, over ``prose``."""
        text = prose.lower()
        result = self.extractor.extract_text(text, metadata.release_year, source=Source.REFERENCE_LOOKUP)
        if result.usable:
            result.confidence = Confidence.HIGH if result.detail == "explicit" else Confidence.MEDIUM
            return result
        hits = match_keywords(text, metadata.genres, self.keyword_table, gated={})
        if hits:
            return aggregate_years([h.year for h in hits], source=Source.REFERENCE_LOOKUP, confidence=Confidence.MEDIUM)
        return TierResult.no_match(Source.REFERENCE_NO_PERIOD)

    # ------------- Tier Entry Point -------------

    async def lookup(self, metadata: SubjectMetadata) -> TierResult:
        """Resolve ``metadata`` from reference prose.

        Missing articles and articles without a temporal phrase are ordinary
        no-match outcomes. Only a total transport failure reports an error.
        """
        candidates, failures = await self.search(metadata)
        if not candidates:
            if failures and failures == len(self.locales):
                return TierResult(outcome=Outcome.ERROR, source=Source.REFERENCE_ERROR, detail="search failed")
            return TierResult.no_match(Source.REFERENCE_NOT_FOUND)

        for cand in candidates:
            try:
                prose = await self.fetch_extract(cand.title, cand.locale)
            except httpx.HTTPError as e:
                self.logger.warning("Reference extract failed for %r (%s): %s", cand.title, cand.locale, e)
                continue
            if not prose:
                continue
            result = self.analyze(prose, metadata)
            if result.usable:
                result.detail = f"{cand.locale}:{cand.title}"
                self.logger.debug("Reference lookup resolved %s via %r", metadata.subject_id, cand.title)
                return result
        return TierResult.no_match(Source.REFERENCE_NO_PERIOD)
