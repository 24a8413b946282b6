"""Prompt shared by every inference provider."""

from __future__ import annotations

from timeline_resolver.models import SubjectMetadata

MAX_SYNOPSIS_CHARS = 2000

PERIOD_PROMPT = """You are a film historian. Determine the period in which the STORY of this film is set
(not when it was made or released).

## Film
Title: {title}
Original title: {original_title}
Release year: {release_year}
Genres: {genres}

Synopsis (primary locale):
{overview}

Synopsis (secondary locale):
{overview_secondary}

## How to decide
1. Years or eras named in the title or synopsis.
2. Historical events, people or eras the story revolves around.
3. What you know about this film. For sequels and prequels, resolve relative phrasing
   ("ten years after the first film") against the setting of the ORIGINAL film,
   e.g. a sequel set 10 years after a film set in 2154 is set in 2164.
4. If only a century is known, use its midpoint: century C -> (C-1)*100+50
   (19th century -> 1850) and answer with confidence "medium".
5. If the story is contemporary, use the release year.
6. If the story jumps between eras more than 20 years apart, put the main era in
   startYear and the others in additionalYears.

## Sentinels (use instead of a year, with startYear null)
- "NO_PERIOD": an invented world with no relation to real history (e.g. Middle-earth)
- "LONG_AGO": explicitly mythic or unanchored past ("a long time ago in a galaxy far, far away")
- "NEAR_FUTURE": explicitly near future with no stated year

## Examples
- Gladiator -> {{"startYear": 180, "endYear": null, "additionalYears": null, "period": "180", "confidence": "high"}}
- Star Wars -> {{"startYear": null, "endYear": null, "additionalYears": null, "period": "LONG_AGO", "confidence": "high"}}
- Interstellar -> {{"startYear": 2067, "endYear": null, "additionalYears": [2100], "period": "2067", "confidence": "medium"}}
- Blade Runner 2049 -> {{"startYear": 2049, "endYear": null, "additionalYears": null, "period": "2049", "confidence": "high"}}
- The Lord of the Rings -> {{"startYear": null, "endYear": null, "additionalYears": null, "period": "NO_PERIOD", "confidence": "high"}}

Respond with ONE JSON object in exactly this format and nothing after it:
{{"startYear": <int or null>, "endYear": <int or null>, "additionalYears": <list of int or null>,
"period": "<label or sentinel>", "confidence": "high" | "medium" | "low"}}"""


def _truncate(text: str | None, max_chars: int = MAX_SYNOPSIS_CHARS) -> str:
    if not text:
        return "(none)"
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rsplit(" ", 1)[0] + "..."


def build_period_prompt(metadata: SubjectMetadata) -> str:
    """Fill :data:`PERIOD_PROMPT` from subject metadata."""
    return PERIOD_PROMPT.format(
        title=metadata.title or "(unknown)",
        original_title=metadata.original_title or metadata.title or "(unknown)",
        release_year=metadata.release_year or "unknown",
        genres=", ".join(metadata.genres) if metadata.genres else "(none)",
        overview=_truncate(metadata.overview),
        overview_secondary=_truncate(metadata.overview_secondary),
    )
