"""Recovering a JSON answer from free-text model output.

Providers are asked for a single JSON object but regularly wrap it in
Markdown fences or precede it with reasoning that itself contains braces.
Everything here is pure and independent of any provider.
"""

from __future__ import annotations

import json
import re
from typing import Any

from timeline_resolver.models import ANSWER_SENTINELS, MULTI_ERA_GAP, SENTINEL_LABELS, Confidence

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_INT_RE = re.compile(r"^-?\d{1,4}$")


def _match_brace(text: str, start: int) -> int | None:
    """Index of the brace closing ``text[start]``, or None if it never closes.

    Braces inside double-quoted strings are ignored.
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def find_brace_blocks(text: str) -> list[str]:
    """Top-level balanced ``{...}`` blocks in order of appearance.

    An opening brace that never closes is skipped, so a stray ``{`` in
    reasoning text does not hide a well-formed answer after it.
    """
    blocks: list[str] = []
    i = 0
    while True:
        start = text.find("{", i)
        if start == -1:
            break
        end = _match_brace(text, start)
        if end is None:
            i = start + 1
            continue
        blocks.append(text[start : end + 1])
        i = end + 1
    return blocks


def has_required_fields(data: dict[str, Any]) -> bool:
    """An answer must carry a confidence and either a start year or a sentinel period."""
    if "confidence" not in data:
        return False
    if "startYear" in data:
        return True
    period = data.get("period")
    return isinstance(period, str) and period.strip().upper() in SENTINEL_LABELS


def _try_load(candidate: str) -> dict[str, Any] | None:
    try:
        data = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    if isinstance(data, dict) and has_required_fields(data):
        return data
    return None


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    """Pull the answer object out of a provider reply.

    Order of attempts:
    1. The whole reply
    2. Markdown code fences, last first
    3. Balanced brace blocks, last first

    Returns the first candidate that parses to a dict with the required
    fields, or None.
    """
    if not text:
        return None
    stripped = text.strip()
    data = _try_load(stripped)
    if data is not None:
        return data

    for fenced in reversed(_FENCE_RE.findall(stripped)):
        data = _try_load(fenced.strip())
        if data is not None:
            return data
        for block in reversed(find_brace_blocks(fenced)):
            data = _try_load(block)
            if data is not None:
                return data

    for block in reversed(find_brace_blocks(stripped)):
        data = _try_load(block)
        if data is not None:
            return data
    return None


def _as_year(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and _INT_RE.match(value.strip()):
        return int(value.strip())
    return None


def coerce_period_payload(data: dict[str, Any]) -> dict[str, Any]:
    """Normalise types of a parsed answer.

    Returns a dict with ``start_year``, ``end_year`` (ints or None),
    ``additional_years`` (list of ints or None), ``period`` (str) and
    ``confidence`` (:class:`Confidence`). Sentinel periods are upper-cased;
    a sentinel answer never carries years. A reversed range is swapped and
    additional years within ``MULTI_ERA_GAP`` of the start are dropped.
    """
    period = data.get("period")
    period = period.strip() if isinstance(period, str) else ""
    if period.upper() in SENTINEL_LABELS:
        period = period.upper()

    start = _as_year(data.get("startYear"))
    end = _as_year(data.get("endYear"))
    raw_additional = data.get("additionalYears")
    additional: list[int] | None = None
    if isinstance(raw_additional, list):
        additional = sorted({y for y in (_as_year(v) for v in raw_additional) if y is not None}) or None

    if period in ANSWER_SENTINELS:
        start = end = None
        additional = None
    elif start is None:
        end = None
        additional = None
    elif end is not None and end < start:
        start, end = end, start
    elif end is not None and end == start:
        end = None
    if additional and start is not None:
        # only eras materially apart from the start count as additional
        additional = [y for y in additional if abs(y - start) > MULTI_ERA_GAP] or None

    return {
        "start_year": start,
        "end_year": end,
        "additional_years": additional,
        "period": period,
        "confidence": Confidence.parse(data.get("confidence"), default=Confidence.MEDIUM),
    }
