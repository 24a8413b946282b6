"""Upstream metadata provider interface and a TMDb implementation."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from timeline_resolver.models import SubjectMetadata
from timeline_resolver.utils import AsyncHttpClient

logger = logging.getLogger(__name__)

TMDB_API = "https://api.themoviedb.org/3"


class MetadataProvider(ABC):
    """Read-only source of subject metadata."""

    @abstractmethod
    async def fetch(self, subject_id: str) -> SubjectMetadata | None:
        """Return metadata for ``subject_id`` or None if unknown."""
        ...


class TMDbMetadataClient(MetadataProvider):
    """Fetches movie details from TMDb in a primary and a secondary language.

    The primary language supplies the display title, synopsis and genre
    names; the secondary language supplies the second synopsis.
    """

    SERVICE = "tmdb"

    def __init__(
        self,
        http: AsyncHttpClient,
        api_key: str,
        primary_language: str = "ja-JP",
        secondary_language: str = "en-US",
        base_url: str = TMDB_API,
    ) -> None:
        if not api_key:
            raise ValueError("TMDb API key required. Set TMDB_API_KEY.")
        self.http = http
        self.api_key = api_key
        self.primary_language = primary_language
        self.secondary_language = secondary_language
        self.base_url = base_url.rstrip("/")

    async def _movie(self, subject_id: str, language: str) -> dict[str, Any] | None:
        resp = await self.http.get(
            f"{self.base_url}/movie/{subject_id}",
            service=self.SERVICE,
            params={"api_key": self.api_key, "language": language},
        )
        if resp.status_code == 404:
            return None
        if not resp.is_success:
            raise httpx.HTTPStatusError(f"Status {resp.status_code}", request=resp.request, response=resp)
        return resp.json()

    async def fetch(self, subject_id: str) -> SubjectMetadata | None:
        primary = await self._movie(subject_id, self.primary_language)
        if primary is None:
            return None
        secondary: dict[str, Any] = {}
        if self.secondary_language and self.secondary_language != self.primary_language:
            try:
                secondary = await self._movie(subject_id, self.secondary_language) or {}
            except httpx.HTTPError as e:
                logger.warning("Secondary-language details for %s unavailable: %s", subject_id, e)
        return details_to_metadata(primary, secondary)


def details_to_metadata(primary: dict[str, Any], secondary: dict[str, Any] | None = None) -> SubjectMetadata:
    """Convert TMDb movie detail payloads into :class:`SubjectMetadata`."""
    secondary = secondary or {}
    genres = [g.get("name") for g in primary.get("genres") or [] if isinstance(g, dict) and g.get("name")]
    for g in secondary.get("genres") or []:
        name = g.get("name") if isinstance(g, dict) else None
        if name and name not in genres:
            genres.append(name)
    return SubjectMetadata(
        subject_id=str(primary.get("id")),
        title=primary.get("title") or secondary.get("title") or "",
        original_title=primary.get("original_title") or "",
        release_date=primary.get("release_date") or None,
        overview=primary.get("overview") or "",
        overview_secondary=secondary.get("overview") or "",
        genres=genres,
    )
