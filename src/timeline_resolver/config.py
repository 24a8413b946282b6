"""Configuration dataclasses for the resolver."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from timeline_resolver.inference.base import DEFAULT_PROVIDERS, ProviderSpec
from timeline_resolver.models import DEFAULT_PENDING_LABEL
from timeline_resolver.reliability import ReliabilityPolicy

# Bump to force every client's ephemeral cache to cold-start
CACHE_VERSION = 1


@dataclass
class ResolverConfig:
    """Configuration for the resolution pipeline.

    Attributes:
        cache_version: Version tag of the ephemeral cache
        ephemeral_cache_path: Snapshot file of the ephemeral cache (None = memory only)
        durable_store_path: JSON file used as durable store
        shared_store_url: HTTP shared store endpoint; takes precedence over the file store
        http_cache_path: On-disk cache of GET responses (None disables it)
        user_agent: User-Agent for every outgoing request
        request_timeout: Default HTTP timeout in seconds
        reference_timeout: Budget for the whole reference lookup tier
        inference_timeout: Budget for the whole inference cascade
        reference_locales: Wikipedia locales, in search order
        pending_label: Label of the placeholder returned while resolving
        tmdb_primary_language: Language of titles and genres
        tmdb_secondary_language: Language of the second synopsis
        tmdb_api_key_env: Environment variable holding the TMDb key
        providers: Inference provider table
        reliability: Reliability policy table
    """

    cache_version: int = CACHE_VERSION
    ephemeral_cache_path: str | None = ".cache.timeline.json"
    durable_store_path: str | None = "timeline_store.json"
    shared_store_url: str | None = None
    http_cache_path: str | None = None
    user_agent: str = "timeline-resolver/0.1 (+https://github.com/)"
    request_timeout: float = 20.0
    reference_timeout: float = 30.0
    inference_timeout: float = 120.0
    reference_locales: list[str] = field(default_factory=lambda: ["en", "ja"])
    pending_label: str = DEFAULT_PENDING_LABEL
    tmdb_primary_language: str = "ja-JP"
    tmdb_secondary_language: str = "en-US"
    tmdb_api_key_env: str = "TMDB_API_KEY"
    providers: list[ProviderSpec] = field(
        default_factory=lambda: [ProviderSpec.from_dict(p.to_dict()) for p in DEFAULT_PROVIDERS]
    )
    reliability: ReliabilityPolicy = field(default_factory=ReliabilityPolicy)

    @property
    def tmdb_api_key(self) -> str | None:
        return os.environ.get(self.tmdb_api_key_env) or None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResolverConfig:
        """Create config from a dictionary (e.g., loaded from YAML).

        Provider rows are merged by name onto the default table, so a config
        file can disable a provider or change its budget without restating it.
        """
        data = dict(data)
        provider_rows = data.pop("providers", None)
        reliability_data = data.pop("reliability", None)
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        providers = {p.name: p.to_dict() for p in DEFAULT_PROVIDERS}
        for row in provider_rows or []:
            name = row.get("name")
            if not name:
                raise ValueError("Every provider entry needs a name")
            providers[name] = {**providers.get(name, {}), **row}

        config = cls(**data)
        config.providers = [ProviderSpec.from_dict(row) for row in providers.values()]
        if reliability_data:
            config.reliability = ReliabilityPolicy.from_dict(reliability_data)
        return config

    @classmethod
    def from_yaml(cls, path: str | Path) -> ResolverConfig:
        """Load config from a YAML file."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Convert config to a dictionary for serialization."""
        return {
            "cache_version": self.cache_version,
            "ephemeral_cache_path": self.ephemeral_cache_path,
            "durable_store_path": self.durable_store_path,
            "shared_store_url": self.shared_store_url,
            "http_cache_path": self.http_cache_path,
            "user_agent": self.user_agent,
            "request_timeout": self.request_timeout,
            "reference_timeout": self.reference_timeout,
            "inference_timeout": self.inference_timeout,
            "reference_locales": list(self.reference_locales),
            "pending_label": self.pending_label,
            "tmdb_primary_language": self.tmdb_primary_language,
            "tmdb_secondary_language": self.tmdb_secondary_language,
            "tmdb_api_key_env": self.tmdb_api_key_env,
            "providers": [p.to_dict() for p in self.providers],
            "reliability": self.reliability.to_dict(),
        }


def load_config(path: str | Path | None = None) -> ResolverConfig:
    """Load config from ``path``, or return defaults when no path is given."""
    if path is None:
        return ResolverConfig()
    return ResolverConfig.from_yaml(path)
