"""Assembly of the resolution pipeline from a :class:`ResolverConfig`."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from timeline_resolver.cache import AttributionStore, DurableStore, EphemeralCache, HttpSharedStore, JsonFileStore
from timeline_resolver.config import ResolverConfig
from timeline_resolver.extractor import PatternExtractor
from timeline_resolver.inference.cascade import InferenceCascade
from timeline_resolver.inference.factory import ProviderFactory
from timeline_resolver.metadata import TMDbMetadataClient
from timeline_resolver.orchestrator import ResolutionOrchestrator
from timeline_resolver.reference import ReferenceLookupClient
from timeline_resolver.reliability import ReliabilityClassifier
from timeline_resolver.utils import AsyncHttpClient, AsyncRateLimiterRegistry, DiskCache


@dataclass
class ResolverComponents:
    """Container for the wired pipeline.

    Attributes:
        logger: Logger shared by every component
        http: Shared async HTTP client (close it when done)
        store: Two-layer attribution cache
        orchestrator: Resolution orchestrator
        metadata: TMDb client, or None when no TMDb key is configured
    """

    logger: logging.Logger
    http: AsyncHttpClient
    store: AttributionStore
    orchestrator: ResolutionOrchestrator
    metadata: TMDbMetadataClient | None = None

    async def aclose(self) -> None:
        await self.orchestrator.drain()
        await self.http.close()


def setup_http_client(config: ResolverConfig) -> AsyncHttpClient:
    """Build the shared HTTP client; inference calls are never retried."""
    return AsyncHttpClient(
        rate_limiters=AsyncRateLimiterRegistry(),
        cache=DiskCache(config.http_cache_path) if config.http_cache_path else None,
        timeout=config.request_timeout,
        user_agent=config.user_agent,
        no_retry_services={p.name for p in config.providers},
    )


def setup_durable_store(config: ResolverConfig, http: AsyncHttpClient) -> DurableStore | None:
    if config.shared_store_url:
        return HttpSharedStore(http, config.shared_store_url, timeout=config.request_timeout)
    if config.durable_store_path:
        return JsonFileStore(config.durable_store_path)
    return None


def build_components(config: ResolverConfig, logger: logging.Logger | None = None) -> ResolverComponents:
    """Build all pipeline components from configuration.

    Args:
        config: Resolver configuration.
        logger: Logger instance.

    Returns:
        ResolverComponents with an initialized (version-checked) store.
    """
    logger = logger or logging.getLogger("timeline_resolver")

    # Build HTTP client
    http = setup_http_client(config)

    # Build the two cache layers
    store = AttributionStore(
        EphemeralCache(config.ephemeral_cache_path),
        setup_durable_store(config, http),
        logger=logger,
    )
    store.init(config.cache_version)

    # Build tiers
    extractor = PatternExtractor(logger=logger)
    reference = ReferenceLookupClient(http, extractor=extractor, locales=config.reference_locales, logger=logger)
    providers = ProviderFactory.create_all(config.providers, http)
    if not providers:
        logger.warning("No inference provider available; the inference tier is skipped")
    cascade = InferenceCascade(providers, logger=logger)

    orchestrator = ResolutionOrchestrator(
        store,
        extractor=extractor,
        reference=reference,
        cascade=cascade,
        classifier=ReliabilityClassifier(config.reliability),
        reference_timeout=config.reference_timeout,
        inference_timeout=config.inference_timeout,
        pending_label=config.pending_label,
        logger=logger,
    )

    tmdb_key = config.tmdb_api_key
    metadata = (
        TMDbMetadataClient(
            http,
            tmdb_key,
            primary_language=config.tmdb_primary_language,
            secondary_language=config.tmdb_secondary_language,
        )
        if tmdb_key
        else None
    )

    return ResolverComponents(logger=logger, http=http, store=store, orchestrator=orchestrator, metadata=metadata)
