"""Timeline Resolver - find the in-story historical period of movies.

Resolution is tiered, cheapest first:
- Pattern and keyword extraction over the subject's own text
- Encyclopedia (Wikipedia) lookup
- A cascade of language-model providers

Example usage:
    from timeline_resolver import ResolverConfig, build_components

    components = build_components(ResolverConfig())
    orchestrator = components.orchestrator

    # Blocking resolution
    entry = await orchestrator.resolve(metadata)

    # UI flow: returns a pending placeholder, calls back with the final entry
    placeholder = orchestrator.request(metadata, on_complete=render)
"""

__version__ = "0.1.0"

from timeline_resolver.cache import AttributionStore, EphemeralCache, HttpSharedStore, JsonFileStore
from timeline_resolver.components import ResolverComponents, build_components
from timeline_resolver.config import ResolverConfig, load_config
from timeline_resolver.errors import ProviderError, ProviderRateLimited, ResolverError, StoreUnavailable
from timeline_resolver.extractor import PatternExtractor
from timeline_resolver.inference import InferenceCascade, ProviderFactory, ProviderSpec
from timeline_resolver.metadata import MetadataProvider, TMDbMetadataClient
from timeline_resolver.models import (
    LONG_AGO,
    NEAR_FUTURE,
    NO_PERIOD,
    UNKNOWN,
    AttributionEntry,
    Confidence,
    GenreFamily,
    Outcome,
    Reliability,
    Source,
    SubjectMetadata,
    TierResult,
)
from timeline_resolver.orchestrator import ResolutionOrchestrator, ResolutionState
from timeline_resolver.reference import ReferenceLookupClient
from timeline_resolver.reliability import ReliabilityClassifier, ReliabilityPolicy

__all__ = [
    "__version__",
    # Models
    "AttributionEntry",
    "Confidence",
    "GenreFamily",
    "LONG_AGO",
    "NEAR_FUTURE",
    "NO_PERIOD",
    "Outcome",
    "Reliability",
    "Source",
    "SubjectMetadata",
    "TierResult",
    "UNKNOWN",
    # Errors
    "ProviderError",
    "ProviderRateLimited",
    "ResolverError",
    "StoreUnavailable",
    # Tiers
    "InferenceCascade",
    "PatternExtractor",
    "ProviderFactory",
    "ProviderSpec",
    "ReferenceLookupClient",
    # Grading and orchestration
    "ReliabilityClassifier",
    "ReliabilityPolicy",
    "ResolutionOrchestrator",
    "ResolutionState",
    # Storage
    "AttributionStore",
    "EphemeralCache",
    "HttpSharedStore",
    "JsonFileStore",
    # Metadata
    "MetadataProvider",
    "TMDbMetadataClient",
    # Assembly
    "ResolverComponents",
    "ResolverConfig",
    "build_components",
    "load_config",
]
