"""Exception taxonomy for the resolution pipeline.

A tier that runs cleanly and finds nothing is not an error: it reports
``Outcome.NO_MATCH`` (see :mod:`timeline_resolver.models`). The exceptions
below are raised by collaborators and caught inside the pipeline; none of
them reach the caller of the orchestrator.
"""

from __future__ import annotations


class ResolverError(Exception):
    """Base class for resolver failures."""


class ProviderRateLimited(ResolverError):
    """An inference provider signalled (or would exceed) its rate limit."""

    def __init__(self, provider: str, detail: str | None = None) -> None:
        self.provider = provider
        self.detail = detail
        message = f"{provider} rate limited"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ProviderError(ResolverError):
    """An inference provider failed: network, non-2xx status, or unparseable reply."""

    def __init__(self, provider: str, detail: str | None = None) -> None:
        self.provider = provider
        self.detail = detail
        message = f"{provider} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class StoreUnavailable(ResolverError):
    """The durable store could not be read or written."""
