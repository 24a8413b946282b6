"""Priority-ordered fallback across inference providers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence

from timeline_resolver.errors import ProviderError, ProviderRateLimited
from timeline_resolver.inference.base import InferenceProvider
from timeline_resolver.models import UNKNOWN, Outcome, Source, SubjectMetadata, TierResult
from timeline_resolver.utils import AsyncRateLimiter

logger = logging.getLogger(__name__)

BUDGET_WINDOW_SECONDS = 3600.0


class InferenceCascade:
    """Ask enabled providers in priority order until one gives a usable answer.

    Each provider has a rolling hourly request budget. An exhausted budget
    is treated exactly like an HTTP 429 from the provider: it is skipped,
    never waited on.
    """

    def __init__(
        self,
        providers: Sequence[InferenceProvider],
        budgets: Mapping[str, AsyncRateLimiter] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.providers = sorted((p for p in providers if p.spec.enabled), key=lambda p: p.spec.priority)
        if budgets is None:
            budgets = {
                p.name: AsyncRateLimiter(p.spec.rate_limit_per_hour, window=BUDGET_WINDOW_SECONDS)
                for p in self.providers
            }
        self.budgets = dict(budgets)
        self.logger = logger or logging.getLogger(__name__)

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self.providers]

    async def _attempt(self, provider: InferenceProvider, metadata: SubjectMetadata) -> TierResult:
        budget = self.budgets.get(provider.name)
        if budget is not None and not await budget.try_acquire():
            self.logger.info("Skipping %s: hourly budget of %d exhausted", provider.name, budget.max_requests)
            return TierResult(
                outcome=Outcome.RATE_LIMITED,
                source=Source.rate_limit(provider.name),
                detail="local budget exhausted",
            )
        try:
            return await asyncio.wait_for(provider.infer(metadata), timeout=provider.spec.timeout)
        except ProviderRateLimited as e:
            self.logger.warning("%s", e)
            return TierResult(outcome=Outcome.RATE_LIMITED, source=Source.rate_limit(provider.name), detail=str(e))
        except ProviderError as e:
            self.logger.warning("%s", e)
            return TierResult(outcome=Outcome.ERROR, source=Source.error(provider.name), detail=str(e))
        except asyncio.TimeoutError:
            self.logger.warning("%s timed out after %.1fs", provider.name, provider.spec.timeout)
            return TierResult(outcome=Outcome.ERROR, source=Source.error(provider.name), detail="timeout")

    async def run(self, metadata: SubjectMetadata) -> TierResult:
        """Return the first usable provider answer, or an UNKNOWN failure.

        On exhaustion the result carries the outcome, source and confidence
        of the last provider attempted; ``trail`` lists every attempt.
        """
        trail: list[str] = []
        last: TierResult | None = None
        for provider in self.providers:
            result = await self._attempt(provider, metadata)
            trail.append(result.source)
            self.logger.debug("Provider %s -> %s (%s)", provider.name, result.outcome.value, result.source)
            if result.usable:
                result.trail = trail
                return result
            last = result

        if last is None:
            return TierResult(
                outcome=Outcome.NO_MATCH,
                source=Source.INFERENCE_UNAVAILABLE,
                detail="no enabled providers",
            )
        return TierResult(
            outcome=last.outcome,
            source=last.source,
            period_label=UNKNOWN,
            confidence=last.confidence,
            detail=last.detail,
            trail=trail,
        )
