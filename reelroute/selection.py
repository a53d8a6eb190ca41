"""
Provider selection for Reelroute.

Picks the backend that should serve a request by combining health,
capability and cost.
"""

import logging
from typing import Optional, Sequence

from reelroute.capability import CapabilityFilter
from reelroute.cost import CostEstimator
from reelroute.errors import NoEligibleProviderError
from reelroute.health import ProviderHealthCache
from reelroute.schemas import (
    GenerationRequest,
    ProviderConfig,
    ProviderHealthRecord,
    ProviderRank,
    SelectionReason,
    SelectionResult,
)


logger = logging.getLogger("reelroute.selection")

_RANK_ORDER = {ProviderRank.PRIMARY: 0, ProviderRank.FALLBACK: 1}

# Skip categories, used to explain why a lower-ranked provider won
SKIP_CLASS = "capability_class"
SKIP_UNHEALTHY = "unhealthy"
SKIP_DURATION = "duration_exceeded"
SKIP_COST = "over_budget"

_REASON_FOR_SKIP = {
    SKIP_UNHEALTHY: SelectionReason.FALLBACK_PRIMARY_UNHEALTHY,
    SKIP_DURATION: SelectionReason.FALLBACK_DURATION_EXCEEDED,
    SKIP_COST: SelectionReason.FALLBACK_COST_OPTIMIZATION,
}


class SelectionPolicy:
    """
    Selects a provider for a request.

    The selection algorithm:
    1. Order candidates by rank (primary before fallback), keeping the
       configured order within a rank
    2. Skip candidates that serve a different capability class
    3. Skip unhealthy candidates
    4. Skip candidates whose duration limit is too small
    5. Skip candidates whose estimated cost exceeds request.max_cost
    6. Return the first survivor; if none survives, raise

    Capability and cost are hard filters. Health and rank only decide
    preference among otherwise-eligible candidates, so a fallback is used
    over a healthy primary that is over budget.

    A primary winner is tagged primary_healthy. A fallback winner is tagged
    by why the first eligible-class candidate was skipped, or
    fallback_primary_unhealthy when no primary serves the class.
    """

    def __init__(
        self,
        health_cache: ProviderHealthCache,
        capability_filter: Optional[CapabilityFilter] = None,
        cost_estimator: Optional[CostEstimator] = None,
    ):
        self.health_cache = health_cache
        self.capability_filter = capability_filter or CapabilityFilter()
        self.cost_estimator = cost_estimator or CostEstimator()

    @staticmethod
    def rank_candidates(candidates: Sequence[ProviderConfig]) -> list[ProviderConfig]:
        # sorted() is stable, so configured order survives within a rank
        return sorted(candidates, key=lambda p: _RANK_ORDER.get(p.rank, len(_RANK_ORDER)))

    def select(
        self,
        candidates: Sequence[ProviderConfig],
        request: GenerationRequest,
    ) -> SelectionResult:
        """
        Select a provider for the request.

        Returns:
            SelectionResult with the provider and a reason tag.

        Raises:
            NoEligibleProviderError: If every candidate is filtered out.
        """
        skip_reasons: dict[str, str] = {}
        first_contender_skip: Optional[str] = None

        for provider in self.rank_candidates(candidates):
            pid = provider.provider_id

            if provider.capability_class != request.capability_class:
                skip_reasons[pid] = (
                    f"{SKIP_CLASS}: serves '{provider.capability_class.value}', "
                    f"request needs '{request.capability_class.value}'"
                )
                continue

            category, detail, health, estimated = self._check(provider, request)

            if category is None:
                reason = self._reason(provider, first_contender_skip)
                logger.info(
                    "Selected %s for %s (%s, estimated $%.4f)",
                    pid, request.request_id, reason.value, estimated,
                )
                return SelectionResult(
                    provider=provider,
                    reason=reason,
                    estimated_cost=estimated,
                    health=health,
                    skip_reasons=skip_reasons,
                )

            skip_reasons[pid] = f"{category}: {detail}"
            if first_contender_skip is None:
                first_contender_skip = category

        logger.warning(
            "No eligible provider for %s: %s", request.request_id, skip_reasons
        )
        raise NoEligibleProviderError(request.request_id, skip_reasons)

    def _check(
        self,
        provider: ProviderConfig,
        request: GenerationRequest,
    ) -> tuple[Optional[str], str, ProviderHealthRecord, Optional[float]]:
        """
        Run the filters in order.

        Returns:
            (skip category, detail, health, estimate); category is None
            if the provider is eligible.
        """
        health = self.health_cache.get_health(provider.provider_id)
        if not health.healthy:
            return SKIP_UNHEALTHY, health.error_message or "health check failed", health, None

        reason = self.capability_filter.check(provider, request)
        if reason:
            return SKIP_DURATION, reason, health, None

        estimated = self.cost_estimator.estimate(provider, request)
        if estimated > request.max_cost:
            return (
                SKIP_COST,
                f"cost ${estimated:.4f} > budget ${request.max_cost:.4f}",
                health,
                estimated,
            )

        return None, "", health, estimated

    @staticmethod
    def _reason(winner: ProviderConfig, first_skip: Optional[str]) -> SelectionReason:
        if winner.rank == ProviderRank.PRIMARY:
            return SelectionReason.PRIMARY_HEALTHY
        if first_skip is None:
            # No primary serves this capability class
            return SelectionReason.FALLBACK_PRIMARY_UNHEALTHY
        return _REASON_FOR_SKIP[first_skip]
