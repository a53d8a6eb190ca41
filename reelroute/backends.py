"""
Provider backends for Reelroute.

The dispatch engine talks to generation services only through the
ProviderBackend interface. Real cloud integrations live outside this
package; MockBackend is a deterministic stand-in for development,
degraded "mock mode" and tests.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Optional

from reelroute.cost import CostEstimator
from reelroute.schemas import GenerationRequest, InvocationResult, ProviderConfig


class ProviderBackend(ABC):
    """Abstract base class for provider backends."""

    @abstractmethod
    def invoke(self, provider_id: str, request: GenerationRequest) -> InvocationResult:
        """
        Run one generation call.

        Either returns an InvocationResult (success False counts as a
        failure) or raises.
        """
        pass


class MockBackend(ProviderBackend):
    """
    Mock backend.

    Charges the estimated cost (times cost_multiplier) and reports the
    requested duration. Failures can be scripted per provider: the next
    `fail_next[provider_id]` calls raise.
    """

    def __init__(
        self,
        providers: Optional[list[ProviderConfig]] = None,
        cost_multiplier: float = 1.0,
        estimator: Optional[CostEstimator] = None,
    ):
        self.providers = {p.provider_id: p for p in (providers or [])}
        self.cost_multiplier = cost_multiplier
        self.estimator = estimator or CostEstimator()
        self.fail_next: dict[str, int] = defaultdict(int)
        self.calls: list[tuple[str, GenerationRequest]] = []

    def fail(self, provider_id: str, times: int = 1) -> None:
        """Make the next `times` calls to provider_id raise."""
        self.fail_next[provider_id] += times

    def invoke(self, provider_id: str, request: GenerationRequest) -> InvocationResult:
        self.calls.append((provider_id, request))

        if self.fail_next[provider_id] > 0:
            self.fail_next[provider_id] -= 1
            raise RuntimeError(f"Simulated failure from {provider_id}")

        provider = self.providers.get(provider_id)
        cost = 0.0
        if provider is not None:
            cost = self.estimator.estimate(provider, request) * self.cost_multiplier

        return InvocationResult(
            success=True,
            cost=round(cost, 6),
            duration_actual=float(request.duration_units),
            output={
                "provider_id": provider_id,
                "request_id": request.request_id,
                "quality": request.quality.value,
                "mock": True,
            },
        )
