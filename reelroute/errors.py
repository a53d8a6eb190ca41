"""Error taxonomy for Reelroute."""

from typing import Optional


class ReelrouteError(Exception):
    """Base class for all dispatch-engine errors."""
    pass


class InvalidRequestError(ReelrouteError, ValueError):
    """Raised for malformed input. Never retried."""
    pass


class NoEligibleProviderError(ReelrouteError):
    """Raised when no candidate survives health, capability and cost filters."""

    def __init__(self, request_id: str, skip_reasons: dict[str, str]):
        self.request_id = request_id
        self.skip_reasons = dict(skip_reasons)
        details = "; ".join(f"{pid}: {why}" for pid, why in self.skip_reasons.items())
        super().__init__(
            f"No eligible provider for request '{request_id}'"
            + (f" ({details})" if details else " (no candidates configured)")
        )


class BudgetExceededError(ReelrouteError):
    """Raised when preauthorization blocks a call at the maximum threshold."""

    def __init__(
        self,
        environment: str,
        service: str,
        spent: float,
        estimated_cost: float,
        maximum: float,
    ):
        self.environment = environment
        self.service = service
        self.spent = spent
        self.estimated_cost = estimated_cost
        self.maximum = maximum
        super().__init__(
            f"Daily budget for '{environment}' would be exceeded by {service}: "
            f"${spent:.4f} spent + ${estimated_cost:.4f} estimated "
            f">= ${maximum:.2f} maximum"
        )


class ProviderInvocationError(ReelrouteError):
    """Wraps any failure of the provider backend."""

    def __init__(self, provider_id: str, message: str, request_id: Optional[str] = None):
        self.provider_id = provider_id
        self.request_id = request_id
        super().__init__(f"Provider '{provider_id}' failed: {message}")


class ProviderCircuitOpenError(ProviderInvocationError):
    """Raised without calling the backend while a provider's circuit is open."""
    pass
