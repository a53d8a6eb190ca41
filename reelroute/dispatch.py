"""
Dispatch engine for Reelroute.

Request -> select provider -> preauthorize estimated cost -> invoke backend
-> record actual cost. A provider failure triggers at most one degraded
retry (shorter, cheaper, lower quality); a second failure surfaces the
original error.
"""

import dataclasses
import logging
import math
from typing import Any, Mapping, Optional, Sequence, Union

from reelroute import config
from reelroute.backends import ProviderBackend
from reelroute.budget import BudgetGovernor
from reelroute.circuit_breaker import CircuitBreakerRegistry
from reelroute.clock import Clock, SystemClock
from reelroute.errors import (
    BudgetExceededError,
    ProviderInvocationError,
    ReelrouteError,
)
from reelroute.health import HealthProbe, ProviderHealthCache
from reelroute.metrics import DispatchMetrics
from reelroute.schemas import (
    CostEntry,
    DispatchResult,
    GenerationRequest,
    InvocationResult,
    ProviderConfig,
    Quality,
)
from reelroute.selection import SelectionPolicy
from reelroute.validation import normalize_request


logger = logging.getLogger("reelroute.dispatch")

# attempt 0 is the original request, attempt 1 the single degraded retry
MAX_ATTEMPTS = 2


def degrade(
    request: GenerationRequest,
    max_duration_units: int = config.DEGRADED_MAX_DURATION_UNITS,
    cost_factor: float = config.DEGRADED_COST_FACTOR,
) -> GenerationRequest:
    """Build the reduced request used for the degraded retry."""
    metadata = dict(request.metadata)
    metadata["degraded_from"] = {
        "duration_units": request.duration_units,
        "max_cost": request.max_cost,
        "quality": request.quality.value,
    }
    return dataclasses.replace(
        request,
        duration_units=min(request.duration_units, max_duration_units),
        max_cost=round(request.max_cost * cost_factor, 6),
        quality=Quality.MEDIUM if request.quality == Quality.HIGH else request.quality,
        metadata=metadata,
    )


class DispatchEngine:
    """
    Top-level entry point.

    Owns the shared health cache, budget governor and circuit breakers;
    many dispatch() calls may run concurrently against one engine.

    Example:
        ```python
        engine = DispatchEngine(
            backend=MockBackend(config.get_providers()),
            health_probe=StaticHealthProbe(),
        )
        result = engine.dispatch({"topic": "etf investing", "duration_units": 8})
        print(result.provider_id, result.selection.reason, result.cost)
        ```
    """

    def __init__(
        self,
        backend: ProviderBackend,
        health_probe: Optional[HealthProbe] = None,
        providers: Optional[Sequence[ProviderConfig]] = None,
        governor: Optional[BudgetGovernor] = None,
        health_cache: Optional[ProviderHealthCache] = None,
        selection_policy: Optional[SelectionPolicy] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        metrics: Optional[DispatchMetrics] = None,
        clock: Optional[Clock] = None,
        degraded_max_duration_units: int = config.DEGRADED_MAX_DURATION_UNITS,
        degraded_cost_factor: float = config.DEGRADED_COST_FACTOR,
    ):
        """
        Initialize the engine.

        Args:
            backend: Provider backend that performs generation calls.
            health_probe: Probe used by the health cache. Required unless
                health_cache or selection_policy is given.
            providers: Candidate providers. Defaults to config.get_providers().
            governor: Budget governor. A new one is created if not provided.
            health_cache: Pre-built health cache.
            selection_policy: Pre-built selection policy.
            breakers: Per-provider circuit breakers.
            metrics: Metrics collector.
            clock: Time source shared by the components created here.
            degraded_max_duration_units: Duration ceiling for the degraded retry.
            degraded_cost_factor: Multiplier applied to max_cost on the degraded retry.
        """
        self.clock = clock or SystemClock()
        self.backend = backend
        self.providers = list(providers) if providers is not None else config.get_providers()

        if selection_policy is None:
            if health_cache is None:
                if health_probe is None:
                    raise ValueError("health_probe is required when no health_cache is given")
                health_cache = ProviderHealthCache(health_probe, clock=self.clock)
            selection_policy = SelectionPolicy(health_cache)
        self.selection_policy = selection_policy
        self.health_cache = selection_policy.health_cache

        self.governor = governor or BudgetGovernor(clock=self.clock)
        self.breakers = breakers or CircuitBreakerRegistry(clock=self.clock)
        self.metrics = metrics or DispatchMetrics(enable_logging=False)
        self.degraded_max_duration_units = degraded_max_duration_units
        self.degraded_cost_factor = degraded_cost_factor

    def dispatch(
        self,
        request: Union[GenerationRequest, Mapping[str, Any]],
    ) -> DispatchResult:
        """
        Serve one generation request.

        Raises:
            InvalidRequestError: If the request is malformed.
            NoEligibleProviderError: If no provider passes the filters.
            BudgetExceededError: If preauthorization blocks the call.
            ProviderInvocationError: If the provider fails and the degraded
                retry (when allowed) fails too.
        """
        current = normalize_request(request, environment=self.governor.default_environment)
        original_error: Optional[ProviderInvocationError] = None

        for attempt in range(MAX_ATTEMPTS):
            try:
                return self._attempt(current, attempt)
            except ProviderInvocationError as exc:
                if original_error is None:
                    original_error = exc
                last_attempt = attempt + 1 >= MAX_ATTEMPTS
                if last_attempt or not current.allow_fallback:
                    self.metrics.record_error(
                        current.request_id, type(original_error).__name__, str(original_error)
                    )
                    raise original_error
                current = degrade(
                    current,
                    max_duration_units=self.degraded_max_duration_units,
                    cost_factor=self.degraded_cost_factor,
                )
                logger.warning(
                    "Provider failed for %s (%s); retrying degraded: %d units, max $%.4f, %s quality",
                    current.request_id, exc, current.duration_units,
                    current.max_cost, current.quality.value,
                )
                self.metrics.record_degraded_retry(
                    current.request_id, current.duration_units, current.max_cost
                )
            except ReelrouteError as exc:
                self.metrics.record_error(current.request_id, type(exc).__name__, str(exc))
                if original_error is not None:
                    logger.warning("Degraded retry for %s failed: %s", current.request_id, exc)
                    raise original_error
                raise

        # Unreachable: the loop either returns or raises
        raise RuntimeError("dispatch loop exited without a result")

    def _attempt(self, request: GenerationRequest, attempt: int) -> DispatchResult:
        selection = self.selection_policy.select(self.candidates_for(request), request)
        provider = selection.provider
        self.metrics.record_selection(
            request.request_id, provider.provider_id,
            selection.reason.value, selection.estimated_cost,
        )

        decision = self.governor.preauthorize(
            request.service, selection.estimated_cost, request.environment
        )
        if not decision.allowed:
            raise BudgetExceededError(
                environment=decision.environment,
                service=decision.service,
                spent=decision.current_spend,
                estimated_cost=decision.estimated_cost,
                maximum=self.governor.get_thresholds(decision.environment).maximum,
            )

        invocation = self._invoke(provider, request)

        record = self.governor.record(
            CostEntry(
                service=request.service,
                cost=invocation.cost,
                environment=request.environment,
                metadata={
                    "request_id": request.request_id,
                    "provider_id": provider.provider_id,
                    "selection_reason": selection.reason.value,
                    "estimated_cost": selection.estimated_cost,
                    "attempt": attempt,
                },
            )
        )
        self.metrics.record_success(
            request.request_id, provider.provider_id,
            invocation.cost, invocation.duration_actual, attempt,
        )

        return DispatchResult(
            request=request,
            selection=selection,
            invocation=invocation,
            budget=record,
            attempt=attempt,
            degraded=attempt > 0,
        )

    def _invoke(self, provider: ProviderConfig, request: GenerationRequest) -> InvocationResult:
        pid = provider.provider_id

        def call() -> InvocationResult:
            result = self.backend.invoke(pid, request)
            if not result.success:
                raise ProviderInvocationError(
                    pid, result.error or "backend reported failure", request.request_id
                )
            cost = result.cost
            numeric = isinstance(cost, (int, float)) and not isinstance(cost, bool)
            if not numeric or not math.isfinite(cost) or cost < 0:
                raise ProviderInvocationError(
                    pid, f"invalid cost {cost!r} in backend result", request.request_id
                )
            return result

        try:
            return self.breakers.get(pid).call(call)
        except ProviderInvocationError as exc:
            self.metrics.record_provider_failure(request.request_id, pid, str(exc))
            raise
        except Exception as exc:
            self.metrics.record_provider_failure(request.request_id, pid, str(exc))
            raise ProviderInvocationError(pid, str(exc), request.request_id) from exc

    def candidates_for(self, request: GenerationRequest) -> list[ProviderConfig]:
        """Configured providers serving the request's capability class."""
        return [p for p in self.providers if p.capability_class == request.capability_class]

    def get_performance_metrics(self) -> dict:
        stats = self.metrics.get_stats()
        stats["circuit_breakers"] = self.breakers.get_stats()
        return stats
