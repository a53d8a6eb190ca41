"""
Reelroute - Pick a healthy video provider and keep the daily bill in check.

Simple usage:
    from reelroute import mock_engine

    engine = mock_engine()
    result = engine.dispatch({"topic": "etf investing", "duration_units": 8})
    print(result.provider_id)       # "nova-reel"
    print(result.selection.reason)  # SelectionReason.PRIMARY_HEALTHY
    print(result.cost)              # 0.006667

Budget governance on its own:
    from reelroute import BudgetGovernor, CostEntry

    governor = BudgetGovernor()
    decision = governor.preauthorize("video", estimated_cost=0.40)
    if decision.allowed:
        governor.record(CostEntry(service="video", cost=0.38))
    print(governor.get_summary())

Custom providers and health checks:
    from reelroute import DispatchEngine, CallableHealthProbe

    engine = DispatchEngine(
        backend=my_backend,
        health_probe=CallableHealthProbe(lambda pid: ping(pid)),
    )
"""

from typing import Iterable, Optional

from reelroute.backends import MockBackend, ProviderBackend
from reelroute.budget import BudgetGovernor, DailyBudgetState
from reelroute.capability import CapabilityFilter
from reelroute.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from reelroute.clock import Clock, ManualClock, SystemClock
from reelroute.config import get_providers, set_providers, get_thresholds, set_thresholds
from reelroute.cost import CostEstimator
from reelroute.dispatch import DispatchEngine, degrade
from reelroute.errors import (
    ReelrouteError,
    InvalidRequestError,
    NoEligibleProviderError,
    BudgetExceededError,
    ProviderInvocationError,
    ProviderCircuitOpenError,
)
from reelroute.health import (
    HealthProbe,
    StaticHealthProbe,
    CallableHealthProbe,
    ProviderHealthCache,
)
from reelroute.metrics import DispatchMetrics
from reelroute.schemas import (
    BudgetStatus,
    CapabilityClass,
    CostEntry,
    DispatchResult,
    GenerationRequest,
    InvocationResult,
    ProviderConfig,
    ProviderRank,
    Quality,
    SelectionReason,
)
from reelroute.selection import SelectionPolicy
from reelroute.storage import InMemorySink, SQLiteSink
from reelroute.validation import normalize_request


def mock_engine(
    unhealthy: Iterable[str] = (),
    environment: Optional[str] = None,
    sink=None,
    clock: Optional[Clock] = None,
) -> DispatchEngine:
    """Create an engine backed by MockBackend.

    Args:
        unhealthy: Provider ids the health probe reports as down
        environment: Default budget environment
        sink: Optional persistence sink for daily totals
        clock: Optional clock (ManualClock in simulations)

    Returns:
        DispatchEngine using the configured providers

    Example:
        engine = mock_engine(unhealthy=["nova-reel"])
        result = engine.dispatch({"duration_units": 20})
        print(result.provider_id)  # "luma-ray"
    """
    providers = get_providers()
    clock = clock or SystemClock()
    return DispatchEngine(
        backend=MockBackend(providers),
        health_probe=StaticHealthProbe(unhealthy=unhealthy),
        providers=providers,
        governor=BudgetGovernor(sink=sink, clock=clock, default_environment=environment),
        clock=clock,
    )


__version__ = "0.3.0"
__all__ = [
    # Engine
    "DispatchEngine",
    "mock_engine",
    "degrade",
    "normalize_request",
    "DispatchMetrics",
    # Selection
    "SelectionPolicy",
    "CapabilityFilter",
    "CostEstimator",
    "HealthProbe",
    "StaticHealthProbe",
    "CallableHealthProbe",
    "ProviderHealthCache",
    # Budget
    "BudgetGovernor",
    "DailyBudgetState",
    "InMemorySink",
    "SQLiteSink",
    # Backends
    "ProviderBackend",
    "MockBackend",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # Config
    "get_providers",
    "set_providers",
    "get_thresholds",
    "set_thresholds",
    # Time
    "Clock",
    "SystemClock",
    "ManualClock",
    # Types
    "BudgetStatus",
    "CapabilityClass",
    "CostEntry",
    "DispatchResult",
    "GenerationRequest",
    "InvocationResult",
    "ProviderConfig",
    "ProviderRank",
    "Quality",
    "SelectionReason",
    # Errors
    "ReelrouteError",
    "InvalidRequestError",
    "NoEligibleProviderError",
    "BudgetExceededError",
    "ProviderInvocationError",
    "ProviderCircuitOpenError",
]
