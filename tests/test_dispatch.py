"""Tests for the dispatch engine."""

import pytest

from reelroute import config, mock_engine
from reelroute.backends import MockBackend, ProviderBackend
from reelroute.budget import BudgetGovernor
from reelroute.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from reelroute.clock import ManualClock
from reelroute.dispatch import DispatchEngine, degrade
from reelroute.errors import (
    BudgetExceededError,
    InvalidRequestError,
    NoEligibleProviderError,
    ProviderCircuitOpenError,
    ProviderInvocationError,
)
from reelroute.health import StaticHealthProbe
from reelroute.schemas import (
    BudgetStatus,
    CapabilityClass,
    GenerationRequest,
    InvocationResult,
    ProviderConfig,
    ProviderRank,
    Quality,
    SelectionReason,
)


class ScriptedBackend(ProviderBackend):
    """Raises the queued errors in order, then succeeds."""

    def __init__(self, errors=(), cost=0.01):
        self.errors = list(errors)
        self.cost = cost
        self.calls = []

    def invoke(self, provider_id, request):
        self.calls.append((provider_id, request))
        if self.errors:
            raise self.errors.pop(0)
        return InvocationResult(success=True, cost=self.cost, duration_actual=request.duration_units)


def _engine(backend, probe=None, providers=None, **kwargs):
    clock = kwargs.pop("clock", ManualClock())
    return DispatchEngine(
        backend=backend,
        health_probe=probe or StaticHealthProbe(),
        providers=providers if providers is not None else config.get_providers(),
        governor=BudgetGovernor(clock=clock, default_environment="development"),
        clock=clock,
        **kwargs,
    )


class TestDegrade:
    """The reduced retry request."""

    def test_degrade_reduces_request(self):
        request = GenerationRequest(duration_units=45, max_cost=0.15)
        degraded = degrade(request)
        assert degraded.duration_units == 30
        assert degraded.max_cost == pytest.approx(0.12)
        assert degraded.quality == Quality.MEDIUM
        assert degraded.request_id == request.request_id
        assert degraded.metadata["degraded_from"]["duration_units"] == 45
        # Original is untouched
        assert request.duration_units == 45
        assert request.quality == Quality.HIGH

    def test_short_requests_keep_duration(self):
        assert degrade(GenerationRequest(duration_units=8)).duration_units == 8

    def test_low_quality_stays_low(self):
        assert degrade(GenerationRequest(quality=Quality.LOW)).quality == Quality.LOW


class TestDispatchEngine:
    """Selection, budget and invocation wired together."""

    def setup_method(self):
        config.reset_config()
        self.providers = config.get_providers()
        self.backend = MockBackend(self.providers)

    def test_dispatch_primary(self):
        engine = _engine(self.backend)
        result = engine.dispatch({"topic": "index funds"})

        assert result.provider_id == "nova-reel"
        assert result.selection.reason == SelectionReason.PRIMARY_HEALTHY
        assert result.cost == pytest.approx(8 / 60 * 0.05, abs=1e-6)
        assert result.attempt == 0
        assert result.degraded is False
        assert result.budget.status == BudgetStatus.NORMAL
        assert engine.governor.get_daily_spend("development") == pytest.approx(result.cost)

    def test_dispatch_generation_request(self):
        engine = _engine(self.backend)
        request = GenerationRequest(capability_class=CapabilityClass.AUDIO, duration_units=60)
        result = engine.dispatch(request)
        assert result.provider_id == "polly-generative"
        assert result.request is request
        assert engine.governor.get_service_breakdown()["audio"]["amount"] == pytest.approx(result.cost)

    def test_fallback_when_primary_unhealthy(self):
        engine = _engine(self.backend, probe=StaticHealthProbe(unhealthy=["nova-reel"]))
        result = engine.dispatch({"duration_units": 20})
        assert result.provider_id == "luma-ray"
        assert result.selection.reason == SelectionReason.FALLBACK_PRIMARY_UNHEALTHY

    def test_fallback_when_duration_exceeded(self):
        providers = [
            ProviderConfig("primary", CapabilityClass.VIDEO, 0.05, 300, rank=ProviderRank.PRIMARY),
            ProviderConfig("fallback", CapabilityClass.VIDEO, 0.06, 600, rank=ProviderRank.FALLBACK),
        ]
        engine = _engine(MockBackend(providers), providers=providers)
        result = engine.dispatch({"duration_units": 400, "max_cost": 1.0})
        assert result.provider_id == "fallback"
        assert result.selection.reason == SelectionReason.FALLBACK_DURATION_EXCEEDED

    def test_single_degraded_retry_succeeds(self):
        self.backend.fail("nova-reel", times=1)
        engine = _engine(self.backend)
        result = engine.dispatch({"duration_units": 45, "max_cost": 0.15})

        assert result.attempt == 1
        assert result.degraded is True
        assert result.request.duration_units == 30
        assert result.request.max_cost == pytest.approx(0.12)
        assert result.request.quality == Quality.MEDIUM
        assert len(self.backend.calls) == 2
        assert engine.get_performance_metrics()["degraded_retries"] == 1

    def test_second_failure_raises_original_error(self):
        backend = ScriptedBackend(errors=[RuntimeError("first"), RuntimeError("second")])
        engine = _engine(backend)

        with pytest.raises(ProviderInvocationError) as exc_info:
            engine.dispatch({"duration_units": 45})

        assert "first" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert len(backend.calls) == 2
        assert backend.calls[1][1].duration_units == 30

    def test_unsuccessful_result_counts_as_failure(self):
        class RefusingBackend(ProviderBackend):
            def __init__(self):
                self.calls = 0

            def invoke(self, provider_id, request):
                self.calls += 1
                return InvocationResult(success=False, cost=0.0, duration_actual=0.0, error="quota")

        backend = RefusingBackend()
        engine = _engine(backend)
        with pytest.raises(ProviderInvocationError, match="quota"):
            engine.dispatch({})
        assert backend.calls == 2
        assert engine.governor.get_daily_spend() == 0.0

    def test_invalid_backend_cost_is_a_provider_failure(self):
        class BadCostBackend(ProviderBackend):
            def __init__(self, costs):
                self.costs = list(costs)
                self.calls = 0

            def invoke(self, provider_id, request):
                self.calls += 1
                return InvocationResult(
                    success=True, cost=self.costs.pop(0), duration_actual=request.duration_units
                )

        backend = BadCostBackend([-0.5, 0.02])
        engine = _engine(backend)
        result = engine.dispatch({"duration_units": 45})
        assert backend.calls == 2
        assert result.attempt == 1
        assert engine.governor.get_daily_spend() == pytest.approx(0.02)

        backend = BadCostBackend([-0.5, "free"])
        engine = _engine(backend)
        with pytest.raises(ProviderInvocationError, match="invalid cost -0.5"):
            engine.dispatch({})
        assert backend.calls == 2
        assert engine.governor.get_daily_spend() == 0.0

    def test_no_retry_when_fallback_disallowed(self):
        self.backend.fail("nova-reel", times=1)
        engine = _engine(self.backend)
        with pytest.raises(ProviderInvocationError):
            engine.dispatch({"allow_fallback": False})
        assert len(self.backend.calls) == 1

    def test_degraded_selection_failure_raises_original(self):
        self.backend.fail("nova-reel", times=1)
        engine = _engine(self.backend, degraded_cost_factor=0.01)
        with pytest.raises(ProviderInvocationError) as exc_info:
            engine.dispatch({})
        assert exc_info.value.provider_id == "nova-reel"
        assert len(self.backend.calls) == 1

    def test_no_eligible_provider_is_not_retried(self):
        engine = _engine(
            self.backend, probe=StaticHealthProbe(unhealthy=["nova-reel", "luma-ray"])
        )
        with pytest.raises(NoEligibleProviderError) as exc_info:
            engine.dispatch({})
        assert set(exc_info.value.skip_reasons) == {"nova-reel", "luma-ray"}
        assert self.backend.calls == []
        assert engine.get_performance_metrics()["degraded_retries"] == 0

    def test_budget_blocks_before_invocation(self):
        engine = _engine(self.backend)
        engine.governor.set_thresholds("development", 0.001, 0.002, 0.005)
        with pytest.raises(BudgetExceededError) as exc_info:
            engine.dispatch({})
        assert exc_info.value.environment == "development"
        assert exc_info.value.maximum == 0.005
        assert self.backend.calls == []

    def test_invalid_request(self):
        engine = _engine(self.backend)
        with pytest.raises(InvalidRequestError):
            engine.dispatch({"duration_units": 0})
        with pytest.raises(InvalidRequestError):
            engine.dispatch({"capability_class": "hologram"})
        assert self.backend.calls == []

    def test_open_circuit_triggers_degraded_retry(self):
        breakers = CircuitBreakerRegistry(
            CircuitBreakerConfig(failure_threshold=1), clock=ManualClock()
        )
        self.backend.fail("nova-reel", times=1)
        engine = _engine(self.backend, breakers=breakers)

        with pytest.raises(ProviderInvocationError) as exc_info:
            engine.dispatch({})

        # The retry hit the open circuit; the first failure is surfaced
        assert not isinstance(exc_info.value, ProviderCircuitOpenError)
        assert len(self.backend.calls) == 1
        assert engine.get_performance_metrics()["circuit_breakers"]["nova-reel"]["state"] == "open"

    def test_spend_accumulates_across_dispatches(self):
        engine = _engine(self.backend)
        results = [engine.dispatch({"duration_units": 60}) for _ in range(3)]
        assert engine.governor.get_daily_spend() == pytest.approx(sum(r.cost for r in results))
        stats = engine.get_performance_metrics()
        assert stats["successful_dispatches"] == 3
        assert stats["providers"]["nova-reel"]["success_rate"] == 1.0

    def test_requires_health_probe(self):
        with pytest.raises(ValueError):
            DispatchEngine(backend=self.backend)


class TestMockEngine:
    """The convenience factory."""

    def setup_method(self):
        config.reset_config()

    def test_mock_engine(self):
        engine = mock_engine(unhealthy=["nova-reel"], environment="staging", clock=ManualClock())
        result = engine.dispatch({"duration_units": 20})
        assert result.provider_id == "luma-ray"
        assert result.request.environment == "staging"
        assert engine.governor.get_daily_spend("staging") == pytest.approx(result.cost)
