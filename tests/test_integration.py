"""End-to-end scenarios across health, selection, budget and dispatch."""

from datetime import datetime, UTC

import pytest

from reelroute import config
from reelroute.backends import MockBackend
from reelroute.budget import BudgetGovernor
from reelroute.clock import ManualClock
from reelroute.dispatch import DispatchEngine
from reelroute.health import StaticHealthProbe
from reelroute.schemas import BudgetStatus, SelectionReason
from reelroute.storage import InMemorySink


class TestProductionDay:
    """A simulated day of video production."""

    def setup_method(self):
        config.reset_config()
        self.clock = ManualClock(datetime(2025, 1, 6, 9, 0, tzinfo=UTC))
        self.probe = StaticHealthProbe()
        self.sink = InMemorySink()
        self.alerts = []
        providers = config.get_providers()
        self.backend = MockBackend(providers)
        self.engine = DispatchEngine(
            backend=self.backend,
            health_probe=self.probe,
            providers=providers,
            governor=BudgetGovernor(
                sink=self.sink,
                clock=self.clock,
                alert_callback=self.alerts.append,
                default_environment="development",
            ),
            clock=self.clock,
        )

    def test_outage_and_recovery(self):
        first = self.engine.dispatch({"duration_units": 30})
        assert first.provider_id == "nova-reel"

        # Primary goes down, but the healthy result is still cached
        self.probe.set_healthy("nova-reel", False)
        assert self.engine.dispatch({"duration_units": 30}).provider_id == "nova-reel"

        self.clock.advance(61)
        during = self.engine.dispatch({"duration_units": 30})
        assert during.provider_id == "luma-ray"
        assert during.selection.reason == SelectionReason.FALLBACK_PRIMARY_UNHEALTHY

        self.probe.set_healthy("nova-reel", True)
        self.clock.advance(31)
        after = self.engine.dispatch({"duration_units": 30})
        assert after.provider_id == "nova-reel"
        assert after.selection.reason == SelectionReason.PRIMARY_HEALTHY

    def test_budget_escalation_and_reset(self):
        # 60 units on nova-reel costs $0.05
        for _ in range(21):
            self.engine.dispatch({"duration_units": 60})
        assert self.engine.governor.get_daily_spend() == pytest.approx(1.05)
        assert self.engine.governor.get_status() == BudgetStatus.WARNING
        assert [a.level for a in self.alerts] == [BudgetStatus.WARNING]

        for _ in range(20):
            self.engine.dispatch({"duration_units": 60})
        assert self.engine.governor.get_status() == BudgetStatus.CRITICAL
        assert [a.level for a in self.alerts] == [BudgetStatus.WARNING, BudgetStatus.CRITICAL]
        assert self.sink.get("cost.tracking.2025-01-06.video") == pytest.approx(2.05)

        self.clock.set(datetime(2025, 1, 7, 0, 0, 1, tzinfo=UTC))
        self.engine.governor.reset_daily()
        assert self.engine.governor.get_daily_spend() == 0.0
        assert self.engine.governor.get_history("2025-01-06")["total_spend"] == pytest.approx(2.05)
        assert self.engine.governor.load_historical_data("2025-01-06")["total"] == pytest.approx(2.05)
