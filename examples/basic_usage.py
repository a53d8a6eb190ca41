"""
Basic usage examples for Reelroute.

Runs entirely against MockBackend; no cloud calls are made.
"""

from reelroute import (
    BudgetExceededError,
    CostEntry,
    ManualClock,
    NoEligibleProviderError,
    mock_engine,
)


def example_basic():
    """Basic dispatch."""
    print("=" * 60)
    print("Example 1: Basic Dispatch")
    print("=" * 60)

    engine = mock_engine()
    result = engine.dispatch({"topic": "etf investing", "duration_units": 8})

    print(f"Provider: {result.provider_id}")
    print(f"Why: {result.selection.reason.value}")
    print(f"Cost: ${result.cost:.6f}")
    print(f"Budget status: {result.budget.status.value}")
    print()


def example_fallback():
    """Primary outage and long clips."""
    print("=" * 60)
    print("Example 2: Fallback Selection")
    print("=" * 60)

    engine = mock_engine(unhealthy=["nova-reel"])
    result = engine.dispatch({"duration_units": 20})
    print(f"Primary down -> {result.provider_id} ({result.selection.reason.value})")

    engine = mock_engine(unhealthy=["nova-reel", "luma-ray"])
    try:
        engine.dispatch({"duration_units": 20})
    except NoEligibleProviderError as e:
        for provider_id, why in e.skip_reasons.items():
            print(f"  skipped {provider_id}: {why}")
    print()


def example_degraded_retry():
    """A flaky provider gets one cheaper retry."""
    print("=" * 60)
    print("Example 3: Degraded Retry")
    print("=" * 60)

    engine = mock_engine()
    engine.backend.fail("nova-reel", times=1)
    result = engine.dispatch({"duration_units": 45})

    print(f"Attempt: {result.attempt} (degraded={result.degraded})")
    print(f"Duration: {result.request.duration_units} units, quality {result.request.quality.value}")
    print(f"Max cost: ${result.request.max_cost:.2f}")
    print()


def example_budget():
    """Threshold alerts and the daily reset."""
    print("=" * 60)
    print("Example 4: Budget Governance")
    print("=" * 60)

    clock = ManualClock()
    engine = mock_engine(environment="development", clock=clock)
    governor = engine.governor
    governor.alert_callback = lambda alert: print(f"  ALERT {alert.message}")

    governor.record(CostEntry(service="video", cost=1.50))
    governor.record(CostEntry(service="video", cost=0.60))

    summary = governor.get_summary()
    print(f"Spend: ${summary['daily_spend']:.2f} ({summary['status']})")
    for rec in summary["recommendations"]:
        print(f"  -> {rec['message']}")

    governor.record(CostEntry(service="video", cost=2.85))
    try:
        engine.dispatch({"duration_units": 60})
    except BudgetExceededError as e:
        print(f"Blocked: {e}")

    clock.advance(hours=12)
    archived = governor.reset_daily()
    print(f"Archived {archived['development']['date']}: ${archived['development']['total_spend']:.2f}")
    print()


if __name__ == "__main__":
    example_basic()
    example_fallback()
    example_degraded_retry()
    example_budget()
