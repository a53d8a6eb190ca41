"""
Budget governance for Reelroute.

"Degrade before you get surprised by the bill."

Tracks daily spend per environment and service, derives a threshold state
(normal -> warning -> critical -> maximum), emits at most one alert per
level per day, and archives the day's totals on reset.

Example:
    ```python
    governor = BudgetGovernor(sink=InMemorySink())

    decision = governor.preauthorize("video", estimated_cost=0.40)
    if decision.allowed:
        ...  # call the provider
        governor.record(CostEntry(service="video", cost=0.38))

    # Once per day, from the scheduler
    governor.reset_daily()
    ```
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from threading import Lock
from typing import Callable, Optional, Union

from reelroute import config
from reelroute.clock import Clock, SystemClock, date_key, utc_date
from reelroute.errors import InvalidRequestError
from reelroute.schemas import (
    AlertKey,
    BudgetAlert,
    BudgetDecision,
    BudgetStatus,
    CostEntry,
    Recommendation,
    RecordResult,
    ThresholdSet,
)
from reelroute.storage import PersistenceSink, cost_key


logger = logging.getLogger("reelroute.budget")


RECOMMENDATIONS: dict[BudgetStatus, Recommendation] = {
    BudgetStatus.WARNING: Recommendation(
        type="optimization",
        message="Enable caching and reduce request frequency",
        action="enable_caching",
        priority="medium",
    ),
    BudgetStatus.CRITICAL: Recommendation(
        type="fallback",
        message="Switch to degraded or mock mode for the rest of the day",
        action="use_mock",
        priority="high",
    ),
    BudgetStatus.MAXIMUM: Recommendation(
        type="block",
        message="Block all calls until the daily reset",
        action="block_calls",
        priority="critical",
    ),
}

DEVELOPMENT_MODEL_HINT = Recommendation(
    type="environment",
    message="Use development-optimized models (cheaper engines, shorter clips)",
    action="use_cheap_models",
    priority="low",
)
DEVELOPMENT_HINT_SPEND = 0.50


@dataclass
class DailyBudgetState:
    """Live spend for one environment on one calendar day."""
    environment: str
    day: date
    per_service_spend: dict[str, float] = field(default_factory=dict)
    alerts_sent_today: set[AlertKey] = field(default_factory=set)
    entry_count: int = 0

    @property
    def daily_spend_total(self) -> float:
        return sum(self.per_service_spend.values())

    def snapshot(self) -> dict:
        return {
            "environment": self.environment,
            "opened": date_key(self.day),
            "total_spend": self.daily_spend_total,
            "service_breakdown": dict(self.per_service_spend),
            "alerts_sent": sorted(
                (k.level.value, date_key(k.date)) for k in self.alerts_sent_today
            ),
            "entry_count": self.entry_count,
        }


class BudgetGovernor:
    """
    Per-environment daily budget state machine.

    preauthorize() never mutates state; record() is the only path that adds
    spend. Both record() and reset_daily() run under one lock so concurrent
    records never lose an increment and a reset never interleaves with one.
    """

    def __init__(
        self,
        sink: Optional[PersistenceSink] = None,
        clock: Optional[Clock] = None,
        thresholds: Optional[dict[str, ThresholdSet]] = None,
        alert_callback: Optional[Callable[[BudgetAlert], None]] = None,
        default_environment: Optional[str] = None,
    ):
        self.sink = sink
        self.clock = clock or SystemClock()
        self.alert_callback = alert_callback
        self.default_environment = default_environment or config.get_environment()

        self._thresholds: dict[str, ThresholdSet] = dict(thresholds or {})
        self._states: dict[str, DailyBudgetState] = {}
        self._history: dict[tuple[str, str], dict] = {}
        self._alerts: list[BudgetAlert] = []
        self._lock = Lock()
        self._persist_lock = Lock()

        current = self.get_thresholds(self.default_environment)
        logger.info(
            "BudgetGovernor initialized for %s: warning=$%.2f critical=$%.2f maximum=$%.2f",
            self.default_environment, current.warning, current.critical, current.maximum,
        )

    # =========================================================================
    # Thresholds
    # =========================================================================

    def get_thresholds(self, environment: Optional[str] = None) -> ThresholdSet:
        env = environment or self.default_environment
        override = self._thresholds.get(env)
        if override is not None:
            return override
        return config.threshold_set_for(env)

    def set_thresholds(
        self,
        environment: str,
        warning: float,
        critical: float,
        maximum: float,
    ) -> ThresholdSet:
        """
        Override thresholds for an environment at runtime.

        Raises:
            ValueError: If warning < critical < maximum does not hold.
        """
        thresholds = ThresholdSet(environment, warning, critical, maximum)
        with self._lock:
            self._thresholds[environment] = thresholds
        logger.info(
            "Thresholds for %s set to %.2f/%.2f/%.2f",
            environment, warning, critical, maximum,
        )
        return thresholds

    # =========================================================================
    # Status
    # =========================================================================

    def _today(self) -> date:
        return utc_date(self.clock.now())

    def get_daily_spend(self, environment: Optional[str] = None) -> float:
        with self._lock:
            state = self._states.get(environment or self.default_environment)
            return state.daily_spend_total if state else 0.0

    def get_status(self, environment: Optional[str] = None) -> BudgetStatus:
        env = environment or self.default_environment
        return self.get_thresholds(env).status_for(self.get_daily_spend(env))

    def get_recommendations(self, environment: Optional[str] = None) -> list[Recommendation]:
        env = environment or self.default_environment
        return self._recommendations(env, self.get_status(env), self.get_daily_spend(env))

    @staticmethod
    def _recommendations(
        environment: str,
        status: BudgetStatus,
        spend: float,
    ) -> list[Recommendation]:
        recommendations = []
        if status in RECOMMENDATIONS:
            recommendations.append(RECOMMENDATIONS[status])
        if environment == "development" and spend > DEVELOPMENT_HINT_SPEND:
            recommendations.append(DEVELOPMENT_MODEL_HINT)
        return recommendations

    # =========================================================================
    # Preauthorization
    # =========================================================================

    def preauthorize(
        self,
        service: str,
        estimated_cost: float,
        environment: Optional[str] = None,
    ) -> BudgetDecision:
        """
        Check whether a prospective cost may proceed. Never mutates state.

        Blocks (allowed=False) only when the would-be spend reaches the
        maximum threshold; lower states are reported for the caller to act on.

        Raises:
            InvalidRequestError: If estimated_cost is negative or not a number.
        """
        _validate_amount(estimated_cost, "estimated_cost")
        env = environment or self.default_environment
        thresholds = self.get_thresholds(env)

        current = self.get_daily_spend(env)
        projected = current + estimated_cost
        status = thresholds.status_for(projected)
        allowed = status != BudgetStatus.MAXIMUM

        if not allowed:
            logger.warning(
                "Preauthorization blocked for %s/%s: $%.4f + $%.4f >= $%.2f",
                env, service, current, estimated_cost, thresholds.maximum,
            )

        return BudgetDecision(
            allowed=allowed,
            status=status,
            environment=env,
            service=service,
            current_spend=current,
            projected_spend=projected,
            estimated_cost=estimated_cost,
            recommendations=self._recommendations(env, status, projected),
        )

    # =========================================================================
    # Recording
    # =========================================================================

    def record(self, entry: CostEntry) -> RecordResult:
        """
        Add a completed (or attempted) billable operation to today's spend.

        Emits one alert the first time each threshold level is reached on a
        calendar date. Persists the day's totals to the sink if configured;
        persistence failures are logged and ignored.

        Raises:
            InvalidRequestError: If cost is negative or service is empty.
        """
        _validate_amount(entry.cost, "cost")
        if not entry.service:
            raise InvalidRequestError("service cannot be empty")

        env = entry.environment or self.default_environment
        entry.environment = env
        if entry.timestamp is None:
            entry.timestamp = self.clock.now()

        today = self._today()
        thresholds = self.get_thresholds(env)
        alert: Optional[BudgetAlert] = None

        with self._lock:
            state = self._states.get(env)
            if state is None:
                state = DailyBudgetState(environment=env, day=today)
                self._states[env] = state

            state.per_service_spend[entry.service] = (
                state.per_service_spend.get(entry.service, 0.0) + entry.cost
            )
            state.entry_count += 1

            daily_total = state.daily_spend_total
            service_total = state.per_service_spend[entry.service]
            entry.daily_total = daily_total
            entry.service_total = service_total

            status = thresholds.status_for(daily_total)
            if status != BudgetStatus.NORMAL:
                key = AlertKey(level=status, date=today)
                if key not in state.alerts_sent_today:
                    state.alerts_sent_today.add(key)
                    alert = self._build_alert(env, status, daily_total, thresholds, today)
                    self._alerts.append(alert)

        self._log_cost(entry, thresholds)

        if alert is not None:
            self._emit(alert)

        self._persist(env, entry.service, today)

        return RecordResult(
            entry=entry,
            status=status,
            daily_spend=daily_total,
            service_spend=service_total,
            alert=alert,
            recommendations=self._recommendations(env, status, daily_total),
        )

    def _build_alert(
        self,
        environment: str,
        level: BudgetStatus,
        daily_total: float,
        thresholds: ThresholdSet,
        today: date,
    ) -> BudgetAlert:
        threshold = getattr(thresholds, level.value)
        return BudgetAlert(
            environment=environment,
            level=level,
            daily_total=daily_total,
            threshold=threshold,
            date=today,
            message=(
                f"{level.value.upper()}: daily costs for {environment} reached "
                f"${daily_total:.2f} (${threshold:.2f} threshold)"
            ),
            recommendations=[RECOMMENDATIONS[level]],
            timestamp=self.clock.now(),
        )

    def _log_cost(self, entry: CostEntry, thresholds: ThresholdSet) -> None:
        logger.info(
            "Cost tracked: %s = $%.4f | Daily total: $%.2f | Service total: $%.2f",
            entry.service, entry.cost, entry.daily_total, entry.service_total,
        )
        if entry.environment == "development":
            logger.debug(
                "Development spend: %.1f%% of warning, %.1f%% of critical",
                entry.daily_total / thresholds.warning * 100 if thresholds.warning else 0.0,
                entry.daily_total / thresholds.critical * 100,
            )

    def _emit(self, alert: BudgetAlert) -> None:
        if alert.level == BudgetStatus.WARNING:
            logger.warning(alert.message)
        else:
            logger.error(alert.message)

        if self.alert_callback is None:
            return
        try:
            self.alert_callback(alert)
        except Exception:
            logger.exception("Alert callback failed for %s alert", alert.level.value)

    def _persist(self, environment: str, service: str, today: date) -> None:
        if self.sink is None:
            return
        day = date_key(today)
        with self._persist_lock:
            with self._lock:
                state = self._states.get(environment)
                if state is None:
                    return
                total = state.daily_spend_total
                service_total = state.per_service_spend.get(service, 0.0)
            try:
                self.sink.set_override(cost_key(day, "total"), total, persist=True)
                self.sink.set_override(cost_key(day, service), service_total, persist=True)
            except Exception as exc:
                logger.warning("Failed to persist cost data for %s: %s", day, exc)

    # =========================================================================
    # Daily reset and history
    # =========================================================================

    def reset_daily(self, environment: Optional[str] = None) -> dict[str, dict]:
        """
        Archive and zero the live state.

        The archive is keyed by the calendar date before the clock's current
        date. Called once per day boundary by the scheduler.

        Args:
            environment: Reset one environment, or all when None.

        Returns:
            The archived snapshots by environment.
        """
        today = self._today()
        archive_day = date_key(today - timedelta(days=1))
        archived: dict[str, dict] = {}

        with self._lock:
            envs = [environment] if environment else list(self._states)
            for env in envs:
                state = self._states.get(env) or DailyBudgetState(environment=env, day=today)
                snapshot = state.snapshot()
                snapshot["date"] = archive_day

                previous = self._history.get((env, archive_day))
                if previous is not None:
                    snapshot = _merge_snapshots(previous, snapshot)
                self._history[(env, archive_day)] = snapshot
                archived[env] = snapshot

                self._states[env] = DailyBudgetState(environment=env, day=today)

        for env, snapshot in archived.items():
            logger.info(
                "Reset daily spend for %s from $%.2f to $0.00 (archived as %s)",
                env, snapshot["total_spend"], archive_day,
            )
        return archived

    def get_history(
        self,
        day: Union[date, str],
        environment: Optional[str] = None,
    ) -> Optional[dict]:
        """Archived snapshot for a date, or None."""
        key = day if isinstance(day, str) else date_key(day)
        return self._history.get((environment or self.default_environment, key))

    def load_historical_data(
        self,
        day: Union[date, str],
        environment: Optional[str] = None,
    ) -> dict:
        """Read persisted totals for a date from the sink."""
        key = day if isinstance(day, str) else date_key(day)
        env = environment or self.default_environment
        if self.sink is None:
            return {"date": key, "total": 0.0, "services": {}, "environment": env}

        try:
            total = self.sink.get(cost_key(key, "total"), 0)
            services = {
                service: self.sink.get(cost_key(key, service), 0)
                for service in config.KNOWN_SERVICES
            }
        except Exception as exc:
            logger.warning("Failed to load historical data for %s: %s", key, exc)
            return {"date": key, "total": 0.0, "services": {}, "environment": env}

        return {"date": key, "total": total, "services": services, "environment": env}

    # =========================================================================
    # Reports
    # =========================================================================

    def get_service_breakdown(self, environment: Optional[str] = None) -> dict[str, dict]:
        state = self._states.get(environment or self.default_environment)
        if state is None:
            return {}
        with self._lock:
            spend = dict(state.per_service_spend)
        total = sum(spend.values())
        return {
            service: {
                "amount": amount,
                "percentage": (amount / total) * 100 if total > 0 else 0.0,
            }
            for service, amount in spend.items()
        }

    def get_summary(self, environment: Optional[str] = None) -> dict:
        env = environment or self.default_environment
        thresholds = self.get_thresholds(env)
        spend = self.get_daily_spend(env)
        status = thresholds.status_for(spend)
        return {
            "environment": env,
            "daily_spend": spend,
            "thresholds": thresholds.to_dict(),
            "service_breakdown": self.get_service_breakdown(env),
            "status": status.value,
            "recommendations": [
                r.__dict__ for r in self._recommendations(env, status, spend)
            ],
            "last_updated": self.clock.now().isoformat(),
        }

    @property
    def alerts(self) -> list[BudgetAlert]:
        """Every alert emitted so far, oldest first."""
        return list(self._alerts)

    def alerts_sent(self, environment: Optional[str] = None) -> set[AlertKey]:
        with self._lock:
            state = self._states.get(environment or self.default_environment)
            return set(state.alerts_sent_today) if state else set()


def _validate_amount(value: float, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidRequestError(f"{name} must be a number, got {type(value).__name__}")
    if value < 0:
        raise InvalidRequestError(f"Invalid {name}: {value}. Must be non-negative.")


def _merge_snapshots(previous: dict, current: dict) -> dict:
    breakdown = dict(previous.get("service_breakdown", {}))
    for service, amount in current["service_breakdown"].items():
        breakdown[service] = breakdown.get(service, 0.0) + amount
    merged = dict(current)
    merged["service_breakdown"] = breakdown
    merged["total_spend"] = sum(breakdown.values())
    merged["alerts_sent"] = sorted(set(map(tuple, previous.get("alerts_sent", []))) | set(current["alerts_sent"]))
    merged["entry_count"] = previous.get("entry_count", 0) + current["entry_count"]
    return merged
