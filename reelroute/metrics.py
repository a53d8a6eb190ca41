"""
Metrics and observability for Reelroute.

Counts dispatch outcomes per provider and selection reason, and logs each
event through the `reelroute.metrics` logger.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, UTC
from threading import Lock
from typing import Any


@dataclass
class ProviderStats:
    """Running totals for one provider."""
    total_calls: int = 0
    successful_calls: int = 0
    total_duration: float = 0.0
    total_cost: float = 0.0

    @property
    def success_rate(self) -> float:
        return self.successful_calls / self.total_calls if self.total_calls else 0.0

    @property
    def average_duration(self) -> float:
        return self.total_duration / self.successful_calls if self.successful_calls else 0.0


class DispatchMetrics:
    """
    Collects dispatch metrics.

    Tracks totals (dispatches, successes, failures, degraded retries, cost),
    counters by selection reason and error type, and per-provider stats.
    """

    def __init__(self, enable_logging: bool = True):
        self.enable_logging = enable_logging

        self.logger = logging.getLogger("reelroute.metrics")
        if enable_logging and not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
                )
            )
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.INFO)

        self._lock = Lock()
        self._counters: dict[str, int] = defaultdict(int)
        self._providers: dict[str, ProviderStats] = defaultdict(ProviderStats)
        self._total_cost = 0.0

    def record_selection(self, request_id: str, provider_id: str, reason: str, estimated_cost: float) -> None:
        with self._lock:
            self._counters["selections_total"] += 1
            self._counters[f"selections_by_reason_{reason}"] += 1
        self._log(
            "selection", request_id,
            provider_id=provider_id, reason=reason, estimated_cost=estimated_cost,
        )

    def record_success(
        self,
        request_id: str,
        provider_id: str,
        cost: float,
        duration: float,
        attempt: int,
    ) -> None:
        with self._lock:
            self._counters["dispatches_total"] += 1
            self._counters["dispatches_succeeded"] += 1
            if attempt > 0:
                self._counters["dispatches_succeeded_degraded"] += 1
            stats = self._providers[provider_id]
            stats.total_calls += 1
            stats.successful_calls += 1
            stats.total_duration += duration
            stats.total_cost += cost
            self._total_cost += cost
        self._log(
            "success", request_id,
            provider_id=provider_id, cost=cost, duration=duration, attempt=attempt,
        )

    def record_provider_failure(self, request_id: str, provider_id: str, error: str) -> None:
        with self._lock:
            self._providers[provider_id].total_calls += 1
            self._counters["provider_failures"] += 1
        self._log("provider_failure", request_id, provider_id=provider_id, error=error)

    def record_degraded_retry(self, request_id: str, duration_units: int, max_cost: float) -> None:
        with self._lock:
            self._counters["degraded_retries"] += 1
        self._log(
            "degraded_retry", request_id,
            duration_units=duration_units, max_cost=max_cost,
        )

    def record_error(self, request_id: str, error_type: str, error_message: str) -> None:
        with self._lock:
            self._counters["dispatches_total"] += 1
            self._counters["dispatches_failed"] += 1
            self._counters[f"errors_{error_type}"] += 1
        if self.enable_logging:
            self.logger.error(
                "Error in request %s: %s - %s", request_id, error_type, error_message
            )

    def _log(self, event_type: str, request_id: str, **data: Any) -> None:
        if self.enable_logging:
            self.logger.info(
                "%s: request_id=%s, data=%s", event_type.upper(), request_id, data
            )

    def get_stats(self) -> dict:
        """
        Get aggregated statistics.

        Returns:
            Dictionary with metrics summary
        """
        with self._lock:
            counters = dict(self._counters)
            providers = {
                pid: {
                    "total_calls": s.total_calls,
                    "successful_calls": s.successful_calls,
                    "success_rate": s.success_rate,
                    "average_duration": s.average_duration,
                    "total_cost": s.total_cost,
                }
                for pid, s in self._providers.items()
            }
            total_cost = self._total_cost

        total = counters.get("dispatches_total", 0)
        succeeded = counters.get("dispatches_succeeded", 0)
        return {
            "total_dispatches": total,
            "successful_dispatches": succeeded,
            "failed_dispatches": counters.get("dispatches_failed", 0),
            "degraded_retries": counters.get("degraded_retries", 0),
            "success_rate": succeeded / total if total else 0.0,
            "total_cost": total_cost,
            "counters": counters,
            "providers": providers,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._counters.clear()
            self._providers.clear()
            self._total_cost = 0.0
