"""
Circuit breaker pattern for Reelroute.

Stops calling a provider backend that keeps failing, then lets a few test
calls through after a cool-down to see if it recovered.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Callable, Optional, TypeVar

from reelroute.clock import Clock, SystemClock
from reelroute.errors import ProviderCircuitOpenError


logger = logging.getLogger("reelroute.circuit_breaker")

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking calls
    HALF_OPEN = "half_open"  # Testing if the provider recovered


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration."""
    failure_threshold: int = 5  # Consecutive failures before opening
    success_threshold: int = 1  # Successes to close from half-open
    timeout_seconds: float = 60.0  # Time before trying again
    half_open_max_calls: int = 1  # Test calls allowed while half-open


class CircuitBreaker:
    """Circuit breaker for a single provider."""

    def __init__(
        self,
        provider_id: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.provider_id = provider_id
        self.config = config or CircuitBreakerConfig()
        self.clock = clock or SystemClock()
        self._lock = Lock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: Optional[datetime] = None
        self._half_open_calls = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._check_and_update_state()
            return self._state

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        """
        Run func unless the circuit is open.

        Raises:
            ProviderCircuitOpenError: If the circuit is open, or half-open
                with its test calls used up.
        """
        with self._lock:
            self._check_and_update_state()

            if self._state == CircuitState.OPEN:
                raise ProviderCircuitOpenError(
                    self.provider_id,
                    f"circuit open after {self._failure_count} consecutive failures",
                )

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.half_open_max_calls:
                    raise ProviderCircuitOpenError(
                        self.provider_id, "circuit half-open, test call in flight"
                    )
                self._half_open_calls += 1

        # Execute outside lock
        try:
            result = func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def _seconds_since_open(self) -> float:
        if self._opened_at is None:
            return 0.0
        return (self.clock.now() - self._opened_at).total_seconds()

    def _check_and_update_state(self) -> None:
        if (
            self._state == CircuitState.OPEN
            and self._seconds_since_open() >= self.config.timeout_seconds
        ):
            self._state = CircuitState.HALF_OPEN
            self._half_open_calls = 0
            self._success_count = 0

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    logger.info("Circuit for %s closed after recovery", self.provider_id)
                    self._close()
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._open()
            elif self._state == CircuitState.CLOSED:
                self._failure_count += 1
                if self._failure_count >= self.config.failure_threshold:
                    self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self.clock.now()
        self._success_count = 0
        self._half_open_calls = 0
        logger.warning(
            "Circuit for %s opened after %d failures",
            self.provider_id, self._failure_count,
        )

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at = None
        self._half_open_calls = 0

    def reset(self) -> None:
        """Manually reset circuit to closed state."""
        with self._lock:
            self._close()

    def get_stats(self) -> dict:
        with self._lock:
            self._check_and_update_state()
            retry_in = 0.0
            if self._state == CircuitState.OPEN:
                retry_in = max(0.0, self.config.timeout_seconds - self._seconds_since_open())
            return {
                "provider_id": self.provider_id,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "success_count": self._success_count,
                "opened_at": self._opened_at.isoformat() if self._opened_at else None,
                "time_until_retry": retry_in,
            }


class CircuitBreakerRegistry:
    """Lazily creates one breaker per provider, sharing config and clock."""

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or CircuitBreakerConfig()
        self.clock = clock or SystemClock()
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = Lock()

    def get(self, provider_id: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(provider_id)
            if breaker is None:
                breaker = CircuitBreaker(provider_id, self.config, self.clock)
                self._breakers[provider_id] = breaker
            return breaker

    def get_stats(self) -> dict[str, dict]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.provider_id: b.get_stats() for b in breakers}
