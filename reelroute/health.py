"""
Provider health checking for Reelroute.

Health probes are cached per provider with asymmetric TTLs: a failed probe
expires quickly so recovery is noticed fast, a successful one lives longer
so a flapping provider is not re-probed on every request.
"""

import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Callable, Iterable, Optional

from reelroute import config
from reelroute.clock import Clock, SystemClock
from reelroute.schemas import ProviderHealthRecord


logger = logging.getLogger("reelroute.health")


class HealthProbe(ABC):
    """Checks whether a provider is currently able to serve requests."""

    @abstractmethod
    def probe(self, provider_id: str) -> bool:
        """
        Return True if healthy, False if not.

        May raise; the cache treats any exception as unhealthy.
        """
        pass


class StaticHealthProbe(HealthProbe):
    """Probe with a fixed answer per provider. Unknown providers use `default`."""

    def __init__(self, unhealthy: Iterable[str] = (), default: bool = True):
        self.unhealthy = set(unhealthy)
        self.default = default

    def probe(self, provider_id: str) -> bool:
        if provider_id in self.unhealthy:
            return False
        return self.default

    def set_healthy(self, provider_id: str, healthy: bool) -> None:
        if healthy:
            self.unhealthy.discard(provider_id)
        else:
            self.unhealthy.add(provider_id)


class CallableHealthProbe(HealthProbe):
    """Adapts a plain function `provider_id -> bool` to the probe interface."""

    def __init__(self, func: Callable[[str], bool]):
        self._func = func

    def probe(self, provider_id: str) -> bool:
        return bool(self._func(provider_id))


class ProviderHealthCache:
    """
    Per-provider cached health status.

    Concurrent callers for the same provider may both probe before the first
    result lands; the last write wins. A record is never served after its
    cache_expires_at without re-probing.
    """

    def __init__(
        self,
        probe: HealthProbe,
        clock: Optional[Clock] = None,
        success_ttl_seconds: float = config.HEALTH_SUCCESS_TTL_SECONDS,
        failure_ttl_seconds: float = config.HEALTH_FAILURE_TTL_SECONDS,
    ):
        self.probe = probe
        self.clock = clock or SystemClock()
        self.success_ttl = timedelta(seconds=success_ttl_seconds)
        self.failure_ttl = timedelta(seconds=failure_ttl_seconds)
        self._records: dict[str, ProviderHealthRecord] = {}

    def get_health(self, provider_id: str) -> ProviderHealthRecord:
        """Return a fresh health record, probing if missing or expired."""
        cached = self._records.get(provider_id)
        if cached is not None and cached.is_fresh(self.clock.now()):
            return cached
        return self.refresh(provider_id)

    def refresh(self, provider_id: str) -> ProviderHealthRecord:
        """Probe now and store the result regardless of the cached state."""
        error_message = None
        try:
            healthy = bool(self.probe.probe(provider_id))
            if not healthy:
                error_message = "probe reported unhealthy"
        except Exception as exc:
            healthy = False
            error_message = str(exc) or type(exc).__name__
            logger.warning("Health probe for %s raised: %s", provider_id, error_message)

        checked_at = self.clock.now()
        ttl = self.success_ttl if healthy else self.failure_ttl

        record = self._records.get(provider_id)
        if record is None:
            record = ProviderHealthRecord(
                provider_id=provider_id,
                healthy=healthy,
                last_checked_at=checked_at,
                cache_expires_at=checked_at + ttl,
                error_message=error_message,
            )
            self._records[provider_id] = record
        else:
            record.healthy = healthy
            record.last_checked_at = checked_at
            record.cache_expires_at = checked_at + ttl
            record.error_message = error_message
            record.probe_count += 1

        if not healthy:
            logger.info(
                "Provider %s unhealthy (%s); re-check after %s",
                provider_id, error_message, record.cache_expires_at.isoformat(),
            )
        return record

    def invalidate(self, provider_id: Optional[str] = None) -> None:
        """Drop one cached record, or all of them."""
        if provider_id is None:
            self._records.clear()
        else:
            self._records.pop(provider_id, None)

    def snapshot(self) -> dict[str, dict]:
        """Current cache contents, without probing."""
        return {
            pid: {
                "healthy": rec.healthy,
                "last_checked_at": rec.last_checked_at.isoformat(),
                "cache_expires_at": rec.cache_expires_at.isoformat(),
                "error_message": rec.error_message,
                "probe_count": rec.probe_count,
            }
            for pid, rec in list(self._records.items())
        }
