# services/backpressure.py
"""
Backpressure detection.

Tracks the outcome and latency of recent calls to a dependency (the job
database by default), turns them into a health level, and holds a
cooldown window once the dependency looks unhealthy. While the cooldown
is active no new jobs should start.
"""
from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from api.app.config import Settings, get_settings
from models.base import utcnow

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    CRITICAL = "critical"

    @property
    def delay_multiplier(self) -> int:
        """Factor callers apply to their own retry/backoff delays."""
        return DELAY_MULTIPLIERS[self]

    @property
    def blocks_admission(self) -> bool:
        return self in (HealthStatus.UNHEALTHY, HealthStatus.CRITICAL)


DELAY_MULTIPLIERS: dict[HealthStatus, int] = {
    HealthStatus.HEALTHY: 1,
    HealthStatus.DEGRADED: 2,
    HealthStatus.UNHEALTHY: 4,
    HealthStatus.CRITICAL: 8,
}


@dataclass
class BackpressureStatus:
    status: HealthStatus
    cooldown_active: bool
    cooldown_until: datetime | None
    trigger_reason: str | None
    latency_ms: float
    error_rate: float
    request_count: int
    error_count: int


class BackpressureMonitor:
    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._settings = settings or get_settings()
        self._clock = clock
        self._outcomes: deque[bool] = deque(maxlen=self._settings.health_window_size)
        self._last_latency_ms = 0.0
        self._cooldown_until: datetime | None = None
        self._trigger_reason: str | None = None

    def record(self, ok: bool, latency_ms: float | None = None) -> None:
        self._outcomes.append(ok)
        if latency_ms is not None:
            self._last_latency_ms = latency_ms

    @property
    def error_rate(self) -> float:
        """Percentage of failed calls in the window."""
        if not self._outcomes:
            return 0.0
        errors = sum(1 for ok in self._outcomes if not ok)
        return errors * 100.0 / len(self._outcomes)

    def evaluate(self) -> HealthStatus:
        s = self._settings
        rate = self.error_rate
        latency = self._last_latency_ms
        if rate > s.error_rate_critical or latency > s.latency_critical_ms:
            return HealthStatus.CRITICAL
        if rate > s.error_rate_unhealthy or latency > s.latency_unhealthy_ms:
            return HealthStatus.UNHEALTHY
        if rate > s.error_rate_degraded or latency > s.latency_degraded_ms:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def cooldown_active(self) -> bool:
        if self._cooldown_until is None:
            return False
        if self._cooldown_until > self._clock():
            return True
        self.clear()
        return False

    def trigger(self, reason: str, cooldown_seconds: int | None = None) -> None:
        seconds = self._settings.backpressure_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        self._cooldown_until = self._clock() + timedelta(seconds=seconds)
        self._trigger_reason = reason
        logger.warning("Backpressure active until %s: %s", self._cooldown_until.isoformat(), reason)

    def clear(self) -> None:
        if self._cooldown_until is not None:
            logger.info("Backpressure cleared")
        self._cooldown_until = None
        self._trigger_reason = None
        self._outcomes.clear()
        self._last_latency_ms = 0.0

    def status(self) -> BackpressureStatus:
        active = self.cooldown_active()
        errors = sum(1 for ok in self._outcomes if not ok)
        return BackpressureStatus(
            status=self.evaluate(),
            cooldown_active=active,
            cooldown_until=self._cooldown_until,
            trigger_reason=self._trigger_reason,
            latency_ms=self._last_latency_ms,
            error_rate=round(self.error_rate, 2),
            request_count=len(self._outcomes),
            error_count=errors,
        )
