# jobs/gate.py
"""
Concurrency gate: advisory admission control for starting jobs.

Two callers can pass the check at the same moment and both start a job;
the gate bounds load, it does not serialize anything.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.app.config import Settings, get_settings
from db.session import session_scope
from jobs import store
from jobs.errors import AdmissionRejected
from services.backpressure import BackpressureMonitor, HealthStatus

logger = logging.getLogger(__name__)


@dataclass
class HealthSnapshot:
    status: HealthStatus
    active_job_count: int
    max_concurrent_jobs: int
    cooldown_active: bool = False
    reason: str | None = None


@dataclass
class Admission:
    allowed: bool
    reason: str | None
    delay_multiplier: int
    snapshot: HealthSnapshot


class HealthSource(Protocol):
    async def snapshot(self) -> HealthSnapshot: ...


class StoreHealthSource:
    """Active-job count from the job table; health from the timing of that query."""

    def __init__(
        self,
        monitor: BackpressureMonitor,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        settings: Settings | None = None,
    ):
        self._monitor = monitor
        self._session_factory = session_factory
        self._settings = settings or get_settings()

    async def snapshot(self) -> HealthSnapshot:
        started = time.perf_counter()
        try:
            async with session_scope(self._session_factory) as db:
                active = await store.count_active_jobs(db)
        except Exception as exc:
            latency_ms = (time.perf_counter() - started) * 1000
            self._monitor.record(False, latency_ms)
            self._monitor.trigger(f"Job store error: {exc}")
            logger.exception("Health check against the job store failed")
            return HealthSnapshot(
                status=HealthStatus.CRITICAL,
                active_job_count=0,
                max_concurrent_jobs=self._settings.max_concurrent_jobs,
                cooldown_active=True,
                reason=str(exc),
            )

        latency_ms = (time.perf_counter() - started) * 1000
        self._monitor.record(True, latency_ms)

        status = self._monitor.evaluate()
        if status.blocks_admission and not self._monitor.cooldown_active():
            self._monitor.trigger(f"Job store {status.value}: {latency_ms:.0f}ms")
        bp = self._monitor.status()
        return HealthSnapshot(
            status=status,
            active_job_count=active,
            max_concurrent_jobs=self._settings.max_concurrent_jobs,
            cooldown_active=bp.cooldown_active,
            reason=bp.trigger_reason,
        )


class ConcurrencyGate:
    def __init__(self, source: HealthSource):
        self._source = source

    async def admission(self) -> Admission:
        snap = await self._source.snapshot()
        multiplier = snap.status.delay_multiplier

        reason = None
        if snap.active_job_count >= snap.max_concurrent_jobs:
            reason = f"{snap.active_job_count}/{snap.max_concurrent_jobs} jobs already running"
        elif snap.status.blocks_admission:
            reason = f"System {snap.status.value}"
        elif snap.cooldown_active:
            reason = f"Backpressure cooldown: {snap.reason or 'active'}"

        if reason:
            logger.info("Job start denied: %s", reason)
        return Admission(allowed=reason is None, reason=reason, delay_multiplier=multiplier, snapshot=snap)

    async def check_can_start_job(self) -> bool:
        return (await self.admission()).allowed

    async def require_slot(self) -> Admission:
        admission = await self.admission()
        if not admission.allowed:
            raise AdmissionRejected(admission.reason or "denied", admission.delay_multiplier)
        return admission
