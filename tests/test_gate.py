# tests/test_gate.py
"""Tests for the concurrency gate."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from db.session import session_scope
from jobs import store
from jobs.errors import AdmissionRejected
from jobs.gate import ConcurrencyGate, HealthSnapshot, StoreHealthSource
from jobs.types import JobStatus
from services.backpressure import BackpressureMonitor, HealthStatus


class FakeSource:
    def __init__(self, snapshot: HealthSnapshot):
        self.snap = snapshot

    async def snapshot(self) -> HealthSnapshot:
        return self.snap


def gate_for(status=HealthStatus.HEALTHY, active=0, max_jobs=5, cooldown=False) -> ConcurrencyGate:
    return ConcurrencyGate(FakeSource(HealthSnapshot(status, active, max_jobs, cooldown_active=cooldown)))


@pytest.mark.asyncio
async def test_admits_when_healthy_and_below_limit():
    admission = await gate_for(active=4).admission()
    assert admission.allowed
    assert admission.reason is None
    assert admission.delay_multiplier == 1


@pytest.mark.asyncio
async def test_degraded_still_admits_with_longer_delay():
    admission = await gate_for(HealthStatus.DEGRADED).admission()
    assert admission.allowed
    assert admission.delay_multiplier == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("status", list(HealthStatus))
async def test_full_gate_denies_whatever_the_health(status):
    assert await gate_for(status, active=5, max_jobs=5).check_can_start_job() is False
    assert await gate_for(status, active=7, max_jobs=5).check_can_start_job() is False


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [HealthStatus.UNHEALTHY, HealthStatus.CRITICAL])
async def test_unhealthy_denies(status):
    admission = await gate_for(status).admission()
    assert not admission.allowed
    assert admission.delay_multiplier == status.delay_multiplier


@pytest.mark.asyncio
async def test_cooldown_denies():
    admission = await gate_for(cooldown=True).admission()
    assert not admission.allowed
    assert "cooldown" in admission.reason


@pytest.mark.asyncio
async def test_require_slot_raises():
    with pytest.raises(AdmissionRejected) as exc_info:
        await gate_for(HealthStatus.CRITICAL).require_slot()
    assert exc_info.value.delay_multiplier == 8


@pytest.mark.asyncio
async def test_store_source_counts_running_jobs(session_factory, create_job, settings):
    settings.max_concurrent_jobs = 2
    for _ in range(2):
        job_id = await create_job()
        async with session_scope(session_factory) as db:
            await store.set_status(db, job_id, JobStatus.RUNNING)
    await create_job()

    gate = ConcurrencyGate(StoreHealthSource(BackpressureMonitor(settings), session_factory, settings))
    admission = await gate.admission()
    assert admission.snapshot.active_job_count == 2
    assert not admission.allowed


@pytest.mark.asyncio
async def test_store_failure_is_critical_and_starts_cooldown(settings):
    broken = MagicMock(side_effect=RuntimeError("connection refused"))
    monitor = BackpressureMonitor(settings)
    gate = ConcurrencyGate(StoreHealthSource(monitor, broken, settings))

    admission = await gate.admission()
    assert not admission.allowed
    assert admission.snapshot.status == HealthStatus.CRITICAL
    assert monitor.cooldown_active()
