# tests/test_auto_resume_flow.py
"""
Auto-resume against the real store and chunk runner.

The monitor is synchronous, so it runs in a thread while the jobs client
hands every call back to the test's event loop.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from db.session import session_scope
from jobs import store
from jobs.checkpoint import Checkpoint
from jobs.chunk import run_chunk
from jobs.poller import AutoResumeMonitor, JobHealth
from jobs.resume import MemoryStorage, ResumeTracker
from tests.factories import make_songs

ANNOTATION = {"word": "sertão", "domain": "NA", "confidence": 0.9, "lemma": "sertão", "regionalism": True}

# attempt counters are per day; keep them on one
TODAY = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self):
        return self.now


class InProcessJobsClient:
    def __init__(self, session_factory, settings, loop):
        self.session_factory = session_factory
        self.settings = settings
        self.loop = loop
        self.fail_chunks = False
        self.marked: list[tuple] = []
        self.chunks: list[tuple] = []

    def _call(self, coro):
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout=30)

    def list_jobs(self, statuses):
        async def _list():
            async with session_scope(self.session_factory) as db:
                return await store.list_jobs(db, statuses=statuses)

        return self._call(_list())

    def mark_resuming(self, job_id, at):
        async def _touch():
            async with session_scope(self.session_factory) as db:
                await store.touch_activity(db, job_id, at)

        self.marked.append((job_id, at))
        self._call(_touch())

    def run_chunk(self, job_id, continue_from):
        self.chunks.append((job_id, continue_from))
        if self.fail_chunks:
            raise ConnectionError("worker unreachable")
        return self._call(
            run_chunk(self.session_factory, job_id, "resume-worker", continue_from=continue_from, settings=self.settings)
        )


async def load(session_factory, job_id):
    async with session_scope(session_factory) as db:
        return await store.get_job(db, job_id)


async def stall_after_first_chunk(session_factory, create_job, settings):
    job_id = await create_job(make_songs(100))
    with patch("jobs.handlers.classify_word", new_callable=AsyncMock, return_value=ANNOTATION):
        first = await run_chunk(session_factory, job_id, "worker-a", settings=settings)
    assert first.status == "running"
    assert first.next_checkpoint == Checkpoint("song_word", (0, 50))
    return await load(session_factory, job_id)


def make_monitor(client, clock) -> AutoResumeMonitor:
    tracker = ResumeTracker(MemoryStorage(), clock=lambda: TODAY, max_attempts=3)
    return AutoResumeMonitor(client, tracker, clock=clock, stuck_threshold_minutes=5, backdate_seconds=60)


@pytest.mark.asyncio
async def test_stalled_job_is_resumed_once_and_completes(session_factory, create_job, settings):
    stalled = await stall_after_first_chunk(session_factory, create_job, settings)
    clock = FakeClock(stalled.last_activity_at + timedelta(minutes=6))
    client = InProcessJobsClient(session_factory, settings, asyncio.get_running_loop())
    monitor = make_monitor(client, clock)

    with patch("jobs.handlers.classify_word", new_callable=AsyncMock, return_value=ANNOTATION) as classify:
        outcomes = await asyncio.to_thread(monitor.check_once)
        clock.now += timedelta(minutes=6)
        again = await asyncio.to_thread(monitor.check_once)

    assert [(o.success, o.status, o.attempt) for o in outcomes] == [(True, "completed", 1)]
    assert again == []
    assert client.chunks == [(stalled.id, Checkpoint("song_word", (0, 50)))]
    assert client.marked[0][1] == stalled.last_activity_at + timedelta(minutes=5)
    assert classify.await_count == 50
    assert monitor.tracker.attempts(stalled.id) == 1

    job = await load(session_factory, stalled.id)
    assert job.status == "completed"
    assert job.processed_units == 100
    assert job.checkpoint == {"kind": "song_word", "position": [1, 0]}


@pytest.mark.asyncio
async def test_failing_resumes_stop_after_three_attempts(session_factory, create_job, settings):
    stalled = await stall_after_first_chunk(session_factory, create_job, settings)
    clock = FakeClock(stalled.last_activity_at + timedelta(minutes=6))
    client = InProcessJobsClient(session_factory, settings, asyncio.get_running_loop())
    client.fail_chunks = True
    monitor = make_monitor(client, clock)

    outcomes = []
    for _ in range(4):
        outcomes += await asyncio.to_thread(monitor.check_once)
        clock.now += timedelta(minutes=6)

    assert [(o.attempt, o.success) for o in outcomes] == [(1, False), (2, False), (3, False)]
    assert outcomes[0].error == "worker unreachable"
    assert len(client.chunks) == 3
    assert len(client.marked) == 3

    job = await load(session_factory, stalled.id)
    assert job.status == "running"
    assert job.checkpoint == stalled.checkpoint
    assert job.processed_units == 50
    assert monitor.classify(job, clock.now) == JobHealth.ABANDONED


@pytest.mark.asyncio
async def test_manual_resume_after_giving_up(session_factory, create_job, settings):
    stalled = await stall_after_first_chunk(session_factory, create_job, settings)
    clock = FakeClock(stalled.last_activity_at + timedelta(minutes=6))
    client = InProcessJobsClient(session_factory, settings, asyncio.get_running_loop())
    client.fail_chunks = True
    monitor = make_monitor(client, clock)
    for _ in range(3):
        await asyncio.to_thread(monitor.check_once)
        clock.now += timedelta(minutes=6)

    client.fail_chunks = False
    job = await load(session_factory, stalled.id)
    with patch("jobs.handlers.classify_word", new_callable=AsyncMock, return_value=ANNOTATION):
        outcome = await asyncio.to_thread(monitor.manual_resume, job)

    assert outcome.success is True
    assert outcome.status == "completed"
    assert monitor.tracker.attempts(stalled.id) == 0
