# tests/test_orchestrator.py
"""Tests for the corpus orchestrator: sequencing, skip/stop, orphan cleanup."""
from __future__ import annotations

from datetime import timedelta

import pytest

from db.session import session_scope
from jobs import orchestrator, store
from jobs.checkpoint import Checkpoint
from jobs.errors import (
    AdmissionRejected,
    CorpusNotFound,
    NothingToRun,
    OrchestrationConflict,
    SystemicJobError,
)
from jobs.gate import ConcurrencyGate, HealthSnapshot
from jobs.types import JobStatus
from models.base import utcnow
from services.backpressure import HealthStatus

SONGS = [
    {"id": "s1", "title": "Querência Amada", "artist": "Teixeirinha"},
    {"id": "s2", "title": "Céu, Sol, Sul, Terra e Cor", "artist": "Leonardo"},
]


class FakeSource:
    def __init__(self, active: int = 0):
        self.active = active

    async def snapshot(self) -> HealthSnapshot:
        return HealthSnapshot(HealthStatus.HEALTHY, self.active, 5)


@pytest.fixture
def gate():
    return ConcurrencyGate(FakeSource())


@pytest.fixture
def full_gate():
    return ConcurrencyGate(FakeSource(active=5))


async def register_sequence(db):
    for slug, name in (("gaucho", "Gaúcho"), ("sertanejo", "Sertanejo"), ("nordestino", "Nordestino")):
        await orchestrator.register_corpus(db, slug, name, SONGS)


@pytest.mark.asyncio
async def test_register_appends_to_sequence(db):
    await register_sequence(db)
    corpora = await orchestrator.list_corpora(db)
    assert [(c.slug, c.position) for c in corpora] == [("gaucho", 0), ("sertanejo", 1), ("nordestino", 2)]

    # re-registering replaces songs, keeps the place in line
    again = await orchestrator.register_corpus(db, "gaucho", "Gaúcho", SONGS[:1])
    assert again.position == 0
    assert len(again.songs) == 1


@pytest.mark.asyncio
async def test_register_rejects_malformed_songs(db):
    with pytest.raises(SystemicJobError):
        await orchestrator.register_corpus(db, "bad", "Bad", [{"id": "x", "title": 7}])
    assert await orchestrator.list_corpora(db) == []


@pytest.mark.asyncio
async def test_start_runs_corpora_in_order(db, gate):
    await register_sequence(db)

    job = await orchestrator.start(db, gate)
    assert job.job_type == "corpus_enrichment"
    assert job.payload["corpus"] == "gaucho"
    assert job.total_units == 2
    assert job.checkpoint == {"kind": "song_index", "position": [0]}

    with pytest.raises(OrchestrationConflict):
        await orchestrator.start(db, gate)

    await store.set_status(db, job.id, JobStatus.COMPLETED)
    job = await orchestrator.start(db, gate)
    assert job.payload["corpus"] == "sertanejo"


@pytest.mark.asyncio
async def test_start_named_corpus(db, gate):
    await register_sequence(db)
    job = await orchestrator.start(db, gate, slug="nordestino")
    assert job.payload["corpus"] == "nordestino"

    await store.set_status(db, job.id, JobStatus.CANCELLED)
    with pytest.raises(CorpusNotFound):
        await orchestrator.start(db, gate, slug="pampa")


@pytest.mark.asyncio
async def test_start_when_everything_is_enriched(db, gate):
    await orchestrator.register_corpus(db, "gaucho", "Gaúcho", SONGS)
    job = await orchestrator.start(db, gate)
    await store.set_status(db, job.id, JobStatus.COMPLETED)

    with pytest.raises(NothingToRun):
        await orchestrator.start(db, gate)


@pytest.mark.asyncio
async def test_start_waits_for_the_gate(db, full_gate):
    await register_sequence(db)
    with pytest.raises(AdmissionRejected):
        await orchestrator.start(db, full_gate)
    assert await store.list_jobs(db) == []


@pytest.mark.asyncio
async def test_skip_moves_to_next_corpus(db, gate):
    await register_sequence(db)
    first = await orchestrator.start(db, gate)

    skipped, started = await orchestrator.skip(db)
    assert skipped.id == first.id
    assert skipped.status == "cancelled"
    assert skipped.error_message == "Skipped by orchestrator"
    assert started.payload["corpus"] == "sertanejo"

    state = await orchestrator.get_state(db)
    assert state.current.corpus.slug == "sertanejo"
    assert state.completed == []


@pytest.mark.asyncio
async def test_skip_last_corpus_starts_nothing(db, gate):
    await register_sequence(db)
    await orchestrator.start(db, gate, slug="nordestino")
    skipped, started = await orchestrator.skip(db)
    assert skipped.status == "cancelled"
    assert started is None

    with pytest.raises(NothingToRun):
        await orchestrator.skip(db)


@pytest.mark.asyncio
async def test_stop_cancels_active_jobs_and_does_not_advance(db, gate):
    await register_sequence(db)
    job = await orchestrator.start(db, gate)
    await store.set_status(db, job.id, JobStatus.RUNNING)

    stopped = await orchestrator.stop(db)
    assert [j.id for j in stopped] == [job.id]
    assert stopped[0].is_cancelling is True

    await store.set_status(db, job.id, JobStatus.CANCELLED)
    assert await orchestrator.advance(db, gate) is None


@pytest.mark.asyncio
async def test_advance_starts_next_after_completion(db, gate, full_gate):
    await register_sequence(db)
    assert await orchestrator.advance(db, gate) is None

    first = await orchestrator.start(db, gate)
    assert await orchestrator.advance(db, gate) is None

    await store.set_status(db, first.id, JobStatus.COMPLETED)
    assert await orchestrator.advance(db, full_gate) is None

    nxt = await orchestrator.advance(db, gate)
    assert nxt.payload["corpus"] == "sertanejo"


@pytest.mark.asyncio
async def test_advance_stops_after_failure(db, gate):
    await register_sequence(db)
    job = await orchestrator.start(db, gate)
    await store.set_status(db, job.id, JobStatus.ERROR, error_message="invalid api key")
    assert await orchestrator.advance(db, gate) is None


@pytest.mark.asyncio
async def test_cleanup_fails_jobs_without_progress(db, gate, settings):
    await register_sequence(db)
    now = utcnow()
    orphan = await orchestrator.start(db, gate, slug="gaucho")
    await store.set_status(db, orphan.id, JobStatus.RUNNING, now=now - timedelta(minutes=6))

    plain = await store.create_job(db, "corpus_enrichment", {"songs": SONGS}, total_units=2)
    await store.set_status(db, plain.id, JobStatus.RUNNING, now=now - timedelta(minutes=6))

    orphans = await orchestrator.cleanup_orphans(db, now=now, settings=settings)
    assert [j.id for j in orphans] == [orphan.id]
    assert orphans[0].status == "error"
    assert orphans[0].error_message == "Orphaned job: no progress for 5+ minutes"
    assert (await store.get_job(db, plain.id)).status == "running"


@pytest.mark.asyncio
async def test_cleanup_spares_recent_or_progressing_jobs(db, gate, settings):
    await register_sequence(db)
    now = utcnow()
    job = await orchestrator.start(db, gate)
    await store.set_status(db, job.id, JobStatus.RUNNING, now=now - timedelta(minutes=2))
    assert await orchestrator.cleanup_orphans(db, now=now, settings=settings) == []

    later = now + timedelta(minutes=10)
    await store.update_progress(db, job.id, 1, Checkpoint("song_index", (1,)), now=now)
    assert await orchestrator.cleanup_orphans(db, now=later, settings=settings) == []


@pytest.mark.asyncio
async def test_state_totals(db, gate):
    await register_sequence(db)
    first = await orchestrator.start(db, gate)
    await store.update_progress(db, first.id, 1, Checkpoint("song_index", (1,)), failed_delta=1)
    await store.set_status(db, first.id, JobStatus.COMPLETED)
    second = await orchestrator.start(db, gate)
    await store.update_progress(db, second.id, 1, Checkpoint("song_index", (1,)))

    state = await orchestrator.get_state(db)
    assert state.is_running
    assert state.completed == ["gaucho"]
    assert state.total_processed == 2
    assert state.total_failed == 1
    assert [c.is_active for c in state.corpora] == [False, True, False]


@pytest.mark.asyncio
async def test_sequence_survives_across_sessions(session_factory, gate):
    async with session_scope(session_factory) as db:
        await register_sequence(db)
        await orchestrator.start(db, gate)

    async with session_scope(session_factory) as db:
        state = await orchestrator.get_state(db)
    assert state.current.corpus.slug == "gaucho"
