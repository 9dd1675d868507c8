# jobs/orchestrator.py
"""
Corpus orchestration: enrich the registered corpora one after another.

At most one corpus job is active at a time. The sequence is the
``corpora`` table ordered by ``position``. Which corpus is done, which
one is running and the running totals are all read back from the jobs,
so the orchestrator keeps no state of its own and every call starts by
failing corpus jobs that never made progress.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.app.config import Settings, get_settings
from jobs import store
from jobs.errors import CorpusNotFound, NothingToRun, OrchestrationConflict
from jobs.gate import ConcurrencyGate
from jobs.handlers import get_handler
from jobs.types import ACTIVE_STATUSES, JobStatus, JobType
from models.base import utcnow
from models.corpus import Corpus
from models.job import Job
from services.observability import log_event

logger = logging.getLogger(__name__)

ACTIVE = frozenset(s.value for s in ACTIVE_STATUSES)


@dataclass
class CorpusProgress:
    corpus: Corpus
    # most recent job for the corpus
    job: Job | None = None
    is_completed: bool = False

    @property
    def is_active(self) -> bool:
        return self.job is not None and self.job.status in ACTIVE

    @property
    def processed_units(self) -> int:
        return self.job.processed_units if self.job else 0

    @property
    def failed_units(self) -> int:
        return self.job.failed_units if self.job else 0


@dataclass
class OrchestrationState:
    corpora: list[CorpusProgress] = field(default_factory=list)

    @property
    def current(self) -> CorpusProgress | None:
        return next((c for c in self.corpora if c.is_active), None)

    @property
    def is_running(self) -> bool:
        return self.current is not None

    @property
    def completed(self) -> list[str]:
        return [c.corpus.slug for c in self.corpora if c.is_completed]

    @property
    def total_processed(self) -> int:
        return sum(c.processed_units for c in self.corpora)

    @property
    def total_failed(self) -> int:
        return sum(c.failed_units for c in self.corpora)

    def find(self, slug: str) -> CorpusProgress:
        for c in self.corpora:
            if c.corpus.slug == slug:
                return c
        raise CorpusNotFound(slug)

    def latest(self) -> CorpusProgress | None:
        started = [c for c in self.corpora if c.job is not None]
        return max(started, key=lambda c: c.job.created_at, default=None)

    def next_after(self, slug: str | None = None) -> CorpusProgress | None:
        """First corpus not yet enriched, looking only past `slug` when given."""
        candidates = self.corpora
        if slug is not None:
            index = [c.corpus.slug for c in self.corpora].index(slug)
            candidates = self.corpora[index + 1:]
        return next((c for c in candidates if not c.is_completed and not c.is_active), None)


# ─────────────────────────────────────────────
# corpora
# ─────────────────────────────────────────────

async def register_corpus(
    db: AsyncSession,
    slug: str,
    name: str,
    songs: list[dict],
    position: int | None = None,
) -> Corpus:
    """Create or replace a corpus. A new corpus without a position goes last."""
    get_handler(JobType.CORPUS_ENRICHMENT.value).count_units({"songs": songs})

    result = await db.execute(select(Corpus).where(Corpus.slug == slug))
    corpus = result.scalar_one_or_none()
    if corpus is None:
        if position is None:
            top = (await db.execute(select(func.max(Corpus.position)))).scalar_one_or_none()
            position = 0 if top is None else top + 1
        corpus = Corpus(slug=slug, name=name, position=position, songs=songs)
        db.add(corpus)
    else:
        corpus.name = name
        corpus.songs = songs
        if position is not None:
            corpus.position = position
    await db.flush()
    logger.info("Registered corpus %s (%d songs, position %d)", slug, len(songs), corpus.position)
    return corpus


async def list_corpora(db: AsyncSession) -> list[Corpus]:
    result = await db.execute(select(Corpus).order_by(Corpus.position.asc(), Corpus.slug.asc()))
    return list(result.scalars().all())


# ─────────────────────────────────────────────
# state
# ─────────────────────────────────────────────

async def get_state(db: AsyncSession) -> OrchestrationState:
    corpora = await list_corpora(db)
    stmt = (
        select(Job)
        .where(Job.corpus_id.is_not(None))
        .order_by(Job.created_at.desc())
        .execution_options(populate_existing=True)
    )
    jobs = list((await db.execute(stmt)).scalars().all())

    state = OrchestrationState()
    for corpus in corpora:
        mine = [j for j in jobs if j.corpus_id == corpus.id]
        state.corpora.append(CorpusProgress(
            corpus=corpus,
            job=mine[0] if mine else None,
            is_completed=any(j.status == JobStatus.COMPLETED.value for j in mine),
        ))
    return state


async def cleanup_orphans(
    db: AsyncSession,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> list[Job]:
    """Fail running corpus jobs that started too long ago and never finished a unit."""
    settings = settings or get_settings()
    now = now or utcnow()
    threshold = now - timedelta(minutes=settings.orphan_timeout_minutes)
    stmt = select(Job.id).where(
        Job.corpus_id.is_not(None),
        Job.status == JobStatus.RUNNING.value,
        Job.processed_units == 0,
        Job.failed_units == 0,
        Job.started_at < threshold,
    )
    orphan_ids = list((await db.execute(stmt)).scalars().all())

    message = f"Orphaned job: no progress for {settings.orphan_timeout_minutes:g}+ minutes"
    orphans = []
    for job_id in orphan_ids:
        job = await store.set_status(db, job_id, JobStatus.ERROR, error_message=message, now=now)
        await log_event(db, "job_orphaned", "warning", source="orchestrator", message=message, job_id=job_id)
        orphans.append(job)
    if orphans:
        logger.warning("Marked %d orphaned corpus job(s) as error", len(orphans))
    return orphans


# ─────────────────────────────────────────────
# actions
# ─────────────────────────────────────────────

async def _launch(db: AsyncSession, corpus: Corpus, trigger: str) -> Job:
    handler = get_handler(JobType.CORPUS_ENRICHMENT.value)
    payload = {"corpus": corpus.slug, "songs": list(corpus.songs or [])}
    job = await store.create_job(
        db,
        JobType.CORPUS_ENRICHMENT.value,
        payload,
        total_units=handler.count_units(payload),
        checkpoint_kind=handler.checkpoint_kind,
        corpus_id=corpus.id,
    )
    await log_event(db, "corpus_started", "info", source="orchestrator", job_id=job.id, metadata={
        "corpus": corpus.slug,
        "trigger": trigger,
        "total_units": job.total_units,
    })
    logger.info("Corpus %s: started job %s (%s)", corpus.slug, job.id, trigger)
    return job


async def start(
    db: AsyncSession,
    gate: ConcurrencyGate,
    slug: str | None = None,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> Job:
    """Start `slug`, or the next corpus in sequence that is not enriched yet."""
    await cleanup_orphans(db, now, settings)
    state = await get_state(db)

    current = state.current
    if current is not None:
        raise OrchestrationConflict(
            f"Corpus {current.corpus.slug!r} is already being enriched (job {current.job.id})"
        )

    if slug is not None:
        target = state.find(slug)
    else:
        target = state.next_after()
        if target is None:
            raise NothingToRun("All corpora are enriched")

    await gate.require_slot()
    return await _launch(db, target.corpus, "start")


async def skip(
    db: AsyncSession,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> tuple[Job, Job | None]:
    """
    Cancel the active corpus job and start the next corpus after it.

    The skipped job hands its slot straight to the next one, so the gate
    is not consulted. Returns (skipped job, started job or None at the end).
    """
    await cleanup_orphans(db, now, settings)
    state = await get_state(db)

    current = state.current
    if current is None:
        raise NothingToRun("No active corpus job to skip")

    skipped = await store.set_status(
        db, current.job.id, JobStatus.CANCELLED, error_message="Skipped by orchestrator", now=now
    )
    await log_event(db, "corpus_skipped", "info", source="orchestrator", job_id=skipped.id, metadata={
        "corpus": current.corpus.slug,
        "processed_units": skipped.processed_units,
    })

    following = state.next_after(current.corpus.slug)
    started = await _launch(db, following.corpus, "skip") if following else None
    return skipped, started


async def stop(
    db: AsyncSession,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> list[Job]:
    """Ask every active corpus job to cancel. Nothing new is started afterwards."""
    await cleanup_orphans(db, now, settings)
    stmt = select(Job.id).where(Job.corpus_id.is_not(None), Job.status.in_(ACTIVE))
    stopped = []
    for job_id in (await db.execute(stmt)).scalars().all():
        job = await store.request_cancel(db, job_id)
        await log_event(db, "corpus_stopped", "info", source="orchestrator", job_id=job_id)
        stopped.append(job)
    logger.info("Stop requested for %d corpus job(s)", len(stopped))
    return stopped


async def advance(
    db: AsyncSession,
    gate: ConcurrencyGate,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> Job | None:
    """
    Start the next corpus once the most recent corpus job has completed.

    A stopped, skipped-to-the-end or failed sequence stays put. Waits for
    the gate like any other job start.
    """
    await cleanup_orphans(db, now, settings)
    state = await get_state(db)
    if state.is_running:
        return None

    latest = state.latest()
    if latest is None or latest.job.status != JobStatus.COMPLETED.value:
        return None

    following = state.next_after(latest.corpus.slug)
    if following is None:
        return None
    if not await gate.check_can_start_job():
        logger.info("Corpus %s waits for a free slot", following.corpus.slug)
        return None
    return await _launch(db, following.corpus, "advance")
