# jobs/chunk.py
"""
One worker invocation: claim a job, process a bounded chunk of units
from its checkpoint, persist progress unit by unit, settle the status,
release the claim.

Nothing is kept between invocations. A crashed chunk leaves a
checkpoint and an expiring lease behind, and the next invocation picks
up from there (units after the checkpoint may be processed twice).
"""
from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.app.config import Settings, get_settings
from db.session import session_scope
from jobs import store
from jobs.checkpoint import Checkpoint
from jobs.errors import CheckpointRegression, ConcurrentJobUpdate, JobClaimConflict, SystemicJobError
from jobs.handlers import WorkUnit, get_handler
from jobs.types import JobStatus
from models.base import utcnow
from models.job import Job
from services.observability import log_event

logger = logging.getLogger(__name__)

WRITE_RETRIES = 3


class CancelToken:
    """Cooperative cancellation, checked before every unit."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class ChunkResult:
    job_id: uuid.UUID
    status: str
    processed: int
    failed: int
    next_checkpoint: Checkpoint
    claimed: bool = True

    @classmethod
    def from_job(cls, job: Job, processed: int = 0, failed: int = 0, claimed: bool = True) -> ChunkResult:
        return cls(
            job_id=job.id,
            status=job.status,
            processed=processed,
            failed=failed,
            next_checkpoint=Checkpoint.from_dict(job.checkpoint),
            claimed=claimed,
        )


class _LostClaim(Exception):
    pass


async def run_chunk(
    session_factory: async_sessionmaker[AsyncSession] | None,
    job_id: uuid.UUID,
    worker_id: str,
    continue_from: Checkpoint | None = None,
    cancel_token: CancelToken | None = None,
    settings: Settings | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> ChunkResult:
    settings = settings or get_settings()

    async with session_scope(session_factory) as db:
        try:
            await store.claim_job(db, job_id, worker_id, settings.claim_lease_seconds, now=clock())
        except JobClaimConflict as exc:
            logger.info("Skipping chunk for job %s: %s", job_id, exc)
            job = await store.get_job(db, job_id)
            return ChunkResult.from_job(job, claimed=False)

    try:
        return await _process_chunk(
            session_factory,
            job_id,
            worker_id,
            continue_from,
            cancel_token or CancelToken(),
            settings,
            clock,
        )
    finally:
        async with session_scope(session_factory) as db:
            await store.release_claim(db, job_id, worker_id)


async def _process_chunk(
    session_factory: async_sessionmaker[AsyncSession] | None,
    job_id: uuid.UUID,
    worker_id: str,
    continue_from: Checkpoint | None,
    token: CancelToken,
    settings: Settings,
    clock: Callable[[], datetime],
) -> ChunkResult:
    async with session_scope(session_factory) as db:
        job = await store.get_job(db, job_id)
        if store.is_terminal(job):
            return ChunkResult.from_job(job)

        if job.is_cancelling:
            job = await store.set_status(db, job_id, JobStatus.CANCELLED, now=clock())
            await log_event(db, "job_cancelled", "info", source="worker", job_id=job_id)
            return ChunkResult.from_job(job)

        try:
            handler = get_handler(job.job_type)
            if not job.total_units:
                job = await store.set_total_units(db, job_id, handler.count_units(job.payload))
        except SystemicJobError as exc:
            job = await _fail(db, job_id, str(exc), clock)
            return ChunkResult.from_job(job)

        stored = Checkpoint.from_dict(job.checkpoint)
        start = stored
        if continue_from is not None and continue_from > stored:
            # caller skipped ahead; never rewind
            start = continue_from
            job = await store.update_progress(db, job_id, 0, start, now=clock())

        if JobStatus(job.status) in (JobStatus.CREATED, JobStatus.PAUSED):
            job = await store.set_status(db, job_id, JobStatus.RUNNING, now=clock())

        payload = dict(job.payload or {})

    logger.info("Job %s: chunk from %s (worker %s)", job_id, start, worker_id)

    processed = failed = 0
    error_message: str | None = None
    lost_claim = False
    started = time.monotonic()
    units = handler.iter_units(payload, start)

    unit, error_message = _next_unit(units)
    while unit is not None:
        if token.cancelled:
            logger.info("Job %s: cancelled at %s", job_id, unit.position)
            break
        if processed + failed >= settings.chunk_size:
            break
        if time.monotonic() - started > settings.chunk_timeout_seconds:
            logger.warning("Job %s: chunk time budget spent after %d units", job_id, processed + failed)
            break

        try:
            output = await handler.process(unit)
        except SystemicJobError as exc:
            error_message = str(exc)
            break
        except Exception as exc:
            failed += 1
            logger.warning("Job %s: unit %s failed: %s", job_id, unit.key, exc)
            try:
                await _persist_unit(session_factory, job_id, worker_id, unit, None, str(exc), token, settings, clock)
            except _LostClaim:
                lost_claim = True
                break
            if failed > settings.unit_failure_threshold:
                error_message = (
                    f"{failed} unit failures in one chunk "
                    f"(threshold {settings.unit_failure_threshold}); last: {exc}"
                )
                break
        else:
            processed += 1
            try:
                await _persist_unit(session_factory, job_id, worker_id, unit, output, None, token, settings, clock)
            except _LostClaim:
                lost_claim = True
                break

        unit, error_message = _next_unit(units)

    exhausted = unit is None and error_message is None and not lost_claim

    async with session_scope(session_factory) as db:
        job = await store.get_job(db, job_id)
        if lost_claim or store.is_terminal(job):
            return ChunkResult.from_job(job, processed, failed, claimed=not lost_claim)

        job = await store.finish_chunk(db, job_id)
        if failed and error_message is None:
            await log_event(db, "chunk_units_failed", "warning", source="worker", job_id=job_id, metadata={
                "failed": failed,
                "checkpoint": job.checkpoint,
            })
        if error_message is not None:
            job = await _fail(db, job_id, error_message, clock)
        elif exhausted:
            job = await store.set_status(db, job_id, JobStatus.COMPLETED, now=clock())
            await log_event(db, "job_completed", "info", source="worker", job_id=job_id, metadata={
                "processed_units": job.processed_units,
                "failed_units": job.failed_units,
            })
        elif token.cancelled or job.is_cancelling:
            job = await store.set_status(db, job_id, JobStatus.CANCELLED, now=clock())
        elif job.is_pausing:
            job = await store.set_status(db, job_id, JobStatus.PAUSED, now=clock())

    logger.info(
        "Job %s: chunk done processed=%d failed=%d next=%s status=%s",
        job_id,
        processed,
        failed,
        job.checkpoint,
        job.status,
    )
    return ChunkResult.from_job(job, processed, failed)


def _next_unit(units: Iterator[WorkUnit]) -> tuple[WorkUnit | None, str | None]:
    """Advance the unit iterator. A payload the handler cannot walk fails the job."""
    try:
        return next(units, None), None
    except SystemicJobError as exc:
        return None, str(exc)
    except (TypeError, ValueError, KeyError) as exc:
        return None, f"Malformed payload: {exc}"


async def _persist_unit(
    session_factory: async_sessionmaker[AsyncSession] | None,
    job_id: uuid.UUID,
    worker_id: str,
    unit: WorkUnit,
    output: dict | None,
    error: str | None,
    token: CancelToken,
    settings: Settings,
    clock: Callable[[], datetime],
) -> None:
    """Write one unit's result and move the checkpoint past it."""
    for attempt in range(1, WRITE_RETRIES + 1):
        try:
            async with session_scope(session_factory) as db:
                await store.record_unit_result(db, job_id, unit.key, unit.position, output=output, error=error)
                now = clock()
                job = await store.update_progress(
                    db,
                    job_id,
                    processed_delta=0 if error else 1,
                    new_checkpoint=unit.next_position,
                    failed_delta=1 if error else 0,
                    now=now,
                    owner=worker_id,
                )
                if store.is_terminal(job):
                    token.cancel()
                    return
                if job.is_cancelling:
                    token.cancel()
                lease_left = (job.claimed_until or now) - now
                if lease_left < timedelta(seconds=settings.claim_lease_seconds / 2):
                    await store.renew_claim(db, job_id, worker_id, settings.claim_lease_seconds, now=now)
            return
        except ConcurrentJobUpdate:
            if attempt == WRITE_RETRIES:
                raise
            logger.debug("Job %s: concurrent update, retrying (%d)", job_id, attempt)
        except (JobClaimConflict, CheckpointRegression) as exc:
            logger.warning("Job %s: worker %s lost the job: %s", job_id, worker_id, exc)
            raise _LostClaim() from exc


async def _fail(db: AsyncSession, job_id: uuid.UUID, message: str, clock: Callable[[], datetime]) -> Job:
    job = await store.set_status(db, job_id, JobStatus.ERROR, error_message=message, now=clock())
    await log_event(db, "job_failed", "error", source="worker", message=message, job_id=job_id, metadata={
        "job_type": job.job_type,
    })
    return job
