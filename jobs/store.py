# jobs/store.py
"""
Job record store.

Every function takes the caller's AsyncSession and only flushes; the
caller owns the transaction. Writes go through a conditional UPDATE on
the row's `version`, so two writers that read the same row cannot both
win: the second one gets ConcurrentJobUpdate.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobs.checkpoint import Checkpoint
from jobs.errors import (
    CheckpointRegression,
    ConcurrentJobUpdate,
    JobClaimConflict,
    JobNotFound,
)
from jobs.types import TERMINAL_STATUSES, JobStatus
from models.base import utcnow
from models.job import Job
from models.unit_result import JobUnitResult

logger = logging.getLogger(__name__)


def is_terminal(job: Job) -> bool:
    return JobStatus(job.status) in TERMINAL_STATUSES


async def _write(db: AsyncSession, job: Job, **values: Any) -> Job:
    """Apply `values` only if nobody bumped the version since `job` was read."""
    seen = job.version
    stmt = (
        update(Job)
        .where(Job.id == job.id, Job.version == seen)
        .values(version=seen + 1, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        raise ConcurrentJobUpdate(f"Job {job.id} changed since version {seen}")
    await db.refresh(job)
    return job


async def create_job(
    db: AsyncSession,
    job_type: str,
    payload: dict,
    total_units: int = 0,
    checkpoint_kind: str = "song_index",
    restarted_from: uuid.UUID | None = None,
    corpus_id: uuid.UUID | None = None,
) -> Job:
    if total_units < 0:
        raise ValueError("total_units must be >= 0")
    job = Job(
        job_type=job_type,
        status=JobStatus.CREATED.value,
        payload=payload,
        total_units=total_units,
        processed_units=0,
        failed_units=0,
        chunks_processed=0,
        checkpoint=Checkpoint.start(checkpoint_kind).to_dict(),
        is_cancelling=False,
        is_pausing=False,
        version=1,
        restarted_from=restarted_from,
        corpus_id=corpus_id,
    )
    db.add(job)
    await db.flush()
    logger.info("Created job %s [%s] total=%d", job.id, job.job_type, total_units)
    return job


async def get_job(db: AsyncSession, job_id: uuid.UUID) -> Job:
    job = await db.get(Job, job_id, populate_existing=True)
    if job is None:
        raise JobNotFound(job_id)
    return job


async def list_jobs(
    db: AsyncSession,
    statuses: list[str] | None = None,
    job_type: str | None = None,
    limit: int = 100,
) -> list[Job]:
    stmt = select(Job).order_by(Job.created_at.desc()).limit(limit)
    if statuses:
        stmt = stmt.where(Job.status.in_(statuses))
    if job_type:
        stmt = stmt.where(Job.job_type == job_type)
    result = await db.execute(stmt.execution_options(populate_existing=True))
    return list(result.scalars().all())


async def update_progress(
    db: AsyncSession,
    job_id: uuid.UUID,
    processed_delta: int,
    new_checkpoint: Checkpoint,
    failed_delta: int = 0,
    now: datetime | None = None,
    owner: str | None = None,
) -> Job:
    """
    Advance a job's checkpoint and counters.

    Terminal jobs are left untouched. A checkpoint behind the stored one
    raises CheckpointRegression; an equal one is allowed. With `owner`
    set, the write is refused unless that worker still holds the claim.
    """
    if processed_delta < 0 or failed_delta < 0:
        raise ValueError("progress deltas must be >= 0")

    job = await get_job(db, job_id)
    if is_terminal(job):
        logger.debug("Ignoring progress on terminal job %s", job_id)
        return job
    if owner is not None and job.claimed_by != owner:
        raise JobClaimConflict(job_id, job.claimed_by)

    current = Checkpoint.from_dict(job.checkpoint)
    if new_checkpoint < current:
        raise CheckpointRegression(job_id, current, new_checkpoint)

    processed = job.processed_units + processed_delta
    total = job.total_units
    if total and processed > total:
        processed = total

    return await _write(
        db,
        job,
        processed_units=processed,
        failed_units=job.failed_units + failed_delta,
        checkpoint=new_checkpoint.to_dict(),
        last_activity_at=now or utcnow(),
    )


async def set_total_units(db: AsyncSession, job_id: uuid.UUID, total_units: int) -> Job:
    job = await get_job(db, job_id)
    if is_terminal(job) or job.total_units == total_units:
        return job
    return await _write(db, job, total_units=max(total_units, job.processed_units))


async def set_status(
    db: AsyncSession,
    job_id: uuid.UUID,
    status: JobStatus,
    error_message: str | None = None,
    now: datetime | None = None,
) -> Job:
    job = await get_job(db, job_id)
    if is_terminal(job):
        logger.debug("Job %s already %s, ignoring -> %s", job_id, job.status, status.value)
        return job

    now = now or utcnow()
    values: dict[str, Any] = {"status": status.value}
    if status == JobStatus.RUNNING and job.started_at is None:
        values["started_at"] = now
    if status == JobStatus.PAUSED:
        values["is_pausing"] = False
    if status.is_terminal:
        values["finished_at"] = now
        values["claimed_by"] = None
        values["claimed_until"] = None
    if status == JobStatus.ERROR:
        values["error_message"] = error_message
    elif error_message is not None:
        values["error_message"] = error_message

    job = await _write(db, job, **values)
    log = logger.error if status == JobStatus.ERROR else logger.info
    log("Job %s -> %s%s", job_id, status.value, f" ({error_message})" if error_message else "")
    return job


async def request_cancel(db: AsyncSession, job_id: uuid.UUID) -> Job:
    """Flag the job for cooperative cancellation; the worker acts on it."""
    job = await get_job(db, job_id)
    if is_terminal(job) or job.is_cancelling:
        return job
    if JobStatus(job.status) in (JobStatus.CREATED, JobStatus.PAUSED) and job.claimed_by is None:
        # nothing is running it, so there is no chunk boundary to wait for
        return await set_status(db, job_id, JobStatus.CANCELLED)
    logger.info("Cancellation requested for job %s", job_id)
    return await _write(db, job, is_cancelling=True)


async def request_pause(db: AsyncSession, job_id: uuid.UUID) -> Job:
    job = await get_job(db, job_id)
    if is_terminal(job) or JobStatus(job.status) == JobStatus.PAUSED:
        return job
    logger.info("Pause requested for job %s", job_id)
    return await _write(db, job, is_pausing=True)


async def resume_job(db: AsyncSession, job_id: uuid.UUID, now: datetime | None = None) -> Job:
    """Manual resume: a paused or stalled job goes back to running."""
    job = await get_job(db, job_id)
    if is_terminal(job):
        return job
    values: dict[str, Any] = {
        "status": JobStatus.RUNNING.value,
        "is_pausing": False,
        "error_message": None,
        "last_activity_at": now or utcnow(),
    }
    if job.started_at is None:
        values["started_at"] = now or utcnow()
    return await _write(db, job, **values)


async def touch_activity(db: AsyncSession, job_id: uuid.UUID, at: datetime) -> Job:
    """Set last_activity_at (usually backwards) ahead of an auto-resume."""
    job = await get_job(db, job_id)
    if is_terminal(job):
        return job
    return await _write(db, job, last_activity_at=at, error_message=None)


async def claim_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    worker_id: str,
    lease_seconds: int,
    now: datetime | None = None,
) -> Job:
    """
    Take the processing lease on a job.

    Succeeds when the lease is free, expired, or already ours. The
    UPDATE carries the lease condition itself so two racing claimers
    cannot both get rowcount 1.
    """
    now = now or utcnow()
    job = await get_job(db, job_id)
    if is_terminal(job):
        return job

    stmt = (
        update(Job)
        .where(
            Job.id == job_id,
            Job.status.notin_([s.value for s in TERMINAL_STATUSES]),
            or_(
                Job.claimed_until.is_(None),
                Job.claimed_until <= now,
                Job.claimed_by == worker_id,
            ),
        )
        .values(
            claimed_by=worker_id,
            claimed_until=now + timedelta(seconds=lease_seconds),
            version=Job.version + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        await db.refresh(job)
        raise JobClaimConflict(job_id, job.claimed_by)

    await db.refresh(job)
    logger.info("Worker %s claimed job %s until %s", worker_id, job_id, job.claimed_until)
    return job


async def renew_claim(
    db: AsyncSession,
    job_id: uuid.UUID,
    worker_id: str,
    lease_seconds: int,
    now: datetime | None = None,
) -> Job:
    now = now or utcnow()
    job = await get_job(db, job_id)
    if job.claimed_by != worker_id:
        raise JobClaimConflict(job_id, job.claimed_by)
    return await _write(db, job, claimed_until=now + timedelta(seconds=lease_seconds))


async def release_claim(db: AsyncSession, job_id: uuid.UUID, worker_id: str) -> None:
    stmt = (
        update(Job)
        .where(Job.id == job_id, Job.claimed_by == worker_id)
        .values(claimed_by=None, claimed_until=None, version=Job.version + 1)
        .execution_options(synchronize_session=False)
    )
    await db.execute(stmt)


async def finish_chunk(db: AsyncSession, job_id: uuid.UUID) -> Job:
    job = await get_job(db, job_id)
    if is_terminal(job):
        return job
    return await _write(db, job, chunks_processed=job.chunks_processed + 1)


async def restart_job(db: AsyncSession, job_id: uuid.UUID) -> Job:
    """
    Restart from zero as a fresh job with the same type and payload.

    The old row keeps its final state; if it was still live it is cancelled.
    """
    old = await get_job(db, job_id)
    if not is_terminal(old):
        await set_status(db, job_id, JobStatus.CANCELLED, error_message="Restarted from zero")
    kind = old.checkpoint["kind"]
    job = await create_job(
        db,
        old.job_type,
        dict(old.payload or {}),
        total_units=old.total_units,
        checkpoint_kind=kind,
        restarted_from=old.id,
        corpus_id=old.corpus_id,
    )
    logger.info("Job %s restarted as %s", job_id, job.id)
    return job


async def count_active_jobs(db: AsyncSession) -> int:
    stmt = select(func.count()).select_from(Job).where(Job.status == JobStatus.RUNNING.value)
    result = await db.execute(stmt)
    return int(result.scalar_one())


async def next_runnable_job_ids(
    db: AsyncSession,
    now: datetime | None = None,
    limit: int = 5,
    statuses: tuple[JobStatus, ...] = (JobStatus.RUNNING, JobStatus.CREATED),
) -> list[tuple[uuid.UUID, str]]:
    """Jobs that want a chunk and have no live lease, least recently active first."""
    now = now or utcnow()
    stmt = (
        select(Job.id, Job.status)
        .where(
            and_(
                Job.status.in_([s.value for s in statuses]),
                or_(Job.claimed_until.is_(None), Job.claimed_until <= now),
            )
        )
        .order_by(Job.last_activity_at.is_not(None), Job.last_activity_at.asc(), Job.created_at.asc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return [(row.id, row.status) for row in result.all()]


async def record_unit_result(
    db: AsyncSession,
    job_id: uuid.UUID,
    unit_key: str,
    checkpoint: Checkpoint,
    output: dict | None = None,
    error: str | None = None,
) -> JobUnitResult:
    """Upsert so that reprocessing a unit after a resume overwrites instead of duplicating."""
    stmt = select(JobUnitResult).where(
        JobUnitResult.job_id == job_id, JobUnitResult.unit_key == unit_key
    )
    result = await db.execute(stmt)
    row = result.scalar_one_or_none()
    if row is None:
        row = JobUnitResult(job_id=job_id, unit_key=unit_key)
        db.add(row)
    row.checkpoint = checkpoint.to_dict()
    row.output = output
    row.error = error
    await db.flush()
    return row


async def list_unit_results(db: AsyncSession, job_id: uuid.UUID) -> list[JobUnitResult]:
    stmt = (
        select(JobUnitResult)
        .where(JobUnitResult.job_id == job_id)
        .order_by(JobUnitResult.created_at.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
