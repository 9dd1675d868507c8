# api/app/routes/jobs.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.app.config import get_settings
from api.app.dependencies import get_chunk_session_factory, get_gate, get_session, get_worker_id
from api.app.schemas.jobs import (
    ChunkRequest,
    ChunkResultResponse,
    CheckpointModel,
    EventResponse,
    HeartbeatRequest,
    JobCreate,
    JobResponse,
)
from db.session import session_scope
from jobs import store
from jobs.checkpoint import Checkpoint
from jobs.chunk import run_chunk
from jobs.errors import (
    AdmissionRejected,
    CheckpointKindMismatch,
    CheckpointRegression,
    ConcurrentJobUpdate,
    JobClaimConflict,
    JobNotFound,
    SystemicJobError,
)
from jobs.gate import ConcurrencyGate
from jobs.handlers import get_handler
from jobs.types import JobStatus
from models.base import utcnow
from services.observability import list_job_events, log_event

router = APIRouter(tags=["jobs"])

RETRY_AFTER_BASE_SECONDS = 30

# a job in one of these states takes a new slot once it runs
STARTING_STATUSES = (JobStatus.CREATED.value, JobStatus.PAUSED.value)


async def _load(db: AsyncSession, job_id: uuid.UUID):
    try:
        return await store.get_job(db, job_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


def too_busy(exc: AdmissionRejected) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=exc.reason,
        headers={"Retry-After": str(RETRY_AFTER_BASE_SECONDS * exc.delay_multiplier)},
    )


async def _admit(gate: ConcurrencyGate) -> None:
    try:
        await gate.require_slot()
    except AdmissionRejected as exc:
        raise too_busy(exc) from exc


@router.post("/jobs", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
    body: JobCreate,
    db: AsyncSession = Depends(get_session),
    gate: ConcurrencyGate = Depends(get_gate),
):
    """Create a job if the gate admits one more; 429 tells the caller to come back later."""
    await _admit(gate)

    try:
        handler = get_handler(body.job_type.value)
        total = handler.count_units(body.payload)
    except SystemicJobError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    job = await store.create_job(
        db,
        body.job_type.value,
        body.payload,
        total_units=total,
        checkpoint_kind=handler.checkpoint_kind,
    )
    await log_event(db, "job_created", "info", source="api", job_id=job.id, metadata={
        "job_type": job.job_type,
        "total_units": total,
    })
    return JobResponse.model_validate(job)


@router.get("/jobs", response_model=list[JobResponse])
async def list_jobs(
    status_filter: list[str] | None = Query(None, alias="status"),
    job_type: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_session),
):
    jobs = await store.list_jobs(db, statuses=status_filter, job_type=job_type, limit=limit)
    return [JobResponse.model_validate(j) for j in jobs]


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: uuid.UUID, db: AsyncSession = Depends(get_session)):
    return JobResponse.model_validate(await _load(db, job_id))


@router.post("/jobs/{job_id}/chunks", response_model=ChunkResultResponse)
async def process_chunk(
    job_id: uuid.UUID,
    body: ChunkRequest | None = None,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_chunk_session_factory),
    worker_id: str = Depends(get_worker_id),
    gate: ConcurrencyGate = Depends(get_gate),
):
    """Run one bounded chunk of the job, optionally from an explicit checkpoint.

    A chunk on a created or paused job starts it, so it needs a slot from the gate.
    """
    async with session_scope(session_factory) as db:
        job = await _load(db, job_id)
    if job.status in STARTING_STATUSES:
        await _admit(gate)

    continue_from = None
    try:
        if body is not None and body.continue_from is not None:
            continue_from = Checkpoint(body.continue_from.kind, tuple(body.continue_from.position))
        result = await run_chunk(
            session_factory,
            job_id,
            worker_id,
            continue_from=continue_from,
            settings=get_settings(),
        )
    except JobNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (CheckpointKindMismatch, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except (ConcurrentJobUpdate, CheckpointRegression, JobClaimConflict) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return ChunkResultResponse(
        job_id=result.job_id,
        status=result.status,
        processed=result.processed,
        failed=result.failed,
        next_checkpoint=CheckpointModel(**result.next_checkpoint.to_dict()),
        claimed=result.claimed,
    )


@router.post("/jobs/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: uuid.UUID, db: AsyncSession = Depends(get_session)):
    await _load(db, job_id)
    try:
        job = await store.request_cancel(db, job_id)
    except ConcurrentJobUpdate as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    await log_event(db, "job_cancel_requested", "info", source="api", job_id=job_id)
    return JobResponse.model_validate(job)


@router.post("/jobs/{job_id}/pause", response_model=JobResponse)
async def pause_job(job_id: uuid.UUID, db: AsyncSession = Depends(get_session)):
    await _load(db, job_id)
    try:
        job = await store.request_pause(db, job_id)
    except ConcurrentJobUpdate as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return JobResponse.model_validate(job)


@router.post("/jobs/{job_id}/resume", response_model=JobResponse)
async def resume_job(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    gate: ConcurrencyGate = Depends(get_gate),
):
    """Manual resume; the worker picks the job up on its next pass."""
    job = await _load(db, job_id)
    if job.status in STARTING_STATUSES:
        await _admit(gate)
    try:
        job = await store.resume_job(db, job_id)
    except ConcurrentJobUpdate as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    await log_event(db, "job_resumed", "info", source="api", job_id=job_id, metadata={"manual": True})
    return JobResponse.model_validate(job)


@router.post("/jobs/{job_id}/heartbeat", response_model=JobResponse)
async def heartbeat_job(
    job_id: uuid.UUID,
    body: HeartbeatRequest | None = None,
    db: AsyncSession = Depends(get_session),
):
    """Set last_activity_at, which the auto-resume client backdates before resuming."""
    await _load(db, job_id)
    at = body.at if body is not None and body.at is not None else utcnow()
    try:
        job = await store.touch_activity(db, job_id, at)
    except ConcurrentJobUpdate as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    await log_event(db, "job_resume_attempt", "info", source="api", job_id=job.id, metadata={
        "checkpoint": job.checkpoint,
    })
    return JobResponse.model_validate(job)


@router.post("/jobs/{job_id}/restart", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def restart_job(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    gate: ConcurrencyGate = Depends(get_gate),
):
    await _load(db, job_id)
    await _admit(gate)
    job = await store.restart_job(db, job_id)
    await log_event(db, "job_restarted", "info", source="api", job_id=job.id, metadata={
        "restarted_from": str(job_id),
    })
    return JobResponse.model_validate(job)


@router.get("/jobs/{job_id}/events", response_model=list[EventResponse])
async def job_events(
    job_id: uuid.UUID,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_session),
):
    await _load(db, job_id)
    events = await list_job_events(db, job_id, limit=limit)
    return [EventResponse.model_validate(e) for e in events]
