# api/app/routes/orchestration.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.app.config import get_settings
from api.app.dependencies import get_gate, get_session
from api.app.routes.jobs import too_busy
from api.app.schemas.jobs import JobResponse
from api.app.schemas.orchestration import (
    CorpusProgressResponse,
    CorpusResponse,
    CorpusUpsert,
    JobListResponse,
    OrchestrationStart,
    OrchestrationStatusResponse,
    SkipResponse,
)
from jobs import orchestrator
from jobs.errors import (
    AdmissionRejected,
    CorpusNotFound,
    NothingToRun,
    OrchestrationConflict,
    SystemicJobError,
)
from jobs.gate import ConcurrencyGate
from models.corpus import Corpus

router = APIRouter(tags=["orchestration"])


def _corpus(corpus: Corpus) -> CorpusResponse:
    return CorpusResponse(
        id=corpus.id,
        slug=corpus.slug,
        name=corpus.name,
        position=corpus.position,
        song_count=len(corpus.songs or []),
    )


@router.put("/corpora/{slug}", response_model=CorpusResponse)
async def put_corpus(
    body: CorpusUpsert,
    slug: str = Path(..., min_length=1, max_length=64),
    db: AsyncSession = Depends(get_session),
):
    try:
        corpus = await orchestrator.register_corpus(db, slug, body.name, body.songs, body.position)
    except SystemicJobError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return _corpus(corpus)


@router.get("/corpora", response_model=list[CorpusResponse])
async def list_corpora(db: AsyncSession = Depends(get_session)):
    return [_corpus(c) for c in await orchestrator.list_corpora(db)]


@router.get("/orchestration", response_model=OrchestrationStatusResponse)
async def orchestration_status(db: AsyncSession = Depends(get_session)):
    """Per-corpus progress of the enrichment sequence."""
    await orchestrator.cleanup_orphans(db, settings=get_settings())
    state = await orchestrator.get_state(db)
    current = state.current
    return OrchestrationStatusResponse(
        is_running=state.is_running,
        current_corpus=current.corpus.slug if current else None,
        current_job=JobResponse.model_validate(current.job) if current else None,
        completed=state.completed,
        total_processed=state.total_processed,
        total_failed=state.total_failed,
        corpora=[
            CorpusProgressResponse(
                slug=c.corpus.slug,
                name=c.corpus.name,
                position=c.corpus.position,
                song_count=len(c.corpus.songs or []),
                is_completed=c.is_completed,
                is_active=c.is_active,
                processed_units=c.processed_units,
                failed_units=c.failed_units,
                job_id=c.job.id if c.job else None,
                job_status=c.job.status if c.job else None,
            )
            for c in state.corpora
        ],
    )


@router.post("/orchestration/start", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def start_orchestration(
    body: OrchestrationStart | None = None,
    db: AsyncSession = Depends(get_session),
    gate: ConcurrencyGate = Depends(get_gate),
):
    """Start the given corpus, or the next one in sequence that is not enriched yet."""
    slug = body.corpus if body is not None else None
    try:
        job = await orchestrator.start(db, gate, slug=slug, settings=get_settings())
    except AdmissionRejected as exc:
        raise too_busy(exc) from exc
    except OrchestrationConflict as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except CorpusNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except NothingToRun as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return JobResponse.model_validate(job)


@router.post("/orchestration/skip", response_model=SkipResponse)
async def skip_corpus(db: AsyncSession = Depends(get_session)):
    try:
        skipped, started = await orchestrator.skip(db, settings=get_settings())
    except NothingToRun as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return SkipResponse(
        skipped=JobResponse.model_validate(skipped),
        started=JobResponse.model_validate(started) if started else None,
    )


@router.post("/orchestration/stop", response_model=JobListResponse)
async def stop_orchestration(db: AsyncSession = Depends(get_session)):
    stopped = await orchestrator.stop(db, settings=get_settings())
    return JobListResponse(jobs=[JobResponse.model_validate(j) for j in stopped])


@router.post("/orchestration/cleanup", response_model=JobListResponse)
async def cleanup_orphans(db: AsyncSession = Depends(get_session)):
    orphans = await orchestrator.cleanup_orphans(db, settings=get_settings())
    return JobListResponse(jobs=[JobResponse.model_validate(j) for j in orphans])
