# api/app/routes/health.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from api.app.dependencies import get_gate
from api.app.schemas.jobs import BackpressureResponse
from jobs.gate import ConcurrencyGate

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    return {"status": "ok", "service": "corpus-jobs-api"}


@router.get("/v1/health/backpressure", response_model=BackpressureResponse)
async def backpressure(gate: ConcurrencyGate = Depends(get_gate)):
    admission = await gate.admission()
    snap = admission.snapshot
    return BackpressureResponse(
        allowed=admission.allowed,
        reason=admission.reason,
        delay_multiplier=admission.delay_multiplier,
        status=snap.status.value,
        active_job_count=snap.active_job_count,
        max_concurrent_jobs=snap.max_concurrent_jobs,
        cooldown_active=snap.cooldown_active,
    )
