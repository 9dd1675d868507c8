# api/app/schemas/jobs.py
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from jobs.types import JobType


class CheckpointModel(BaseModel):
    kind: str
    position: list[int]


class JobCreate(BaseModel):
    job_type: JobType
    payload: dict = Field(default_factory=dict)


class JobResponse(BaseModel):
    id: uuid.UUID
    job_type: str
    status: str
    payload: dict
    total_units: int
    processed_units: int
    failed_units: int
    chunks_processed: int
    checkpoint: dict
    last_activity_at: datetime | None = None
    error_message: str | None = None
    is_cancelling: bool
    is_pausing: bool
    version: int
    claimed_by: str | None = None
    claimed_until: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    restarted_from: uuid.UUID | None = None
    corpus_id: uuid.UUID | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ChunkRequest(BaseModel):
    continue_from: CheckpointModel | None = None


class ChunkResultResponse(BaseModel):
    job_id: uuid.UUID
    status: str
    processed: int
    failed: int
    next_checkpoint: CheckpointModel
    claimed: bool


class HeartbeatRequest(BaseModel):
    at: datetime | None = None


class BackpressureResponse(BaseModel):
    allowed: bool
    reason: str | None = None
    delay_multiplier: int
    status: str
    active_job_count: int
    max_concurrent_jobs: int
    cooldown_active: bool


class EventResponse(BaseModel):
    id: uuid.UUID
    event_type: str
    level: str
    source: str | None = None
    message: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True
