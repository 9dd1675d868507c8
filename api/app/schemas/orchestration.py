# api/app/schemas/orchestration.py
from __future__ import annotations

import uuid

from pydantic import BaseModel, Field

from api.app.schemas.jobs import JobResponse


class CorpusUpsert(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    songs: list[dict] = Field(default_factory=list)
    position: int | None = None


class CorpusResponse(BaseModel):
    id: uuid.UUID
    slug: str
    name: str
    position: int
    song_count: int


class CorpusProgressResponse(BaseModel):
    slug: str
    name: str
    position: int
    song_count: int
    is_completed: bool
    is_active: bool
    processed_units: int
    failed_units: int
    job_id: uuid.UUID | None = None
    job_status: str | None = None


class OrchestrationStatusResponse(BaseModel):
    is_running: bool
    current_corpus: str | None = None
    current_job: JobResponse | None = None
    completed: list[str]
    total_processed: int
    total_failed: int
    corpora: list[CorpusProgressResponse]


class OrchestrationStart(BaseModel):
    corpus: str | None = None


class SkipResponse(BaseModel):
    skipped: JobResponse
    started: JobResponse | None = None


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
