# models/job.py
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKey

JSONType = JSON().with_variant(JSONB, "postgresql")


class Job(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "processing_jobs"

    job_type: Mapped[str] = mapped_column(String(64), nullable=False)

    # created | running | paused | completed | error | cancelled
    status: Mapped[str] = mapped_column(String(32), default="created", index=True)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict)

    total_units: Mapped[int] = mapped_column(Integer, default=0)
    processed_units: Mapped[int] = mapped_column(Integer, default=0)
    failed_units: Mapped[int] = mapped_column(Integer, default=0)
    chunks_processed: Mapped[int] = mapped_column(Integer, default=0)

    # {"kind": "song_word", "position": [song, word]}
    checkpoint: Mapped[dict] = mapped_column(JSONType, nullable=False)
    last_activity_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_cancelling: Mapped[bool] = mapped_column(Boolean, default=False)
    is_pausing: Mapped[bool] = mapped_column(Boolean, default=False)

    # bumped on every write; conditional updates compare against it
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    claimed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    claimed_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    restarted_from: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # set on jobs started by the corpus orchestrator
    corpus_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
