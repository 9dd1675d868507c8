# models/unit_result.py
from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin, UUIDPrimaryKey
from models.job import JSONType


class JobUnitResult(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "job_unit_results"
    __table_args__ = (UniqueConstraint("job_id", "unit_key", name="uq_job_unit_results_unit"),)

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("processing_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    unit_key: Mapped[str] = mapped_column(String(255), nullable=False)
    checkpoint: Mapped[dict] = mapped_column(JSONType, nullable=False)
    output: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
