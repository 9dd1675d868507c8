# services/observability.py
"""
Job event log.

Lifecycle events (created, cancel requested, units failed, failed,
completed, resume attempted) are written to the events table next to
the job they describe, so a job's history can be read back in order
without scanning logs. Each event is mirrored to the module logger.
"""
from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.event import Event

logger = logging.getLogger(__name__)

LEVELS = ("debug", "info", "warning", "error")


async def log_event(
    db: AsyncSession,
    event_type: str,
    level: str = "info",
    source: str | None = None,
    message: str | None = None,
    job_id: uuid.UUID | None = None,
    metadata: dict | None = None,
) -> Event:
    if level not in LEVELS:
        raise ValueError(f"Unknown event level: {level}")
    event = Event(
        event_type=event_type,
        level=level,
        source=source,
        message=message,
        job_id=job_id,
        metadata_=metadata,
    )
    db.add(event)
    await db.flush()
    logger.log(
        logging.getLevelName(level.upper()),
        "job=%s %s%s %s",
        job_id or "-",
        event_type,
        f" ({message})" if message else "",
        metadata or {},
    )
    return event


async def list_job_events(db: AsyncSession, job_id: uuid.UUID, limit: int = 100) -> list[Event]:
    """Events for one job, oldest first."""
    stmt = (
        select(Event)
        .where(Event.job_id == job_id)
        .order_by(Event.created_at.asc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
