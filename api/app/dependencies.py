# api/app/dependencies.py
from __future__ import annotations

import platform
import uuid
from collections.abc import AsyncGenerator
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.session import get_db, get_session_factory
from jobs.gate import ConcurrencyGate, StoreHealthSource
from services.backpressure import BackpressureMonitor

API_WORKER_ID = f"api-{platform.node()}-{uuid.uuid4().hex[:8]}"


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_db():
        yield session


def get_chunk_session_factory() -> async_sessionmaker[AsyncSession]:
    """Chunk runs open their own short transactions instead of sharing the request's."""
    return get_session_factory()


@lru_cache
def get_backpressure_monitor() -> BackpressureMonitor:
    return BackpressureMonitor()


def get_gate() -> ConcurrencyGate:
    return ConcurrencyGate(StoreHealthSource(get_backpressure_monitor()))


def get_worker_id() -> str:
    return API_WORKER_ID
