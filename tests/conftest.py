# tests/conftest.py
from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.app.config import Settings
from db.session import session_scope
from jobs import store
from models import Base
from tests.factories import make_songs


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        openai_api_key="test-key",
        chunk_size=50,
        chunk_timeout_seconds=240,
        unit_failure_threshold=10,
        claim_lease_seconds=270,
        max_concurrent_jobs=5,
        resume_state_path="/tmp/corpus-jobs-test/auto-resume.json",
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_scope(session_factory) as session:
        yield session


@pytest.fixture
def create_job(session_factory):
    """Create and commit a job; returns its id."""

    async def _create(payload: dict | None = None, job_type: str = "semantic_annotation", **kwargs):
        from jobs.handlers import get_handler

        handler = get_handler(job_type)
        payload = payload if payload is not None else make_songs(100)
        async with session_scope(session_factory) as session:
            job = await store.create_job(
                session,
                job_type,
                payload,
                total_units=handler.count_units(payload),
                checkpoint_kind=handler.checkpoint_kind,
                **kwargs,
            )
            return job.id

    return _create
