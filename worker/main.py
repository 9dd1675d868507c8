# worker/main.py
"""
Background worker: keeps running jobs moving one chunk at a time.

Each pass picks the least recently active jobs whose lease is free and
runs a single chunk for each. Jobs that have not started yet only start
when the concurrency gate admits them. Before that, the next corpus in
the enrichment sequence is started once the previous one completed.
"""
from __future__ import annotations

import asyncio
import logging
import os
import platform
import sys
import uuid

# Ensure project root is on path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.app.config import Settings, get_settings
from db.session import session_scope
from jobs import orchestrator, store
from jobs.chunk import ChunkResult, run_chunk
from jobs.gate import ConcurrencyGate, StoreHealthSource
from jobs.types import JobStatus
from services.backpressure import BackpressureMonitor

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("worker")


WORKER_ID = f"worker-{platform.node()}-{uuid.uuid4().hex[:8]}"


async def run_pass(
    gate: ConcurrencyGate,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    settings: Settings | None = None,
    worker_id: str = WORKER_ID,
) -> list[ChunkResult]:
    """One pass over runnable jobs. Returns the chunk results of this pass."""
    settings = settings or get_settings()

    async with session_scope(session_factory) as db:
        await orchestrator.advance(db, gate, settings=settings)

    async with session_scope(session_factory) as db:
        candidates = await store.next_runnable_job_ids(db, limit=settings.worker_batch_size)

    results: list[ChunkResult] = []
    for job_id, status in candidates:
        if status == JobStatus.CREATED.value and not await gate.check_can_start_job():
            logger.info("Job %s waits for a free slot", job_id)
            continue
        try:
            result = await run_chunk(session_factory, job_id, worker_id, settings=settings)
        except Exception as exc:
            logger.exception("Chunk for job %s crashed: %s", job_id, exc)
            continue
        results.append(result)
    return results


async def run_loop() -> None:
    settings = get_settings()
    gate = ConcurrencyGate(StoreHealthSource(BackpressureMonitor(settings), settings=settings))
    logger.info(
        "Worker %s starting (poll=%.1fs, chunk=%d)",
        WORKER_ID,
        settings.worker_poll_interval,
        settings.chunk_size,
    )

    while True:
        try:
            results = await run_pass(gate, settings=settings)
        except Exception as exc:
            logger.exception("Worker loop error: %s", exc)
            results = []

        if not results:
            await asyncio.sleep(settings.worker_poll_interval)


def main() -> None:
    asyncio.run(run_loop())


if __name__ == "__main__":
    main()
