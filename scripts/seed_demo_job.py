# scripts/seed_demo_job.py
"""
Seed a development semantic-annotation job from a JSON file of songs.
Run: python scripts/seed_demo_job.py songs.json

songs.json: [{"id": "...", "title": "...", "lyrics": "..."}, ...]
"""
from __future__ import annotations

import asyncio
import json
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from db.session import get_db
from jobs import store
from jobs.handlers import get_handler
from jobs.types import JobType

DEMO_SONGS = [
    {
        "id": "demo-1",
        "title": "Querência Amada",
        "lyrics": "Quem quiser saber quem sou\nOlha para o céu azul\nE grita junto comigo\nViva o Rio Grande do Sul",
    },
    {
        "id": "demo-2",
        "title": "Asa Branca",
        "lyrics": "Quando olhei a terra ardendo\nQual fogueira de São João\nEu perguntei a Deus do céu, ai\nPor que tamanha judiação",
    },
]


async def seed(songs: list[dict]):
    handler = get_handler(JobType.SEMANTIC_ANNOTATION.value)
    payload = {"songs": songs}
    async for db in get_db():
        job = await store.create_job(
            db,
            JobType.SEMANTIC_ANNOTATION.value,
            payload,
            total_units=handler.count_units(payload),
            checkpoint_kind=handler.checkpoint_kind,
        )
        print(f"Created job {job.id} with {job.total_units} words")


if __name__ == "__main__":
    if len(sys.argv) > 1:
        with open(sys.argv[1], encoding="utf-8") as fh:
            songs = json.load(fh)
    else:
        songs = DEMO_SONGS
    asyncio.run(seed(songs))
