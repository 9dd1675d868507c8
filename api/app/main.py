# api/app/main.py
from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.app.config import get_settings
from api.app.routes import health, jobs, orchestration

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Corpus Jobs API",
    description="Chunked, resumable corpus annotation and enrichment jobs",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(jobs.router, prefix="/v1")
app.include_router(orchestration.router, prefix="/v1")


def run() -> None:
    settings = get_settings()
    uvicorn.run("api.app.main:app", host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
