# api/app/config.py
from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application configuration.

    Loads environment variables from `.env` and provides
    typed access across API, worker, client agent, and services.
    """

    # ─────────────────────────────────────────────
    # Pydantic Settings Config
    # ─────────────────────────────────────────────
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ─────────────────────────────────────────────
    # Database
    # ─────────────────────────────────────────────
    database_url: str

    # ─────────────────────────────────────────────
    # OpenAI
    # ─────────────────────────────────────────────
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"

    # ─────────────────────────────────────────────
    # API
    # ─────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # ─────────────────────────────────────────────
    # Chunk processing
    # ─────────────────────────────────────────────
    chunk_size: int = 50
    chunk_timeout_seconds: float = 240.0
    unit_failure_threshold: int = 10
    claim_lease_seconds: int = 270

    # ─────────────────────────────────────────────
    # Worker
    # ─────────────────────────────────────────────
    worker_poll_interval: float = 1.0
    worker_batch_size: int = 5

    # ─────────────────────────────────────────────
    # Auto-resume poller (client agent)
    # ─────────────────────────────────────────────
    api_base_url: str = "http://localhost:8000"
    poller_interval_seconds: float = 30.0
    stuck_threshold_minutes: float = 5.0
    max_auto_resume_attempts: int = 3
    resume_backdate_seconds: int = 60
    resume_state_path: str = "~/.corpus-jobs/auto-resume.json"

    # ─────────────────────────────────────────────
    # Concurrency gate / backpressure
    # ─────────────────────────────────────────────
    max_concurrent_jobs: int = 5
    backpressure_cooldown_seconds: int = 300
    latency_degraded_ms: float = 500.0
    latency_unhealthy_ms: float = 1000.0
    latency_critical_ms: float = 3000.0
    error_rate_degraded: float = 25.0
    error_rate_unhealthy: float = 50.0
    error_rate_critical: float = 75.0
    health_window_size: int = 50

    # ─────────────────────────────────────────────
    # Corpus orchestration
    # ─────────────────────────────────────────────
    orphan_timeout_minutes: float = 5.0

    # ─────────────────────────────────────────────
    # Derived Properties
    # ─────────────────────────────────────────────
    @property
    def resume_state_file(self) -> Path:
        """Path of the attempt-counter file."""
        return Path(self.resume_state_path).expanduser()


# ─────────────────────────────────────────────
# Cached Settings Instance
# ─────────────────────────────────────────────
@lru_cache
def get_settings() -> Settings:
    """
    Returns a cached Settings instance so config
    is only loaded once per process.
    """
    return Settings()
