# jobs/poller.py
"""
Auto-resume monitor.

Client-side watchdog: every interval it re-reads running jobs, treats
the ones with no recent activity as stuck, and asks for one more chunk
from their checkpoint. Each job gets at most `max_attempts` automatic
resumes per day; after that it is reported as abandoned and only a
manual resume touches it.

The monitor is synchronous and talks to the jobs API through a
JobsClient, so it can run in a plain process next to the service.
"""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Protocol

from jobs.checkpoint import Checkpoint
from jobs.resume import ResumeTracker
from jobs.types import JobStatus
from models.base import utcnow

logger = logging.getLogger(__name__)


class JobsClient(Protocol):
    def list_jobs(self, statuses: list[str]) -> list[Any]: ...

    def mark_resuming(self, job_id, at: datetime) -> None: ...

    def run_chunk(self, job_id, continue_from: Checkpoint | None) -> Any: ...


class JobHealth(str, Enum):
    HEALTHY = "healthy"
    STUCK = "stuck"
    ABANDONED = "abandoned"
    INACTIVE = "inactive"


@dataclass
class ResumeOutcome:
    job_id: Any
    attempt: int
    success: bool
    status: str | None = None
    error: str | None = None


class AutoResumeMonitor:
    def __init__(
        self,
        client: JobsClient,
        tracker: ResumeTracker,
        clock: Callable[[], datetime] = utcnow,
        stuck_threshold_minutes: float = 5.0,
        interval_seconds: float = 30.0,
        backdate_seconds: int = 60,
        enabled: bool = True,
    ):
        self._client = client
        self.tracker = tracker
        self._clock = clock
        self.stuck_threshold = timedelta(minutes=stuck_threshold_minutes)
        self.interval_seconds = interval_seconds
        self.backdate = timedelta(seconds=backdate_seconds)
        self.enabled = enabled
        self.last_refresh_at: datetime | None = None

    @property
    def max_attempts(self) -> int:
        return self.tracker.max_attempts

    def toggle(self) -> bool:
        self.enabled = not self.enabled
        logger.info("Auto-resume %s", "enabled" if self.enabled else "disabled")
        return self.enabled

    # ─────────────────────────────────────────────
    # job analysis
    # ─────────────────────────────────────────────

    def is_stuck(self, job, now: datetime | None = None) -> bool:
        if job.status != JobStatus.RUNNING.value:
            return False
        if job.last_activity_at is None:
            return True
        now = now or self._clock()
        return now - job.last_activity_at > self.stuck_threshold

    def classify(self, job, now: datetime | None = None) -> JobHealth:
        if job.status != JobStatus.RUNNING.value:
            return JobHealth.INACTIVE
        if not self.is_stuck(job, now):
            return JobHealth.HEALTHY
        if not self.tracker.can_attempt(job.id):
            return JobHealth.ABANDONED
        return JobHealth.STUCK

    def elapsed_seconds(self, job, now: datetime | None = None) -> float:
        if job.started_at is None:
            return 0.0
        return ((now or self._clock()) - job.started_at).total_seconds()

    def processing_rate(self, job, now: datetime | None = None) -> float:
        """Units per second since the job started."""
        if job.processed_units == 0 or job.status != JobStatus.RUNNING.value:
            return 0.0
        elapsed = self.elapsed_seconds(job, now)
        if elapsed <= 0:
            return 0.0
        return job.processed_units / elapsed

    def eta_seconds(self, job, now: datetime | None = None) -> float | None:
        rate = self.processing_rate(job, now)
        if rate == 0:
            return None
        return max(0, job.total_units - job.processed_units) / rate

    # ─────────────────────────────────────────────
    # resumption
    # ─────────────────────────────────────────────

    def _invoke(self, job) -> tuple[bool, str | None, str | None]:
        checkpoint = Checkpoint.from_dict(job.checkpoint) if job.checkpoint else None
        try:
            self._client.mark_resuming(job.id, self._clock() - self.backdate)
            result = self._client.run_chunk(job.id, checkpoint)
        except Exception as exc:
            logger.warning("Resume of job %s failed: %s", job.id, exc)
            return False, None, str(exc)
        success = bool(result.claimed) and result.status != JobStatus.ERROR.value
        return success, result.status, None

    def resume(self, job) -> ResumeOutcome:
        """Automatic resume, counted against the job's daily attempts."""
        success, status, error = self._invoke(job)
        attempt = self.tracker.record_attempt(job.id, success)
        if success:
            logger.info("Job %s resumed automatically (attempt %d/%d)", job.id, attempt, self.max_attempts)
        else:
            logger.warning("Auto-resume of job %s failed (attempt %d/%d)", job.id, attempt, self.max_attempts)
        return ResumeOutcome(job_id=job.id, attempt=attempt, success=success, status=status, error=error)

    def manual_resume(self, job) -> ResumeOutcome:
        """User-initiated resume: not limited and clears the job's counter."""
        self.tracker.reset(job.id)
        success, status, error = self._invoke(job)
        return ResumeOutcome(job_id=job.id, attempt=0, success=success, status=status, error=error)

    def check_once(self) -> list[ResumeOutcome]:
        jobs = self._client.list_jobs([JobStatus.RUNNING.value])
        now = self._clock()
        self.last_refresh_at = now
        if not self.enabled:
            return []

        outcomes: list[ResumeOutcome] = []
        for job in jobs:
            health = self.classify(job, now)
            if health == JobHealth.ABANDONED:
                logger.warning(
                    "Job %s stuck after %d auto-resume attempts; manual action required",
                    job.id,
                    self.tracker.attempts(job.id),
                )
                continue
            if health != JobHealth.STUCK:
                continue
            outcomes.append(self.resume(job))
        return outcomes

    def run(self, stop: threading.Event | None = None, max_cycles: int | None = None) -> None:
        stop = stop or threading.Event()
        logger.info(
            "Auto-resume monitor starting (interval=%.0fs, threshold=%s, max_attempts=%d)",
            self.interval_seconds,
            self.stuck_threshold,
            self.max_attempts,
        )
        cycles = 0
        while not stop.is_set():
            started = time.monotonic()
            try:
                self.check_once()
            except Exception as exc:
                logger.exception("Auto-resume cycle failed: %s", exc)
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            stop.wait(max(0.0, self.interval_seconds - (time.monotonic() - started)))
