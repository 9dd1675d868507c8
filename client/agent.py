# client/agent.py
"""
Auto-resume agent: runs the stuck-job monitor against the jobs API.

Run: python -m client.agent
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime

import requests

from api.app.config import Settings, get_settings
from api.app.schemas.jobs import ChunkResultResponse, JobResponse
from jobs.checkpoint import Checkpoint
from jobs.poller import AutoResumeMonitor
from jobs.resume import JsonFileStorage, ResumeTracker

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Config
# -----------------------------------------------------------------------------
HTTP_TIMEOUT = 10
# a chunk may run for the whole chunk budget before answering
CHUNK_TIMEOUT = 300


# -----------------------------------------------------------------------------
# HTTP client
# -----------------------------------------------------------------------------
class ApiJobsClient:
    def __init__(self, base_url: str, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def _req(self, method: str, path: str, timeout: float = HTTP_TIMEOUT, **kwargs) -> requests.Response:
        resp = self.session.request(method, f"{self.base_url}{path}", timeout=timeout, **kwargs)
        resp.raise_for_status()
        return resp

    def list_jobs(self, statuses: list[str]) -> list[JobResponse]:
        resp = self._req("GET", "/v1/jobs", params={"status": statuses})
        return [JobResponse.model_validate(item) for item in resp.json()]

    def get_job(self, job_id: uuid.UUID) -> JobResponse:
        return JobResponse.model_validate(self._req("GET", f"/v1/jobs/{job_id}").json())

    def mark_resuming(self, job_id: uuid.UUID, at: datetime) -> None:
        self._req("POST", f"/v1/jobs/{job_id}/heartbeat", json={"at": at.isoformat()})

    def run_chunk(self, job_id: uuid.UUID, continue_from: Checkpoint | None) -> ChunkResultResponse:
        body = {"continue_from": continue_from.to_dict() if continue_from else None}
        resp = self._req("POST", f"/v1/jobs/{job_id}/chunks", timeout=CHUNK_TIMEOUT, json=body)
        return ChunkResultResponse.model_validate(resp.json())


def build_monitor(settings: Settings, client: ApiJobsClient | None = None) -> AutoResumeMonitor:
    tracker = ResumeTracker(
        JsonFileStorage(settings.resume_state_file),
        max_attempts=settings.max_auto_resume_attempts,
    )
    return AutoResumeMonitor(
        client or ApiJobsClient(settings.api_base_url),
        tracker,
        stuck_threshold_minutes=settings.stuck_threshold_minutes,
        interval_seconds=settings.poller_interval_seconds,
        backdate_seconds=settings.resume_backdate_seconds,
    )


# -----------------------------------------------------------------------------
# Main
# -----------------------------------------------------------------------------
def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    settings = get_settings()
    monitor = build_monitor(settings)
    logger.info("Watching %s for stuck jobs", settings.api_base_url)
    try:
        monitor.run()
    except KeyboardInterrupt:
        stats = monitor.tracker.stats
        logger.info(
            "Stopped: %d resumes today (%d ok, %d failed)",
            stats.attempts_today,
            stats.successful_resumes,
            stats.failed_resumes,
        )


if __name__ == "__main__":
    main()
