# jobs/resume.py
"""
Per-day auto-resume attempt counters.

The counters survive a restart of the monitoring client (they are saved
through an AttemptStorage after every change) and reset when the day
changes, so a job that exhausted its attempts stays exhausted until
tomorrow or until someone resets it.
"""
from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from models.base import utcnow

logger = logging.getLogger(__name__)


class AttemptStorage(Protocol):
    def load(self) -> dict[str, Any] | None: ...

    def save(self, data: dict[str, Any]) -> None: ...


class MemoryStorage:
    def __init__(self, data: dict[str, Any] | None = None):
        self.data = data

    def load(self) -> dict[str, Any] | None:
        return json.loads(json.dumps(self.data)) if self.data is not None else None

    def save(self, data: dict[str, Any]) -> None:
        self.data = json.loads(json.dumps(data))


class JsonFileStorage:
    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> dict[str, Any] | None:
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable resume state %s: %s", self.path, exc)
            return None
        return data if isinstance(data, dict) else None

    def save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(data, fh)
        os.replace(tmp, self.path)


@dataclass
class ResumeStats:
    attempts_today: int = 0
    successful_resumes: int = 0
    failed_resumes: int = 0
    last_attempt_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ResumeStats:
        data = data or {}
        return cls(
            attempts_today=int(data.get("attempts_today", 0)),
            successful_resumes=int(data.get("successful_resumes", 0)),
            failed_resumes=int(data.get("failed_resumes", 0)),
            last_attempt_at=data.get("last_attempt_at"),
        )


class ResumeTracker:
    def __init__(
        self,
        storage: AttemptStorage,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = 3,
    ):
        self._storage = storage
        self._clock = clock
        self.max_attempts = max_attempts
        self._date = self._today()
        self._attempts: dict[str, int] = {}
        self._stats = ResumeStats()

        data = storage.load()
        if data and data.get("date") == self._date:
            self._attempts = {str(k): int(v) for k, v in (data.get("attempts") or {}).items()}
            self._stats = ResumeStats.from_dict(data.get("stats"))

    def _today(self) -> str:
        return self._clock().date().isoformat()

    def _roll_day(self) -> None:
        today = self._today()
        if today != self._date:
            logger.info("New day %s: auto-resume counters reset", today)
            self._date = today
            self._attempts = {}
            self._stats = ResumeStats()

    def _save(self) -> None:
        self._storage.save({
            "date": self._date,
            "attempts": self._attempts,
            "stats": asdict(self._stats),
        })

    def attempts(self, job_id) -> int:
        self._roll_day()
        return self._attempts.get(str(job_id), 0)

    def can_attempt(self, job_id) -> bool:
        return self.attempts(job_id) < self.max_attempts

    def record_attempt(self, job_id, success: bool) -> int:
        self._roll_day()
        key = str(job_id)
        self._attempts[key] = self._attempts.get(key, 0) + 1
        self._stats.attempts_today += 1
        if success:
            self._stats.successful_resumes += 1
        else:
            self._stats.failed_resumes += 1
        self._stats.last_attempt_at = self._clock().isoformat()
        self._save()
        return self._attempts[key]

    def reset(self, job_id=None) -> None:
        """Forget one job's attempts, or everything (stats included)."""
        self._roll_day()
        if job_id is not None:
            self._attempts.pop(str(job_id), None)
        else:
            self._attempts = {}
            self._stats = ResumeStats()
        self._save()

    @property
    def stats(self) -> ResumeStats:
        self._roll_day()
        return self._stats
