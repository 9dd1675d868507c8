# jobs/types.py
"""Job type and status definitions."""
from __future__ import annotations

from enum import Enum


class JobType(str, Enum):
    SEMANTIC_ANNOTATION = "semantic_annotation"
    CORPUS_ENRICHMENT = "corpus_enrichment"


class JobStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Terminal jobs never change checkpoint or progress again."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.ERROR, JobStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({JobStatus.CREATED, JobStatus.RUNNING, JobStatus.PAUSED})
