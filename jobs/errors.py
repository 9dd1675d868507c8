# jobs/errors.py
"""Exceptions raised by the job store, chunk runner and admission gate."""
from __future__ import annotations

import uuid


class JobError(Exception):
    pass


class JobNotFound(JobError):
    def __init__(self, job_id: uuid.UUID):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class CheckpointKindMismatch(JobError):
    pass


class CheckpointRegression(JobError):
    def __init__(self, job_id: uuid.UUID, current, proposed):
        super().__init__(
            f"Job {job_id}: checkpoint {proposed} is behind stored checkpoint {current}"
        )
        self.job_id = job_id
        self.current = current
        self.proposed = proposed


class ConcurrentJobUpdate(JobError):
    """The row changed between read and conditional write."""


class JobClaimConflict(JobError):
    def __init__(self, job_id: uuid.UUID, claimed_by: str | None):
        super().__init__(f"Job {job_id} is claimed by {claimed_by}")
        self.job_id = job_id
        self.claimed_by = claimed_by


class UnitFailed(JobError):
    """One unit of work failed; the chunk carries on."""


class SystemicJobError(JobError):
    """Failure that makes the rest of the chunk pointless (auth, quota, bad input)."""


class AdmissionRejected(JobError):
    def __init__(self, reason: str, delay_multiplier: int = 1):
        super().__init__(reason)
        self.reason = reason
        self.delay_multiplier = delay_multiplier


class CorpusNotFound(JobError):
    def __init__(self, slug: str):
        super().__init__(f"Corpus {slug!r} not found")
        self.slug = slug


class OrchestrationConflict(JobError):
    """Another corpus job is still active."""


class NothingToRun(JobError):
    """Every corpus is done, or there is no active corpus job to act on."""
