# models/__init__.py
from models.base import Base
from models.job import Job
from models.unit_result import JobUnitResult
from models.event import Event
from models.corpus import Corpus

__all__ = [
    "Base",
    "Job",
    "JobUnitResult",
    "Event",
    "Corpus",
]
