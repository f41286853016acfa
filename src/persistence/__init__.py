"""
Persistence Layer

Provides node metrics sources, job tracking and result storage.
"""

from .storage import ResultStore, MetricsRepository, InMemoryMetricsRepository
from .jobs import JobTracker, ProcessingJob, JobStatus, JobType, JobError, JobOptions

__all__ = [
    "ResultStore",
    "MetricsRepository",
    "InMemoryMetricsRepository",
    "JobTracker",
    "ProcessingJob",
    "JobStatus",
    "JobType",
    "JobError",
    "JobOptions",
]
