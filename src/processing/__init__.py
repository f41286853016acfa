"""
Batch Processing Pipeline

Runs the scoring and revenue engines over whole projects as background
jobs and ranks the results.
"""

from .batch import BatchProcessor, parse_job_type
from .errors import (
    BatchProcessingError,
    NodeProcessingError,
    BatchTimeoutError,
    JobFatalError,
    CancellationError,
    JobNotFoundError,
    InvalidJobTypeError,
    RetryNotAllowedError,
)
from .ranking import (
    NodeOutcome,
    build_opportunity,
    categorize,
    combined_value,
    estimate_effort,
    priority_for,
    rank_outcomes,
)

__all__ = [
    "BatchProcessor",
    "parse_job_type",
    # Errors
    "BatchProcessingError",
    "NodeProcessingError",
    "BatchTimeoutError",
    "JobFatalError",
    "CancellationError",
    "JobNotFoundError",
    "InvalidJobTypeError",
    "RetryNotAllowedError",
    # Ranking
    "NodeOutcome",
    "build_opportunity",
    "categorize",
    "combined_value",
    "estimate_effort",
    "priority_for",
    "rank_outcomes",
]
