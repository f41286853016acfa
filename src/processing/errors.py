"""
Batch Processing Errors

Node- and batch-level errors are recorded on the job and never abort
it; only JobFatalError ends a run early.
"""


class BatchProcessingError(Exception):
    """Base class for pipeline errors."""


class NodeProcessingError(BatchProcessingError):
    """Scoring or projection failed for a single node."""

    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        super().__init__(f"Node {node_id}: {message}")


class BatchTimeoutError(BatchProcessingError):
    """A batch exceeded its time budget."""

    def __init__(self, batch_index: int, timeout_seconds: float):
        self.batch_index = batch_index
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Batch {batch_index} timed out after {timeout_seconds}s")


class JobFatalError(BatchProcessingError):
    """The job cannot run at all (node fetch failed, bad configuration)."""


class CancellationError(BatchProcessingError):
    """Marks operator-initiated cancellation in a job's error list."""


class JobNotFoundError(BatchProcessingError):
    """No job with the given id."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class InvalidJobTypeError(BatchProcessingError):
    """Requested job type is not scoring, revenue or full_analysis."""


class RetryNotAllowedError(BatchProcessingError):
    """The job has nothing to retry or its retry budget is spent."""
