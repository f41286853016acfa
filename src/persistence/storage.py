"""
Storage Backends

Abstract interfaces the batch pipeline reads node metrics from and writes
job state and results to, plus an in-memory metrics source.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Iterable, TYPE_CHECKING

from src.models import (
    NodeMetrics,
    Opportunity,
    OpportunityCategory,
    OpportunityScore,
    RevenueProjection,
)

if TYPE_CHECKING:
    from .jobs import JobError, JobStatus, ProcessingJob

logger = logging.getLogger(__name__)


class MetricsRepository(ABC):
    """Source of per-node metrics, populated by the external metrics sync."""

    @abstractmethod
    async def get_project_nodes(self, project_id: str) -> List[NodeMetrics]:
        """All nodes of a project, ordered by depth ascending."""
        pass


class InMemoryMetricsRepository(MetricsRepository):
    """Metrics held in memory, keyed by project id."""

    def __init__(self, nodes: Optional[Dict[str, Iterable[NodeMetrics]]] = None):
        self._nodes: Dict[str, List[NodeMetrics]] = {}
        for project_id, project_nodes in (nodes or {}).items():
            self.add_nodes(project_id, project_nodes)

    def add_nodes(self, project_id: str, nodes: Iterable[NodeMetrics]):
        self._nodes.setdefault(project_id, []).extend(nodes)

    async def get_project_nodes(self, project_id: str) -> List[NodeMetrics]:
        nodes = self._nodes.get(project_id, [])
        return sorted(nodes, key=lambda n: n.depth)


class ResultStore(ABC):
    """
    Job and result persistence.

    Each mutating call is one atomic read-modify-write of the job record,
    so concurrent batches never lose each other's updates. Mutations that
    find the job missing (or in the wrong state) return None.
    """

    # Jobs

    @abstractmethod
    def create_job(self, job: "ProcessingJob") -> "ProcessingJob":
        """Persist a new pending job."""
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> Optional["ProcessingJob"]:
        pass

    @abstractmethod
    def list_jobs(
        self,
        project_id: Optional[str] = None,
        status: Optional["JobStatus"] = None,
        limit: int = 100,
    ) -> List["ProcessingJob"]:
        """Jobs, newest first."""
        pass

    @abstractmethod
    def start_job(self, job_id: str, total_items: int) -> Optional["ProcessingJob"]:
        """Move a pending job to processing. None if it is no longer pending."""
        pass

    @abstractmethod
    def apply_batch_outcome(
        self,
        job_id: str,
        succeeded: int,
        errors: List["JobError"],
    ) -> Optional["ProcessingJob"]:
        """Add one batch's counters and errors and recompute progress."""
        pass

    @abstractmethod
    def cancel_job(self, job_id: str, error: "JobError") -> Optional["ProcessingJob"]:
        """
        Mark a non-terminal job failed and cancelled.

        Pending jobs are accepted as well as processing ones, so a job
        cancelled before its first batch never starts. None for unknown
        or finished jobs.
        """
        pass

    @abstractmethod
    def complete_job(self, job_id: str, result: Dict[str, Any]) -> Optional["ProcessingJob"]:
        """
        Store the summary. The status moves to completed only from
        processing; a cancelled job keeps its failed status.
        """
        pass

    @abstractmethod
    def fail_job(
        self,
        job_id: str,
        error: "JobError",
        result: Optional[Dict[str, Any]] = None,
    ) -> Optional["ProcessingJob"]:
        pass

    # Results

    @abstractmethod
    def save_scores(self, job: "ProcessingJob", scores: List[OpportunityScore]):
        pass

    @abstractmethod
    def save_projections(self, job: "ProcessingJob", projections: List[RevenueProjection]):
        pass

    @abstractmethod
    def upsert_opportunities(self, opportunities: List[Opportunity]):
        """Insert or replace opportunities keyed by (project id, node id)."""
        pass

    @abstractmethod
    def save_batch_results(
        self,
        job: "ProcessingJob",
        scores: List[OpportunityScore],
        projections: List[RevenueProjection],
        opportunities: List[Opportunity],
    ):
        """Write one batch's scores, projections and opportunities all or nothing."""
        pass

    @abstractmethod
    def list_opportunities(
        self,
        project_id: str,
        limit: int = 100,
        category: Optional[OpportunityCategory] = None,
    ) -> List[Opportunity]:
        """Opportunities for a project, best combined value first."""
        pass
