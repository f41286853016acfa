"""
Job Tracking

Processing job model and an in-memory job store with optional JSON
snapshots on disk.
"""

import json
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple
import uuid

from src.models import (
    Opportunity,
    OpportunityCategory,
    OpportunityScore,
    PartialAssumptions,
    RevenueProjection,
)

from .storage import ResultStore

logger = logging.getLogger(__name__)


class JobType(Enum):
    """What a job computes for each node."""
    SCORING = "scoring"
    REVENUE = "revenue"
    FULL_ANALYSIS = "full_analysis"

    @property
    def runs_scorer(self) -> bool:
        return self in (JobType.SCORING, JobType.FULL_ANALYSIS)

    @property
    def runs_calculator(self) -> bool:
        return self in (JobType.REVENUE, JobType.FULL_ANALYSIS)


class JobStatus(Enum):
    """Job status states."""
    PENDING = "pending"           # Created, not started
    PROCESSING = "processing"     # Batches running
    COMPLETED = "completed"       # Successfully finished
    FAILED = "failed"             # Fatal error or cancelled


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class JobError:
    """One recorded failure. node_id is None for job-level errors."""
    node_id: Optional[str]
    message: str
    timestamp: datetime = field(default_factory=datetime.now)
    retry_count: int = 0
    error_type: str = "NodeProcessingError"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobError":
        data = dict(data)
        data["timestamp"] = datetime.fromisoformat(data["timestamp"])
        return cls(**data)


INT_OPTIONS = {
    "batch_size",
    "max_concurrent_batches",
    "max_retries",
    "retry_attempt",
    "ranking_limit",
    "target_position",
}
NUMBER_OPTIONS = {"batch_timeout_seconds"}


def _check_option_type(key: str, value: Any):
    # bool is an int subclass but never a valid count
    if key in INT_OPTIONS and (isinstance(value, bool) or not isinstance(value, int)):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    if key in NUMBER_OPTIONS and (isinstance(value, bool) or not isinstance(value, (int, float))):
        raise ValueError(f"{key} must be a number, got {value!r}")
    if key == "node_ids" and (
        not isinstance(value, list) or not all(isinstance(v, str) for v in value)
    ):
        raise ValueError("node_ids must be a list of strings")
    if key == "assumptions" and not isinstance(value, (dict, PartialAssumptions)):
        raise ValueError("assumptions must be an object")


@dataclass
class JobOptions:
    """Per-job processing options."""
    batch_size: int = 100
    max_concurrent_batches: int = 5
    batch_timeout_seconds: float = 300.0
    max_retries: int = 3
    retry_attempt: int = 0
    ranking_limit: int = 50
    target_position: Optional[int] = None
    assumptions: Optional[PartialAssumptions] = None
    node_ids: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["assumptions"] = self.assumptions.to_dict() if self.assumptions else None
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], defaults: Optional["JobOptions"] = None) -> "JobOptions":
        """
        Overlay a (possibly partial) dict on defaults.

        Raises ValueError for unknown keys, mistyped values and values out
        of range.
        """
        base = asdict(defaults or cls())
        base["assumptions"] = defaults.assumptions if defaults else None
        for key, value in (data or {}).items():
            if key not in base:
                raise ValueError(f"Unknown job option: {key}")
            if value is not None:
                _check_option_type(key, value)
                base[key] = value
        if isinstance(base["assumptions"], dict):
            base["assumptions"] = PartialAssumptions.from_dict(base["assumptions"])
        options = cls(**base)
        options.validate()
        return options

    def validate(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.max_concurrent_batches < 1:
            raise ValueError("max_concurrent_batches must be at least 1")
        if self.batch_timeout_seconds <= 0:
            raise ValueError("batch_timeout_seconds must be positive")
        if self.target_position is not None and self.target_position < 1:
            raise ValueError("target_position must be at least 1")


@dataclass
class ProcessingJob:
    """One batch run over a project's nodes."""
    id: str
    type: JobType
    project_id: str
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    options: JobOptions = field(default_factory=JobOptions)

    # Progress tracking
    progress: int = 0
    total_items: int = 0
    processed_items: int = 0
    failed_items: int = 0

    # Outcome
    errors: List[JobError] = field(default_factory=list)
    result: Optional[Dict[str, Any]] = None
    cancelled: bool = False
    parent_job_id: Optional[str] = None

    # Timing
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None

    @classmethod
    def new(
        cls,
        job_type: JobType,
        project_id: str,
        options: Optional[JobOptions] = None,
        parent_job_id: Optional[str] = None,
    ) -> "ProcessingJob":
        now = datetime.now()
        return cls(
            id=f"job_{uuid.uuid4().hex[:16]}",
            type=job_type,
            project_id=project_id,
            status=JobStatus.PENDING,
            created_at=now,
            updated_at=now,
            options=options or JobOptions(),
            parent_job_id=parent_job_id,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def handled_items(self) -> int:
        return self.processed_items + self.failed_items

    def failed_node_ids(self) -> List[str]:
        """Distinct node ids with recorded failures, in first-failure order."""
        seen = []
        for error in self.errors:
            if error.node_id and error.node_id not in seen:
                seen.append(error.node_id)
        return seen

    def update_status(self, status: JobStatus):
        """Update job status and timing."""
        self.status = status
        self.updated_at = datetime.now()

        if status == JobStatus.PROCESSING and not self.started_at:
            self.started_at = self.updated_at

        if status in TERMINAL_STATUSES:
            self.completed_at = self.updated_at
            if self.started_at:
                self.duration_seconds = (self.completed_at - self.started_at).total_seconds()

    def record_batch(self, succeeded: int, errors: List[JobError]):
        """
        Apply one batch's outcome to the counters.

        Counters never exceed total_items and progress never decreases.
        """
        remaining = max(0, self.total_items - self.handled_items)
        succeeded = min(succeeded, remaining)
        failed = min(len(errors), remaining - succeeded)

        self.processed_items += succeeded
        self.failed_items += failed
        self.errors.extend(errors)

        if self.total_items:
            progress = int(self.handled_items * 100 / self.total_items)
        else:
            progress = 100
        self.progress = max(self.progress, min(100, progress))
        self.updated_at = datetime.now()

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "type": self.type.value,
            "project_id": self.project_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "options": self.options.to_dict(),
            "progress": self.progress,
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "failed_items": self.failed_items,
            "errors": [error.to_dict() for error in self.errors],
            "result": self.result,
            "cancelled": self.cancelled,
            "parent_job_id": self.parent_job_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ProcessingJob":
        """Create from dictionary."""
        data = dict(data)
        data["type"] = JobType(data["type"])
        data["status"] = JobStatus(data["status"])
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        data["updated_at"] = datetime.fromisoformat(data["updated_at"])
        data["options"] = JobOptions.from_dict(data.get("options"))
        data["errors"] = [JobError.from_dict(e) for e in data.get("errors") or []]
        if data.get("started_at"):
            data["started_at"] = datetime.fromisoformat(data["started_at"])
        if data.get("completed_at"):
            data["completed_at"] = datetime.fromisoformat(data["completed_at"])
        return cls(**data)


class JobTracker(ResultStore):
    """
    In-memory result store.

    Every mutation runs to completion without awaiting, so on a single
    event loop each call is atomic with respect to concurrent batches.
    When a storage path is given, job snapshots are also written as JSON.
    """

    def __init__(self, storage_path: Optional[str] = None):
        """
        Initialize job tracker.

        Args:
            storage_path: Directory for job snapshots. Nothing is written
                          to disk when omitted.
        """
        self.storage_path = Path(storage_path) if storage_path else None

        self._jobs: Dict[str, ProcessingJob] = {}
        self._scores: Dict[Tuple[str, str], OpportunityScore] = {}
        self._projections: Dict[Tuple[str, str], RevenueProjection] = {}
        self._opportunities: Dict[Tuple[str, str], Opportunity] = {}

        if self.storage_path:
            self.storage_path.mkdir(parents=True, exist_ok=True)
            self._load_jobs()

    def _get_job_path(self, job_id: str) -> Path:
        """Get path for job file."""
        return self.storage_path / f"{job_id}.json"

    def _load_jobs(self):
        """Load job snapshots from storage."""
        for file_path in self.storage_path.glob("*.json"):
            try:
                with open(file_path, "r") as f:
                    job = ProcessingJob.from_dict(json.load(f))
                self._jobs[job.id] = job
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"Failed to load job from {file_path}: {e}")

        logger.info(f"Loaded {len(self._jobs)} jobs from {self.storage_path}")

    def _save_job(self, job: ProcessingJob):
        """Persist job snapshot."""
        if not self.storage_path:
            return
        path = self._get_job_path(job.id)
        try:
            with open(path, "w") as f:
                json.dump(job.to_dict(), f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save job {job.id}: {e}")

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(self, job: ProcessingJob) -> ProcessingJob:
        self._jobs[job.id] = job
        self._save_job(job)
        logger.info(f"Created {job.type.value} job {job.id} for project {job.project_id}")
        return job

    def get_job(self, job_id: str) -> Optional[ProcessingJob]:
        return self._jobs.get(job_id)

    def list_jobs(
        self,
        project_id: Optional[str] = None,
        status: Optional[JobStatus] = None,
        limit: int = 100,
    ) -> List[ProcessingJob]:
        jobs = list(self._jobs.values())
        if project_id:
            jobs = [j for j in jobs if j.project_id == project_id]
        if status:
            jobs = [j for j in jobs if j.status == status]

        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def start_job(self, job_id: str, total_items: int) -> Optional[ProcessingJob]:
        job = self._jobs.get(job_id)
        if not job or job.status != JobStatus.PENDING:
            return None

        job.total_items = total_items
        job.update_status(JobStatus.PROCESSING)
        self._save_job(job)
        return job

    def apply_batch_outcome(
        self,
        job_id: str,
        succeeded: int,
        errors: List[JobError],
    ) -> Optional[ProcessingJob]:
        job = self._jobs.get(job_id)
        if not job:
            return None

        job.record_batch(succeeded, errors)
        self._save_job(job)
        return job

    def cancel_job(self, job_id: str, error: JobError) -> Optional[ProcessingJob]:
        job = self._jobs.get(job_id)
        if not job or job.is_terminal:
            return None

        job.cancelled = True
        job.errors.append(error)
        job.update_status(JobStatus.FAILED)
        self._save_job(job)

        logger.info(f"Cancelled job {job_id}")
        return job

    def complete_job(self, job_id: str, result: Dict[str, Any]) -> Optional[ProcessingJob]:
        job = self._jobs.get(job_id)
        if not job:
            return None

        job.result = result
        if job.status == JobStatus.PROCESSING:
            job.progress = 100
            job.update_status(JobStatus.COMPLETED)
        else:
            job.updated_at = datetime.now()
        self._save_job(job)
        return job

    def fail_job(
        self,
        job_id: str,
        error: JobError,
        result: Optional[Dict[str, Any]] = None,
    ) -> Optional[ProcessingJob]:
        job = self._jobs.get(job_id)
        if not job or job.is_terminal:
            return None

        job.errors.append(error)
        job.result = result
        job.update_status(JobStatus.FAILED)
        self._save_job(job)

        logger.error(f"Failed job {job_id}: {error.message}")
        return job

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------


    def save_scores(self, job: ProcessingJob, scores: List[OpportunityScore]):
        for score in scores:
            self._scores[(job.project_id, score.node_id)] = score

    def save_projections(self, job: ProcessingJob, projections: List[RevenueProjection]):
        for projection in projections:
            self._projections[(job.project_id, projection.node_id)] = projection

    def upsert_opportunities(self, opportunities: List[Opportunity]):
        for opportunity in opportunities:
            self._opportunities[(opportunity.project_id, opportunity.node_id)] = opportunity

    def save_batch_results(
        self,
        job: ProcessingJob,
        scores: List[OpportunityScore],
        projections: List[RevenueProjection],
        opportunities: List[Opportunity],
    ):
        # Stage every key first; the dicts are updated only once all are built
        staged_scores = {(job.project_id, s.node_id): s for s in scores}
        staged_projections = {(job.project_id, p.node_id): p for p in projections}
        staged_opportunities = {(o.project_id, o.node_id): o for o in opportunities}

        self._scores.update(staged_scores)
        self._projections.update(staged_projections)
        self._opportunities.update(staged_opportunities)

    def get_score(self, project_id: str, node_id: str) -> Optional[OpportunityScore]:
        return self._scores.get((project_id, node_id))

    def get_projection(self, project_id: str, node_id: str) -> Optional[RevenueProjection]:
        return self._projections.get((project_id, node_id))

    def list_opportunities(
        self,
        project_id: str,
        limit: int = 100,
        category: Optional[OpportunityCategory] = None,
    ) -> List[Opportunity]:
        opportunities = [
            o for o in self._opportunities.values()
            if o.project_id == project_id and (category is None or o.category == category)
        ]
        opportunities.sort(key=lambda o: (-o.combined_value, o.node_id))
        return opportunities[:limit]
