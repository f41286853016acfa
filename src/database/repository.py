"""
Database Repository

SQL implementations of the metrics source and the result store.

Every job mutation loads the row with SELECT ... FOR UPDATE, applies the
change through the ProcessingJob model and writes it back in the same
transaction, so concurrent batch updates are serialized by the database.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Iterable

from sqlalchemy import desc
from sqlalchemy.orm import Session, sessionmaker

from src.models import (
    Effort,
    NodeMetrics,
    Opportunity,
    OpportunityCategory,
    OpportunityScore,
    RevenueProjection,
)
from src.persistence.jobs import (
    JobError,
    JobOptions,
    JobStatus,
    JobType,
    ProcessingJob,
    TERMINAL_STATUSES,
)
from src.persistence.storage import MetricsRepository, ResultStore

from .models import (
    NodeMetricsRecord,
    OpportunityRecord,
    OpportunityScoreRecord,
    ProcessingJobRecord,
    RevenueProjectionRecord,
)
from .session import get_db_context

logger = logging.getLogger(__name__)

KNOWN_JOB_TYPES = {t.value for t in JobType}


# =============================================================================
# CONVERSION HELPERS
# =============================================================================

def _job_from_record(record: ProcessingJobRecord) -> ProcessingJob:
    """Raises ValueError for a row with an unknown job type."""
    return ProcessingJob(
        id=record.id,
        type=JobType(record.type),
        project_id=record.project_id,
        status=record.status,
        created_at=record.created_at,
        updated_at=record.updated_at,
        options=JobOptions.from_dict(record.options),
        progress=record.progress or 0,
        total_items=record.total_items or 0,
        processed_items=record.processed_items or 0,
        failed_items=record.failed_items or 0,
        errors=[JobError.from_dict(e) for e in record.errors or []],
        result=record.result,
        cancelled=bool(record.cancelled),
        parent_job_id=record.parent_job_id,
        started_at=record.started_at,
        completed_at=record.completed_at,
        duration_seconds=record.duration_seconds,
    )


def _write_job(record: ProcessingJobRecord, job: ProcessingJob):
    record.status = job.status
    record.cancelled = job.cancelled
    record.progress = job.progress
    record.total_items = job.total_items
    record.processed_items = job.processed_items
    record.failed_items = job.failed_items
    record.errors = [e.to_dict() for e in job.errors]
    record.result = job.result
    record.updated_at = job.updated_at
    record.started_at = job.started_at
    record.completed_at = job.completed_at
    record.duration_seconds = job.duration_seconds


def _opportunity_from_record(record: OpportunityRecord) -> Opportunity:
    return Opportunity(
        node_id=record.node_id,
        project_id=record.project_id,
        score=record.score,
        revenue_potential=record.revenue_potential or 0.0,
        priority=record.priority,
        factors=record.factors or {},
        combined_value=record.combined_value or 0.0,
        confidence=record.confidence or 0.0,
        category=OpportunityCategory(record.category or OpportunityCategory.MAINTAIN.value),
        effort=Effort(record.effort or Effort.LOW.value),
        job_id=record.job_id,
        computed_at=record.computed_at,
        valid_until=record.valid_until,
    )


def _add_scores(db: Session, job: ProcessingJob, scores: List[OpportunityScore]):
    for score in scores:
        db.add(OpportunityScoreRecord(
            job_id=job.id,
            project_id=job.project_id,
            node_id=score.node_id,
            score=score.score,
            confidence=score.confidence,
            factor_breakdown=score.factor_breakdown,
            recommendations=score.recommendations,
            computed_at=score.computed_at,
        ))


def _add_projections(db: Session, job: ProcessingJob, projections: List[RevenueProjection]):
    for projection in projections:
        db.add(RevenueProjectionRecord(
            job_id=job.id,
            project_id=job.project_id,
            node_id=projection.node_id,
            target_position=projection.assumptions.target_position,
            monthly_revenue_lift=projection.lift.monthly_revenue_lift,
            annual_revenue_lift=projection.lift.annual_revenue_lift,
            confidence=projection.confidence,
            time_to_impact_weeks=projection.time_to_impact_weeks,
            has_data=projection.has_data,
            projection=projection.to_dict(),
            calculated_at=projection.calculated_at,
        ))


def _merge_opportunities(db: Session, opportunities: List[Opportunity]):
    """Upsert by (project_id, node_id)."""
    for opportunity in opportunities:
        record = db.get(OpportunityRecord, (opportunity.project_id, opportunity.node_id))
        if not record:
            record = OpportunityRecord(project_id=opportunity.project_id, node_id=opportunity.node_id)
            db.add(record)

        record.job_id = opportunity.job_id
        record.score = opportunity.score
        record.revenue_potential = opportunity.revenue_potential
        record.priority = opportunity.priority
        record.combined_value = opportunity.combined_value
        record.confidence = opportunity.confidence
        record.factors = opportunity.factors
        record.category = OpportunityCategory(opportunity.category).value
        record.effort = Effort(opportunity.effort).value
        record.computed_at = opportunity.computed_at
        record.valid_until = opportunity.valid_until


def _metrics_from_record(record: NodeMetricsRecord) -> NodeMetrics:
    return NodeMetrics.from_dict({
        "node_id": record.node_id,
        "project_id": record.project_id,
        "position": record.position,
        "impressions": record.impressions,
        "clicks": record.clicks,
        "sessions": record.sessions,
        "revenue": record.revenue,
        "transactions": record.transactions,
        "depth": record.depth,
        "url": record.url,
        "name": record.name,
        "sku_count": record.sku_count,
    })


# =============================================================================
# METRICS
# =============================================================================

class SqlMetricsRepository(MetricsRepository):
    """Reads node metrics from the node_metrics table."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory

    async def get_project_nodes(self, project_id: str) -> List[NodeMetrics]:
        with get_db_context(self.session_factory) as db:
            records = (
                db.query(NodeMetricsRecord)
                .filter(NodeMetricsRecord.project_id == project_id)
                .order_by(NodeMetricsRecord.depth, NodeMetricsRecord.node_id)
                .all()
            )
            return [_metrics_from_record(r) for r in records]

    def store_node_metrics(self, project_id: str, nodes: Iterable[NodeMetrics]) -> int:
        """Insert or update metrics rows. Returns the number of nodes written."""
        count = 0
        with get_db_context(self.session_factory) as db:
            for node in nodes:
                record = (
                    db.query(NodeMetricsRecord)
                    .filter(
                        NodeMetricsRecord.project_id == project_id,
                        NodeMetricsRecord.node_id == node.node_id,
                    )
                    .first()
                )
                if not record:
                    record = NodeMetricsRecord(project_id=project_id, node_id=node.node_id)
                    db.add(record)

                record.position = node.position
                record.impressions = node.impressions
                record.clicks = node.clicks
                record.sessions = node.sessions
                record.revenue = node.revenue
                record.transactions = node.transactions
                record.depth = node.depth
                record.url = node.url
                record.name = node.name
                record.sku_count = node.sku_count
                count += 1

        logger.info(f"Stored metrics for {count} nodes in project {project_id}")
        return count


# =============================================================================
# RESULTS
# =============================================================================

class SqlResultStore(ResultStore):
    """Result store backed by the processing_jobs and result tables."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory

    def _lock_job(self, db: Session, job_id: str) -> Optional[ProcessingJobRecord]:
        return (
            db.query(ProcessingJobRecord)
            .filter(ProcessingJobRecord.id == job_id)
            .with_for_update()
            .first()
        )

    # Jobs

    def create_job(self, job: ProcessingJob) -> ProcessingJob:
        with get_db_context(self.session_factory) as db:
            db.add(ProcessingJobRecord(
                id=job.id,
                type=job.type.value,
                project_id=job.project_id,
                status=job.status,
                cancelled=job.cancelled,
                options=job.options.to_dict(),
                errors=[],
                parent_job_id=job.parent_job_id,
                created_at=job.created_at,
                updated_at=job.updated_at,
            ))

        logger.info(f"Created {job.type.value} job {job.id} for project {job.project_id}")
        return job

    def get_job(self, job_id: str) -> Optional[ProcessingJob]:
        with get_db_context(self.session_factory) as db:
            record = db.get(ProcessingJobRecord, job_id)
            return _job_from_record(record) if record else None

    def list_jobs(
        self,
        project_id: Optional[str] = None,
        status: Optional[JobStatus] = None,
        limit: int = 100,
    ) -> List[ProcessingJob]:
        with get_db_context(self.session_factory) as db:
            query = db.query(ProcessingJobRecord)
            if project_id:
                query = query.filter(ProcessingJobRecord.project_id == project_id)
            if status:
                query = query.filter(ProcessingJobRecord.status == status)

            records = query.order_by(desc(ProcessingJobRecord.created_at)).limit(limit).all()
            return [_job_from_record(r) for r in records]

    def start_job(self, job_id: str, total_items: int) -> Optional[ProcessingJob]:
        with get_db_context(self.session_factory) as db:
            record = self._lock_job(db, job_id)
            if not record or record.status != JobStatus.PENDING:
                return None

            job = _job_from_record(record)
            job.total_items = total_items
            job.update_status(JobStatus.PROCESSING)
            _write_job(record, job)
            return job

    def apply_batch_outcome(
        self,
        job_id: str,
        succeeded: int,
        errors: List[JobError],
    ) -> Optional[ProcessingJob]:
        with get_db_context(self.session_factory) as db:
            record = self._lock_job(db, job_id)
            if not record:
                return None

            job = _job_from_record(record)
            job.record_batch(succeeded, errors)
            _write_job(record, job)
            return job

    def cancel_job(self, job_id: str, error: JobError) -> Optional[ProcessingJob]:
        with get_db_context(self.session_factory) as db:
            record = self._lock_job(db, job_id)
            if not record or record.status in TERMINAL_STATUSES:
                return None

            job = _job_from_record(record)
            job.cancelled = True
            job.errors.append(error)
            job.update_status(JobStatus.FAILED)
            _write_job(record, job)

        logger.info(f"Cancelled job {job_id}")
        return job

    def complete_job(self, job_id: str, result: Dict[str, Any]) -> Optional[ProcessingJob]:
        with get_db_context(self.session_factory) as db:
            record = self._lock_job(db, job_id)
            if not record:
                return None

            job = _job_from_record(record)
            job.result = result
            if job.status == JobStatus.PROCESSING:
                job.progress = 100
                job.update_status(JobStatus.COMPLETED)
            else:
                job.updated_at = datetime.now()
            _write_job(record, job)
            return job

    def fail_job(
        self,
        job_id: str,
        error: JobError,
        result: Optional[Dict[str, Any]] = None,
    ) -> Optional[ProcessingJob]:
        # Works on the raw row so jobs that cannot be loaded can still be failed
        with get_db_context(self.session_factory) as db:
            record = self._lock_job(db, job_id)
            if not record or record.status in TERMINAL_STATUSES:
                return None

            now = datetime.now()
            record.errors = list(record.errors or []) + [error.to_dict()]
            record.result = result
            record.status = JobStatus.FAILED
            record.updated_at = now
            record.completed_at = now
            if record.started_at:
                record.duration_seconds = (now - record.started_at).total_seconds()

            logger.error(f"Failed job {job_id}: {error.message}")
            if record.type not in KNOWN_JOB_TYPES:
                return None
            return _job_from_record(record)

    # Results

    def save_scores(self, job: ProcessingJob, scores: List[OpportunityScore]):
        with get_db_context(self.session_factory) as db:
            _add_scores(db, job, scores)

    def save_projections(self, job: ProcessingJob, projections: List[RevenueProjection]):
        with get_db_context(self.session_factory) as db:
            _add_projections(db, job, projections)

    def upsert_opportunities(self, opportunities: List[Opportunity]):
        with get_db_context(self.session_factory) as db:
            _merge_opportunities(db, opportunities)

    def save_batch_results(
        self,
        job: ProcessingJob,
        scores: List[OpportunityScore],
        projections: List[RevenueProjection],
        opportunities: List[Opportunity],
    ):
        with get_db_context(self.session_factory) as db:
            _add_scores(db, job, scores)
            _add_projections(db, job, projections)
            _merge_opportunities(db, opportunities)

    def list_opportunities(
        self,
        project_id: str,
        limit: int = 100,
        category: Optional[OpportunityCategory] = None,
    ) -> List[Opportunity]:
        with get_db_context(self.session_factory) as db:
            query = db.query(OpportunityRecord).filter(OpportunityRecord.project_id == project_id)
            if category:
                query = query.filter(OpportunityRecord.category == OpportunityCategory(category).value)

            records = (
                query.order_by(desc(OpportunityRecord.combined_value), OpportunityRecord.node_id)
                .limit(limit)
                .all()
            )
            return [_opportunity_from_record(r) for r in records]
