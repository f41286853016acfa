"""
SQLAlchemy Models for the Taxonomy Opportunity Engine

Tables:
1. node_metrics - per-node metrics written by the external metrics sync
2. processing_jobs - batch job state, counters and error log
3. opportunity_scores / revenue_projections - per-job engine output
4. opportunities - latest ranked opportunity per (project, node)

Column types stay portable so the same models run on PostgreSQL and SQLite.
"""

from datetime import datetime

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text,
    ForeignKey, Enum, Index, UniqueConstraint, JSON,
)
from sqlalchemy.orm import declarative_base

from src.persistence.jobs import JobStatus

Base = declarative_base()


# =============================================================================
# INPUT METRICS
# =============================================================================

class NodeMetricsRecord(Base):
    """Recent-period metrics for one taxonomy node (read-only to the engine)"""
    __tablename__ = "node_metrics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False)
    node_id = Column(String(128), nullable=False)

    # Hierarchy
    depth = Column(Integer, default=0)
    name = Column(String(255))
    url = Column(Text)

    # Search (position is NULL when the node does not rank)
    position = Column(Float, nullable=True)
    impressions = Column(Integer, default=0)
    clicks = Column(Integer, default=0)

    # Analytics
    sessions = Column(Integer, default=0)
    revenue = Column(Float, default=0)
    transactions = Column(Integer, default=0)

    # Catalog
    sku_count = Column(Integer, default=0)

    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        UniqueConstraint("project_id", "node_id", name="uq_node_metrics_project_node"),
        Index("idx_node_metrics_project_depth", "project_id", "depth"),
    )


# =============================================================================
# JOBS
# =============================================================================

class ProcessingJobRecord(Base):
    """One batch run over a project's nodes"""
    __tablename__ = "processing_jobs"

    id = Column(String(64), primary_key=True)
    # Plain string so a row with an unknown type can still be loaded and failed
    type = Column(String(32), nullable=False)
    project_id = Column(String(64), nullable=False)

    # Status tracking
    status = Column(Enum(JobStatus), default=JobStatus.PENDING, nullable=False)
    cancelled = Column(Boolean, default=False)
    progress = Column(Integer, default=0)
    total_items = Column(Integer, default=0)
    processed_items = Column(Integer, default=0)
    failed_items = Column(Integer, default=0)

    # Configuration and outcome
    options = Column(JSON, default=dict)
    errors = Column(JSON, default=list)
    """
    [
        {"node_id": "shoes", "message": "...", "timestamp": "2026-01-15T10:30:00",
         "retry_count": 0, "error_type": "NodeProcessingError"}
    ]
    """
    result = Column(JSON, nullable=True)

    parent_job_id = Column(String(64), ForeignKey("processing_jobs.id"), nullable=True)

    # Timing
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    duration_seconds = Column(Float)

    __table_args__ = (
        Index("idx_processing_jobs_project_created", "project_id", "created_at"),
        Index("idx_processing_jobs_status", "status"),
    )


# =============================================================================
# ENGINE OUTPUT
# =============================================================================

class OpportunityScoreRecord(Base):
    """Scorer output for one node in one job"""
    __tablename__ = "opportunity_scores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(64), ForeignKey("processing_jobs.id"), nullable=False)
    project_id = Column(String(64), nullable=False)
    node_id = Column(String(128), nullable=False)

    score = Column(Integer, nullable=False)
    confidence = Column(Float, nullable=False)
    factor_breakdown = Column(JSON, default=dict)
    recommendations = Column(JSON, default=list)
    computed_at = Column(DateTime, default=datetime.now)

    __table_args__ = (
        Index("idx_opportunity_scores_job", "job_id"),
        Index("idx_opportunity_scores_node", "project_id", "node_id"),
    )


class RevenueProjectionRecord(Base):
    """Calculator output for one node in one job"""
    __tablename__ = "revenue_projections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(64), ForeignKey("processing_jobs.id"), nullable=False)
    project_id = Column(String(64), nullable=False)
    node_id = Column(String(128), nullable=False)

    target_position = Column(Integer, nullable=False)
    monthly_revenue_lift = Column(Float, default=0)
    annual_revenue_lift = Column(Float, default=0)
    confidence = Column(Float, nullable=False)
    time_to_impact_weeks = Column(Integer, default=0)
    has_data = Column(Boolean, default=True)

    # Full projection (current, projected, lift, assumptions, range)
    projection = Column(JSON, nullable=False)
    calculated_at = Column(DateTime, default=datetime.now)

    __table_args__ = (
        Index("idx_revenue_projections_job", "job_id"),
        Index("idx_revenue_projections_node", "project_id", "node_id"),
    )


class OpportunityRecord(Base):
    """Latest ranked opportunity per project node (last write wins)"""
    __tablename__ = "opportunities"

    project_id = Column(String(64), primary_key=True)
    node_id = Column(String(128), primary_key=True)
    job_id = Column(String(64), nullable=True)

    score = Column(Integer, nullable=False)
    revenue_potential = Column(Float, default=0)
    priority = Column(Integer, nullable=False)  # 1 (act now) - 5
    combined_value = Column(Float, default=0)
    confidence = Column(Float, default=0)
    factors = Column(JSON, default=dict)

    # quick-win, strategic, incremental, long-term, maintain
    category = Column(String(20), nullable=False, default="maintain")
    effort = Column(String(10), nullable=False, default="low")

    computed_at = Column(DateTime, default=datetime.now)
    valid_until = Column(DateTime)

    __table_args__ = (
        Index("idx_opportunities_project_value", "project_id", "combined_value"),
        Index("idx_opportunities_project_category", "project_id", "category"),
    )
