"""
Batch Job API Endpoints

FastAPI router for starting, following, cancelling and retrying batch
jobs, and for reading a project's ranked opportunities.
"""

import logging
from datetime import datetime
from typing import List, Optional, Dict, Any, Union

from fastapi import APIRouter, HTTPException, Depends, Query
from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, ValidationError

from src.database import SqlMetricsRepository, SqlResultStore
from src.models import OpportunityCategory, Timeframe
from src.persistence.jobs import JobStatus, ProcessingJob
from src.processing import (
    BatchProcessor,
    InvalidJobTypeError,
    JobNotFoundError,
    RetryNotAllowedError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["jobs"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class AssumptionsRequest(BaseModel):
    """Projection overrides; unset fields are derived per node."""
    model_config = ConfigDict(extra="forbid")

    ctr_improvement: Optional[Union[StrictInt, StrictFloat]] = Field(default=None, ge=0, le=1)
    conversion_rate_improvement: Optional[Union[StrictInt, StrictFloat]] = Field(default=None, ge=0)
    timeframe: Optional[Timeframe] = None
    seasonality_factor: Optional[Union[StrictInt, StrictFloat]] = Field(default=None, gt=0)
    competition_factor: Optional[Union[StrictInt, StrictFloat]] = Field(default=None, gt=0)


class JobOptionsRequest(BaseModel):
    """Options a client may set. Retry lineage is managed by the processor."""
    model_config = ConfigDict(extra="forbid")

    batch_size: Optional[StrictInt] = Field(default=None, ge=1)
    max_concurrent_batches: Optional[StrictInt] = Field(default=None, ge=1)
    batch_timeout_seconds: Optional[Union[StrictInt, StrictFloat]] = Field(default=None, gt=0)
    max_retries: Optional[StrictInt] = Field(default=None, ge=0)
    ranking_limit: Optional[StrictInt] = Field(default=None, ge=1)
    target_position: Optional[StrictInt] = Field(default=None, ge=1)
    assumptions: Optional[AssumptionsRequest] = None


class JobCreate(BaseModel):
    """Request to start a batch job."""
    type: str = Field(..., description="scoring, revenue or full_analysis")
    project_id: str = Field(..., min_length=1)
    options: Optional[Dict[str, Any]] = Field(
        default=None,
        description="See JobOptionsRequest; checked in the handler so bad options are a 400",
    )


class JobErrorResponse(BaseModel):
    node_id: Optional[str] = None
    message: str
    timestamp: datetime
    retry_count: int = 0
    error_type: str


class JobResponse(BaseModel):
    """Job state as seen by clients."""
    id: str
    type: str
    project_id: str
    status: str
    progress: int
    total_items: int
    processed_items: int
    failed_items: int
    cancelled: bool
    parent_job_id: Optional[str] = None
    errors: List[JobErrorResponse] = Field(default_factory=list)
    result: Optional[Dict[str, Any]] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None


class JobListResponse(BaseModel):
    jobs: List[JobResponse]
    total: int


class CancelResponse(BaseModel):
    job_id: str
    cancelled: bool


class OpportunityResponse(BaseModel):
    node_id: str
    project_id: str
    score: int
    revenue_potential: float
    priority: int
    combined_value: float
    confidence: float
    category: str
    effort: str
    factors: Dict[str, Any] = Field(default_factory=dict)
    job_id: Optional[str] = None
    computed_at: datetime
    valid_until: Optional[datetime] = None


class OpportunityListResponse(BaseModel):
    project_id: str
    opportunities: List[OpportunityResponse]
    total: int


# =============================================================================
# DEPENDENCIES
# =============================================================================

_processor: Optional[BatchProcessor] = None


def get_processor() -> BatchProcessor:
    """Shared processor over the SQL stores (override in tests)."""
    global _processor
    if _processor is None:
        _processor = BatchProcessor(SqlMetricsRepository(), SqlResultStore())
    return _processor


def job_to_response(job: ProcessingJob) -> JobResponse:
    return JobResponse(**job.to_dict())


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/jobs", response_model=JobResponse, status_code=201)
async def create_job(request: JobCreate, processor: BatchProcessor = Depends(get_processor)):
    """Start a batch job. Processing continues in the background."""
    try:
        options = JobOptionsRequest.model_validate(request.options or {})
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid options: {e.errors(include_url=False)}")

    try:
        job = await processor.create_job(
            request.type,
            request.project_id,
            options.model_dump(exclude_none=True),
        )
    except InvalidJobTypeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid options: {e}")

    return job_to_response(job)


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    project_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    processor: BatchProcessor = Depends(get_processor),
):
    job_status = None
    if status:
        try:
            job_status = JobStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

    jobs = processor.list_jobs(project_id=project_id, status=job_status, limit=limit)
    return JobListResponse(jobs=[job_to_response(j) for j in jobs], total=len(jobs))


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, processor: BatchProcessor = Depends(get_processor)):
    try:
        job = processor.get_job_status(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    return job_to_response(job)


@router.post("/jobs/{job_id}/cancel", response_model=CancelResponse)
async def cancel_job(job_id: str, processor: BatchProcessor = Depends(get_processor)):
    """Cancel a pending or processing job. cancelled=false when already finished."""
    try:
        processor.get_job_status(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")

    return CancelResponse(job_id=job_id, cancelled=processor.cancel_job(job_id))


@router.post("/jobs/{job_id}/retry", response_model=JobResponse, status_code=201)
async def retry_job(job_id: str, processor: BatchProcessor = Depends(get_processor)):
    """Start a new job over the failed items of a finished job."""
    try:
        job = await processor.retry_failed_items(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except RetryNotAllowedError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return job_to_response(job)


@router.get("/projects/{project_id}/opportunities", response_model=OpportunityListResponse)
async def list_opportunities(
    project_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
    category: Optional[str] = Query(default=None, description="quick-win, strategic, incremental, long-term or maintain"),
    processor: BatchProcessor = Depends(get_processor),
):
    """Latest ranked opportunities for a project, best first."""
    opportunity_category = None
    if category:
        try:
            opportunity_category = OpportunityCategory(category)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid category: {category}")

    opportunities = processor.result_store.list_opportunities(
        project_id,
        limit=limit,
        category=opportunity_category,
    )
    return OpportunityListResponse(
        project_id=project_id,
        opportunities=[OpportunityResponse(**o.to_dict()) for o in opportunities],
        total=len(opportunities),
    )
