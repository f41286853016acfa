"""
Batch Processor

Runs scoring and revenue projection over every node of a project as a
tracked background job:

1. Fetch the project's nodes (ordered by depth)
2. Split them into fixed-size batches
3. Dispatch batches in index order, at most N in flight
4. Process the nodes of a batch concurrently; a failing node never
   affects its siblings and a slow batch is cut off by its timeout
5. After each batch, persist its results and update the job counters
6. Rank the outcomes and store the summary on the job

Callers get the job back immediately from create_job() and follow it
through get_job_status() or wait_for_job().
"""

import asyncio
import logging
from typing import Optional, Dict, Any, List, Union

from src.models import NodeMetrics
from src.persistence.jobs import (
    JobError,
    JobOptions,
    JobStatus,
    JobType,
    ProcessingJob,
)
from src.persistence.storage import MetricsRepository, ResultStore
from src.scoring import OpportunityScorer, RevenueCalculator, ScoringContext, default_target_position
from src.utils.config import Settings, get_settings

from .errors import (
    BatchTimeoutError,
    CancellationError,
    InvalidJobTypeError,
    JobFatalError,
    JobNotFoundError,
    NodeProcessingError,
    RetryNotAllowedError,
)
from .ranking import NodeOutcome, build_opportunity, rank_outcomes, ranking_entry

logger = logging.getLogger(__name__)


def parse_job_type(job_type: Union[str, JobType]) -> JobType:
    if isinstance(job_type, JobType):
        return job_type
    try:
        return JobType(job_type)
    except ValueError:
        valid = ", ".join(t.value for t in JobType)
        raise InvalidJobTypeError(f"Unknown job type '{job_type}' (expected one of: {valid})")


class BatchProcessor:
    """
    Background batch pipeline over a metrics repository and a result store.

    Usage:
        processor = BatchProcessor(InMemoryMetricsRepository(...), JobTracker())
        job = await processor.create_job("full_analysis", "project-1")
        job = await processor.wait_for_job(job.id)
        print(job.result["ranked"][:5])
    """

    def __init__(
        self,
        metrics_repository: MetricsRepository,
        result_store: ResultStore,
        scorer: Optional[OpportunityScorer] = None,
        calculator: Optional[RevenueCalculator] = None,
        settings: Optional[Settings] = None,
    ):
        self.metrics_repository = metrics_repository
        self.result_store = result_store
        self.scorer = scorer or OpportunityScorer()
        self.calculator = calculator or RevenueCalculator()
        self.settings = settings or get_settings()

        self._tasks: Dict[str, asyncio.Task] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}

    def default_options(self) -> JobOptions:
        return JobOptions(
            batch_size=self.settings.BATCH_SIZE,
            max_concurrent_batches=self.settings.MAX_CONCURRENT_BATCHES,
            batch_timeout_seconds=self.settings.BATCH_TIMEOUT_SECONDS,
            max_retries=self.settings.MAX_RETRIES,
            ranking_limit=self.settings.RANKING_LIMIT,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def create_job(
        self,
        job_type: Union[str, JobType],
        project_id: str,
        options: Optional[Union[Dict[str, Any], JobOptions]] = None,
    ) -> ProcessingJob:
        """
        Persist a pending job and start processing it in the background.

        Raises:
            InvalidJobTypeError: Unknown job type; nothing is persisted
            ValueError: Invalid options
        """
        parsed_type = parse_job_type(job_type)
        if isinstance(options, JobOptions):
            options.validate()
            job_options = options
        else:
            job_options = JobOptions.from_dict(options, defaults=self.default_options())

        job = ProcessingJob.new(parsed_type, project_id, job_options)
        return self._submit(job)

    def get_job_status(self, job_id: str) -> ProcessingJob:
        job = self.result_store.get_job(job_id)
        if not job:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(
        self,
        project_id: Optional[str] = None,
        status: Optional[JobStatus] = None,
        limit: int = 100,
    ) -> List[ProcessingJob]:
        return self.result_store.list_jobs(project_id=project_id, status=status, limit=limit)

    def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a pending or processing job.

        Pending jobs are accepted too: a job cancelled before its first
        batch goes straight to failed and never starts, the same end state
        as a job whose node fetch fails. No further batches are dispatched;
        batches already in flight finish and their results are kept.
        Returns False for unknown or finished jobs.
        """
        error = JobError(
            node_id=None,
            message="Job cancelled by user",
            error_type=CancellationError.__name__,
        )
        job = self.result_store.cancel_job(job_id, error)
        if not job:
            return False

        event = self._cancel_events.get(job_id)
        if event:
            event.set()
        return True

    async def retry_failed_items(self, job_id: str) -> ProcessingJob:
        """
        Start a new job over the failed nodes of an existing job.

        The original job is left untouched. The retry job uses the retry
        batch size and retry budget and records its parent.

        Raises:
            JobNotFoundError: Unknown job
            RetryNotAllowedError: Nothing failed, or the retry budget is spent
        """
        original = self.get_job_status(job_id)
        if not original.is_terminal:
            raise RetryNotAllowedError(f"Job {job_id} is still {original.status.value}")

        failed_ids = original.failed_node_ids()
        if not failed_ids:
            raise RetryNotAllowedError(f"Job {job_id} has no failed items to retry")

        attempt = original.options.retry_attempt + 1
        budget = self.settings.RETRY_MAX_RETRIES
        if attempt > budget:
            raise RetryNotAllowedError(
                f"Job {job_id} exhausted its retry budget ({budget} attempts)"
            )

        options = JobOptions.from_dict(
            {
                "batch_size": self.settings.RETRY_BATCH_SIZE,
                "max_retries": budget,
                "retry_attempt": attempt,
                "node_ids": failed_ids,
            },
            defaults=original.options,
        )

        job = ProcessingJob.new(
            original.type,
            original.project_id,
            options,
            parent_job_id=original.id,
        )
        logger.info(
            f"Retrying {len(failed_ids)} failed items of job {job_id} "
            f"as {job.id} (attempt {attempt}/{budget})"
        )
        return self._submit(job)

    async def wait_for_job(self, job_id: str, timeout: Optional[float] = None) -> ProcessingJob:
        """Wait until the job's background task finishes and return the job."""
        task = self._tasks.get(job_id)
        if task:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        return self.get_job_status(job_id)

    async def shutdown(self):
        """Cancel outstanding background tasks and wait for them to exit."""
        tasks = list(self._tasks.values())
        if not tasks:
            return

        logger.info(f"Shutting down batch processor, cancelling {len(tasks)} jobs")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    def _submit(self, job: ProcessingJob) -> ProcessingJob:
        job = self.result_store.create_job(job)
        self._cancel_events[job.id] = asyncio.Event()

        task = asyncio.create_task(self._run_job(job.id))
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))
        return job

    def _is_cancelled(self, job_id: str) -> bool:
        event = self._cancel_events.get(job_id)
        if event is not None and event.is_set():
            return True
        # Cancelled through another processor sharing the store
        job = self.result_store.get_job(job_id)
        return job is None or job.cancelled

    async def _run_job(self, job_id: str):
        """Background task body. Failures end up on the job, never raised."""
        try:
            await self._execute(job_id)
        except asyncio.CancelledError:
            logger.warning(f"Job {job_id} interrupted by shutdown")
            self.result_store.fail_job(
                job_id,
                JobError(
                    node_id=None,
                    message="Processing interrupted by shutdown",
                    error_type=CancellationError.__name__,
                ),
            )
            raise
        except Exception as e:
            logger.exception(f"Job {job_id} failed: {e}")
            self.result_store.fail_job(
                job_id,
                JobError(node_id=None, message=str(e), error_type=JobFatalError.__name__),
            )
        finally:
            self._cancel_events.pop(job_id, None)

    async def _execute(self, job_id: str):
        job = self.result_store.get_job(job_id)
        if not job or job.is_terminal:
            return

        try:
            nodes = await self.metrics_repository.get_project_nodes(job.project_id)
        except Exception as e:
            logger.error(f"Failed to fetch nodes for project {job.project_id}: {e}")
            self.result_store.fail_job(
                job_id,
                JobError(
                    node_id=None,
                    message=f"Failed to fetch project nodes: {e}",
                    error_type=JobFatalError.__name__,
                ),
            )
            return

        # Normalization bounds come from the whole project, also for retries
        context = ScoringContext.from_nodes(nodes)
        if job.options.node_ids is not None:
            wanted = set(job.options.node_ids)
            nodes = [n for n in nodes if n.node_id in wanted]

        job = self.result_store.start_job(job_id, len(nodes))
        if not job:
            logger.info(f"Job {job_id} was cancelled before it started")
            return

        batch_size = job.options.batch_size
        batches = [nodes[i:i + batch_size] for i in range(0, len(nodes), batch_size)]
        logger.info(
            f"Processing job {job_id}: {len(nodes)} nodes in {len(batches)} batches "
            f"(max {job.options.max_concurrent_batches} concurrent)"
        )

        semaphore = asyncio.Semaphore(job.options.max_concurrent_batches)
        batch_tasks = []
        try:
            for index, batch in enumerate(batches):
                await semaphore.acquire()
                if self._is_cancelled(job_id):
                    semaphore.release()
                    logger.info(f"Job {job_id} cancelled, {len(batches) - index} batches not dispatched")
                    break
                task = asyncio.create_task(self._run_batch(job, index, batch, context, semaphore))
                batch_tasks.append((batch, task))

            results = await asyncio.gather(*[t for _, t in batch_tasks], return_exceptions=True)
        except asyncio.CancelledError:
            for _, task in batch_tasks:
                task.cancel()
            raise

        outcomes: List[NodeOutcome] = []
        for (batch, _), result in zip(batch_tasks, results):
            if isinstance(result, BaseException):
                logger.error(f"Batch task of job {job_id} raised: {result}")
                if not self._record_lost_batch(job, batch, result):
                    return
                continue
            outcomes.extend(result)

        summary = self._build_summary(job_id, outcomes)
        final = self.result_store.complete_job(job_id, summary)
        if final:
            logger.info(
                f"Job {job_id} finished with status {final.status.value}: "
                f"{final.processed_items} processed, {final.failed_items} failed"
            )

    def _record_lost_batch(self, job: ProcessingJob, batch: List[NodeMetrics], error: BaseException) -> bool:
        """
        Count every node of a batch whose outcome never reached the store
        as failed. If the store still refuses the update the job is failed.

        Returns False when the job was failed.
        """
        errors = [
            JobError(
                node_id=node.node_id,
                message=f"Failed to record batch outcome: {error}",
                retry_count=job.options.retry_attempt,
                error_type=type(error).__name__,
            )
            for node in batch
        ]
        try:
            self.result_store.apply_batch_outcome(job.id, 0, errors)
            return True
        except Exception as e:
            logger.error(f"Job {job.id}: result store unavailable: {e}")
            self.result_store.fail_job(
                job.id,
                JobError(
                    node_id=None,
                    message=f"Result store unavailable: {e}",
                    error_type=JobFatalError.__name__,
                ),
            )
            return False

    async def _run_batch(
        self,
        job: ProcessingJob,
        index: int,
        batch: List[NodeMetrics],
        context: ScoringContext,
        semaphore: asyncio.Semaphore,
    ) -> List[NodeOutcome]:
        """Process one batch and record its outcome. Releases the semaphore."""
        try:
            timeout = job.options.batch_timeout_seconds
            try:
                results = await asyncio.wait_for(
                    self._process_batch(job, batch, context),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                error = BatchTimeoutError(index, timeout)
                logger.warning(f"Job {job.id}: {error}")
                self.result_store.apply_batch_outcome(
                    job.id,
                    0,
                    [
                        JobError(
                            node_id=node.node_id,
                            message=str(error),
                            retry_count=job.options.retry_attempt,
                            error_type=BatchTimeoutError.__name__,
                        )
                        for node in batch
                    ],
                )
                return []

            outcomes: List[NodeOutcome] = []
            errors: List[JobError] = []
            for node, result in zip(batch, results):
                if isinstance(result, BaseException):
                    errors.append(JobError(
                        node_id=node.node_id,
                        message=str(result),
                        retry_count=job.options.retry_attempt,
                        error_type=type(result).__name__,
                    ))
                else:
                    outcomes.append(result)

            try:
                self._persist_outcomes(job, outcomes)
            except Exception as e:
                logger.error(f"Job {job.id}: failed to persist batch {index}: {e}")
                errors.extend(
                    JobError(
                        node_id=outcome.node_id,
                        message=f"Failed to persist results: {e}",
                        retry_count=job.options.retry_attempt,
                        error_type=type(e).__name__,
                    )
                    for outcome in outcomes
                )
                outcomes = []

            self.result_store.apply_batch_outcome(job.id, len(outcomes), errors)
            logger.debug(
                f"Job {job.id}: batch {index} done, {len(outcomes)} ok, {len(errors)} failed"
            )
            return outcomes
        finally:
            semaphore.release()

    async def _process_batch(
        self,
        job: ProcessingJob,
        batch: List[NodeMetrics],
        context: ScoringContext,
    ) -> list:
        return await asyncio.gather(
            *[self._process_node(job, node, context) for node in batch],
            return_exceptions=True,
        )

    async def _process_node(
        self,
        job: ProcessingJob,
        node: NodeMetrics,
        context: ScoringContext,
    ) -> NodeOutcome:
        """Score and/or project a single node."""
        outcome = NodeOutcome(node_id=node.node_id, sku_count=node.sku_count)
        try:
            if job.type.runs_scorer:
                outcome.score = self.scorer.score(node, context)
            if job.type.runs_calculator:
                target = job.options.target_position or default_target_position(node.position)
                outcome.projection = self.calculator.project(node, target, job.options.assumptions)
        except Exception as e:
            raise NodeProcessingError(node.node_id, str(e)) from e
        return outcome

    def _persist_outcomes(self, job: ProcessingJob, outcomes: List[NodeOutcome]):
        """Write the batch's results in one store call; nothing is kept if it fails."""
        if not outcomes:
            return

        opportunities = []
        if job.type.runs_scorer:
            opportunities = [
                build_opportunity(
                    outcome,
                    job.project_id,
                    job_id=job.id,
                    ttl_days=self.settings.OPPORTUNITY_TTL_DAYS,
                )
                for outcome in outcomes
            ]

        self.result_store.save_batch_results(
            job,
            scores=[o.score for o in outcomes if o.score],
            projections=[o.projection for o in outcomes if o.projection],
            opportunities=opportunities,
        )

    def _build_summary(self, job_id: str, outcomes: List[NodeOutcome]) -> Dict[str, Any]:
        job = self.result_store.get_job(job_id)
        total = job.total_items if job else len(outcomes)
        successful = job.processed_items if job else len(outcomes)
        failed = job.failed_items if job else 0
        limit = job.options.ranking_limit if job else self.settings.RANKING_LIMIT

        return {
            "total": total,
            "successful": successful,
            "failed": failed,
            "success_rate": round(successful / total * 100, 2) if total else 100.0,
            "ranked": [ranking_entry(o) for o in rank_outcomes(outcomes, limit)],
        }
