"""
Test Suite for Job and Result Storage

Runs the same behaviours against the in-memory JobTracker and the
SQL-backed store on an in-memory SQLite database.
"""

from datetime import timedelta

import pytest

from unittest.mock import MagicMock

from src.database import (
    OpportunityRecord,
    OpportunityScoreRecord,
    ProcessingJobRecord,
    SqlMetricsRepository,
    SqlResultStore,
    get_db_context,
)
from src.models import NodeMetrics, OpportunityCategory, OpportunityScore, PartialAssumptions, Timeframe
from src.persistence import JobError, JobOptions, JobStatus, JobTracker, JobType, ProcessingJob
from src.processing import BatchProcessor


@pytest.fixture(params=["memory", "sql"])
def store(request, session_factory):
    if request.param == "memory":
        return JobTracker()
    return SqlResultStore(session_factory)


# ============================================================================
# Shared store behaviour
# ============================================================================

class TestResultStore:
    """Behaviour every result store must share."""

    def test_create_and_get(self, store):
        options = JobOptions(
            batch_size=10,
            target_position=2,
            assumptions=PartialAssumptions(timeframe=Timeframe.AGGRESSIVE),
        )
        job = store.create_job(ProcessingJob.new(JobType.REVENUE, "p1", options))

        loaded = store.get_job(job.id)
        assert loaded.type == JobType.REVENUE
        assert loaded.status == JobStatus.PENDING
        assert loaded.options.batch_size == 10
        assert loaded.options.target_position == 2
        assert loaded.options.assumptions.timeframe == Timeframe.AGGRESSIVE

    def test_missing_job(self, store):
        assert store.get_job("job_missing") is None
        assert store.start_job("job_missing", 3) is None
        assert store.apply_batch_outcome("job_missing", 1, []) is None

    def test_start_only_from_pending(self, store):
        job = store.create_job(ProcessingJob.new(JobType.SCORING, "p1"))

        started = store.start_job(job.id, 4)
        assert started.status == JobStatus.PROCESSING
        assert started.total_items == 4
        assert started.started_at is not None
        assert store.start_job(job.id, 4) is None

    def test_batch_outcomes_accumulate(self, store):
        job = store.create_job(ProcessingJob.new(JobType.SCORING, "p1"))
        store.start_job(job.id, 4)

        store.apply_batch_outcome(job.id, 2, [])
        updated = store.apply_batch_outcome(
            job.id, 1, [JobError(node_id="n4", message="bad data")]
        )

        assert updated.processed_items == 3
        assert updated.failed_items == 1
        assert updated.progress == 100
        assert store.get_job(job.id).failed_node_ids() == ["n4"]

    def test_counters_never_exceed_total(self, store):
        job = store.create_job(ProcessingJob.new(JobType.SCORING, "p1"))
        store.start_job(job.id, 2)

        updated = store.apply_batch_outcome(
            job.id, 2, [JobError(node_id="x", message="late")]
        )
        assert updated.processed_items + updated.failed_items == 2
        assert updated.progress == 100

    def test_complete_job(self, store):
        job = store.create_job(ProcessingJob.new(JobType.SCORING, "p1"))
        store.start_job(job.id, 0)

        done = store.complete_job(job.id, {"total": 0})
        assert done.status == JobStatus.COMPLETED
        assert done.progress == 100
        assert done.result == {"total": 0}
        assert done.completed_at is not None

    def test_cancelled_job_stays_failed(self, store):
        job = store.create_job(ProcessingJob.new(JobType.SCORING, "p1"))
        store.start_job(job.id, 3)

        cancel_error = JobError(node_id=None, message="Job cancelled by user", error_type="CancellationError")
        cancelled = store.cancel_job(job.id, cancel_error)
        assert cancelled.cancelled is True
        assert cancelled.status == JobStatus.FAILED

        store.apply_batch_outcome(job.id, 1, [])
        final = store.complete_job(job.id, {"total": 3})
        assert final.status == JobStatus.FAILED
        assert final.result == {"total": 3}
        assert final.processed_items == 1

        assert store.cancel_job(job.id, cancel_error) is None

    def test_fail_job(self, store):
        job = store.create_job(ProcessingJob.new(JobType.SCORING, "p1"))

        failed = store.fail_job(job.id, JobError(node_id=None, message="fetch failed", error_type="JobFatalError"))
        assert failed.status == JobStatus.FAILED
        assert failed.errors[-1].error_type == "JobFatalError"
        assert store.fail_job(job.id, JobError(node_id=None, message="again")) is None

    def test_list_jobs(self, store):
        first = ProcessingJob.new(JobType.SCORING, "p1")
        second = ProcessingJob.new(JobType.REVENUE, "p1")
        second.created_at = first.created_at + timedelta(seconds=1)
        other = ProcessingJob.new(JobType.SCORING, "p2")
        for job in (first, second, other):
            store.create_job(job)
        store.start_job(second.id, 1)

        assert [j.id for j in store.list_jobs(project_id="p1")] == [second.id, first.id]
        assert [j.id for j in store.list_jobs(status=JobStatus.PROCESSING)] == [second.id]
        assert len(store.list_jobs(limit=1)) == 1

    def test_opportunities_last_write_wins(self, store, make_opportunity):
        store.upsert_opportunities([make_opportunity("a", 10.0), make_opportunity("b", 30.0)])
        store.upsert_opportunities([make_opportunity("a", 50.0)])
        store.upsert_opportunities([make_opportunity("z", 99.0, project_id="p2")])

        opportunities = store.list_opportunities("p1")
        assert [o.node_id for o in opportunities] == ["a", "b"]
        assert opportunities[0].combined_value == 50.0
        assert store.list_opportunities("p1", limit=1)[0].node_id == "a"

    def test_opportunities_scoped_by_project(self, store, make_opportunity):
        store.upsert_opportunities([make_opportunity("shoes", 40.0, project_id="p1")])
        store.upsert_opportunities([make_opportunity("shoes", 70.0, project_id="p2")])

        p1 = store.list_opportunities("p1")
        p2 = store.list_opportunities("p2")
        assert [(o.node_id, o.combined_value) for o in p1] == [("shoes", 40.0)]
        assert [(o.node_id, o.combined_value) for o in p2] == [("shoes", 70.0)]

    def test_opportunities_filtered_by_category(self, store, make_opportunity):
        store.upsert_opportunities([
            make_opportunity("a", 80.0, category=OpportunityCategory.QUICK_WIN),
            make_opportunity("b", 60.0, category=OpportunityCategory.LONG_TERM),
            make_opportunity("c", 20.0, category=OpportunityCategory.QUICK_WIN),
        ])

        quick_wins = store.list_opportunities("p1", category=OpportunityCategory.QUICK_WIN)
        assert [o.node_id for o in quick_wins] == ["a", "c"]
        assert all(o.category == OpportunityCategory.QUICK_WIN for o in quick_wins)
        assert len(store.list_opportunities("p1")) == 3
        assert store.list_opportunities("p1", category=OpportunityCategory.STRATEGIC) == []

    def test_batch_results_saved_together(self, store, make_opportunity):
        job = store.create_job(ProcessingJob.new(JobType.SCORING, "p1"))
        score = OpportunityScore(node_id="a", score=42, factor_breakdown={"ctr_gap": 0.5}, confidence=0.6)

        store.save_batch_results(job, [score], [], [make_opportunity("a", 42.0)])

        assert [o.node_id for o in store.list_opportunities("p1")] == ["a"]


# ============================================================================
# In-memory snapshots
# ============================================================================

class TestJobSnapshots:
    """JobTracker JSON snapshots."""

    def test_jobs_reloaded_from_disk(self, tmp_path):
        tracker = JobTracker(storage_path=str(tmp_path))
        job = tracker.create_job(ProcessingJob.new(JobType.FULL_ANALYSIS, "p1"))
        tracker.start_job(job.id, 2)
        tracker.apply_batch_outcome(job.id, 1, [JobError(node_id="n2", message="bad")])

        assert (tmp_path / f"{job.id}.json").exists()

        reloaded = JobTracker(storage_path=str(tmp_path)).get_job(job.id)
        assert reloaded.status == JobStatus.PROCESSING
        assert reloaded.processed_items == 1
        assert reloaded.errors[0].node_id == "n2"

    def test_corrupt_snapshot_skipped(self, tmp_path):
        (tmp_path / "broken.json").write_text("{not json")
        tracker = JobTracker(storage_path=str(tmp_path))
        assert tracker.list_jobs() == []


# ============================================================================
# SQL specifics
# ============================================================================

class TestSqlStore:
    """Behaviour specific to the SQL tables."""

    def test_unknown_stored_type_can_be_failed(self, session_factory):
        store = SqlResultStore(session_factory)
        with get_db_context(session_factory) as db:
            db.add(ProcessingJobRecord(
                id="job_legacy",
                type="keyword_sync",
                project_id="p1",
                status=JobStatus.PENDING,
                options={},
                errors=[],
            ))

        with pytest.raises(ValueError):
            store.get_job("job_legacy")

        assert store.fail_job("job_legacy", JobError(node_id=None, message="unknown type")) is None
        with get_db_context(session_factory) as db:
            assert db.get(ProcessingJobRecord, "job_legacy").status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_metrics_ordered_by_depth(self, session_factory):
        repository = SqlMetricsRepository(session_factory)
        repository.store_node_metrics("p1", [
            NodeMetrics("leaf", position=7.0, impressions=300, clicks=5, depth=3),
            NodeMetrics("root", position=2.0, impressions=9000, clicks=800, depth=0),
            NodeMetrics("unranked", position=None, depth=1),
        ])

        nodes = await repository.get_project_nodes("p1")

        assert [n.node_id for n in nodes] == ["root", "unranked", "leaf"]
        assert nodes[1].position == 20.0
        assert all(n.project_id == "p1" for n in nodes)
        assert await repository.get_project_nodes("p2") == []

    @pytest.mark.asyncio
    async def test_full_run_on_sql(self, session_factory, project_nodes, test_settings):
        repository = SqlMetricsRepository(session_factory)
        repository.store_node_metrics("p1", project_nodes)
        store = SqlResultStore(session_factory)
        processor = BatchProcessor(repository, store, settings=test_settings)

        job = await processor.create_job("full_analysis", "p1")
        job = await processor.wait_for_job(job.id)

        assert job.status == JobStatus.COMPLETED
        assert job.processed_items == len(project_nodes)
        assert job.progress == 100
        assert len(store.list_opportunities("p1")) == len(project_nodes)

    def test_batch_results_roll_back_together(self, session_factory, make_opportunity):
        store = SqlResultStore(session_factory)
        job = store.create_job(ProcessingJob.new(JobType.FULL_ANALYSIS, "p1"))
        score = OpportunityScore(node_id="a", score=42, factor_breakdown={"ctr_gap": 0.5}, confidence=0.6)
        broken = MagicMock(node_id="a")
        broken.to_dict.side_effect = RuntimeError("serialization failed")

        with pytest.raises(RuntimeError):
            store.save_batch_results(job, [score], [broken], [make_opportunity("a", 42.0)])

        with get_db_context(session_factory) as db:
            assert db.query(OpportunityScoreRecord).count() == 0
            assert db.query(OpportunityRecord).count() == 0

    @pytest.mark.asyncio
    async def test_sku_count_stored(self, session_factory):
        repository = SqlMetricsRepository(session_factory)
        repository.store_node_metrics("p1", [NodeMetrics("shoes", sku_count=250)])

        nodes = await repository.get_project_nodes("p1")

        assert nodes[0].sku_count == 250
