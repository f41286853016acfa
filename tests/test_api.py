"""
Test Suite for the Batch Job API
"""

import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.jobs import router, get_processor
from src.models import OpportunityCategory
from src.persistence import JobError, JobStatus, JobType, ProcessingJob
from src.processing import BatchProcessor


@pytest.fixture
def client(processor: BatchProcessor):
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_processor] = lambda: processor

    with TestClient(app) as test_client:
        yield test_client


def seed_job(tracker, status: JobStatus, errors=None) -> ProcessingJob:
    job = ProcessingJob.new(JobType.SCORING, "p1")
    job.update_status(status)
    job.errors = errors or []
    return tracker.create_job(job)


def poll_until_terminal(client, job_id: str, attempts: int = 100) -> dict:
    for _ in range(attempts):
        body = client.get(f"/api/jobs/{job_id}").json()
        if body["status"] in ("completed", "failed"):
            return body
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish")


class TestJobEndpoints:
    """Test job creation and inspection."""

    def test_create_job_runs_in_background(self, client):
        response = client.post("/api/jobs", json={"type": "full_analysis", "project_id": "p1"})

        assert response.status_code == 201
        job_id = response.json()["id"]

        body = poll_until_terminal(client, job_id)
        assert body["status"] == "completed"
        assert body["progress"] == 100
        assert body["processed_items"] == 5
        assert len(body["result"]["ranked"]) == 5

    def test_create_job_invalid_type(self, client, tracker):
        response = client.post("/api/jobs", json={"type": "keywords", "project_id": "p1"})

        assert response.status_code == 400
        assert tracker.list_jobs() == []

    def test_create_job_invalid_options(self, client):
        response = client.post(
            "/api/jobs",
            json={"type": "scoring", "project_id": "p1", "options": {"batch_size": 0}},
        )
        assert response.status_code == 400

    @pytest.mark.parametrize("options", [
        {"batch_size": "10"},
        {"max_concurrent_batches": True},
        {"batch_timeout_seconds": "fast"},
        {"assumptions": {"ctr_improvement": "high"}},
    ])
    def test_create_job_mistyped_options(self, client, tracker, options):
        response = client.post(
            "/api/jobs",
            json={"type": "scoring", "project_id": "p1", "options": options},
        )

        assert response.status_code == 400
        assert tracker.list_jobs() == []

    @pytest.mark.parametrize("options", [
        {"retry_attempt": 9},
        {"node_ids": ["shoes"]},
        {"unknown_key": 1},
    ])
    def test_create_job_rejects_internal_options(self, client, tracker, options):
        response = client.post(
            "/api/jobs",
            json={"type": "scoring", "project_id": "p1", "options": options},
        )

        assert response.status_code == 400
        assert tracker.list_jobs() == []

    def test_get_unknown_job(self, client):
        assert client.get("/api/jobs/job_missing").status_code == 404

    def test_list_jobs(self, client, tracker):
        seed_job(tracker, JobStatus.COMPLETED)
        seed_job(tracker, JobStatus.FAILED)

        response = client.get("/api/jobs", params={"status": "failed"})
        assert response.status_code == 200
        assert response.json()["total"] == 1

        assert client.get("/api/jobs", params={"status": "bogus"}).status_code == 400


class TestCancelAndRetry:
    """Test cancel and retry endpoints."""

    def test_cancel_completed_job(self, client, tracker):
        job = seed_job(tracker, JobStatus.COMPLETED)

        response = client.post(f"/api/jobs/{job.id}/cancel")
        assert response.status_code == 200
        assert response.json() == {"job_id": job.id, "cancelled": False}

    def test_cancel_unknown_job(self, client):
        assert client.post("/api/jobs/job_missing/cancel").status_code == 404

    def test_retry_without_failures(self, client, tracker):
        job = seed_job(tracker, JobStatus.COMPLETED)
        assert client.post(f"/api/jobs/{job.id}/retry").status_code == 400

    def test_retry_failed_items(self, client, tracker):
        job = seed_job(
            tracker,
            JobStatus.COMPLETED,
            errors=[JobError(node_id="shoes", message="timeout", error_type="BatchTimeoutError")],
        )

        response = client.post(f"/api/jobs/{job.id}/retry")
        assert response.status_code == 201
        body = response.json()
        assert body["parent_job_id"] == job.id
        assert body["options"]["node_ids"] == ["shoes"]

        finished = poll_until_terminal(client, body["id"])
        assert finished["total_items"] == 1

    def test_retry_unknown_job(self, client):
        assert client.post("/api/jobs/job_missing/retry").status_code == 404


class TestOpportunityEndpoint:
    """Test ranked opportunity listing."""

    def test_list_opportunities(self, client, tracker, make_opportunity):
        tracker.upsert_opportunities([
            make_opportunity("a", 12.0),
            make_opportunity("b", 64.0),
            make_opportunity("c", 30.0, project_id="p2"),
        ])

        response = client.get("/api/projects/p1/opportunities")

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert [o["node_id"] for o in body["opportunities"]] == ["b", "a"]
        assert {"category", "effort"} <= set(body["opportunities"][0])

    def test_list_opportunities_by_category(self, client, tracker, make_opportunity):
        tracker.upsert_opportunities([
            make_opportunity("a", 80.0, category=OpportunityCategory.QUICK_WIN),
            make_opportunity("b", 64.0, category=OpportunityCategory.STRATEGIC),
        ])

        response = client.get("/api/projects/p1/opportunities", params={"category": "quick-win"})

        assert response.status_code == 200
        body = response.json()
        assert [o["node_id"] for o in body["opportunities"]] == ["a"]
        assert body["opportunities"][0]["category"] == "quick-win"

    def test_list_opportunities_invalid_category(self, client):
        response = client.get("/api/projects/p1/opportunities", params={"category": "someday"})

        assert response.status_code == 400
