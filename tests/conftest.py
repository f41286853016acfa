"""
Pytest Configuration and Shared Fixtures

Provides common fixtures and configuration for all test modules.
"""

import pytest
from datetime import datetime, timedelta
from typing import List

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from src.database import init_db, make_session_factory
from src.models import NodeMetrics, Opportunity, OpportunityCategory
from src.persistence import InMemoryMetricsRepository, JobTracker
from src.processing import BatchProcessor
from src.utils.config import Settings


# ============================================================================
# Node Fixtures
# ============================================================================

@pytest.fixture
def sample_node() -> NodeMetrics:
    """Position-5 node with a CTR well below the curve."""
    return NodeMetrics(
        node_id="running-shoes",
        position=5.0,
        impressions=10000,
        clicks=200,
        sessions=180,
        revenue=9000.0,
        transactions=90,
        project_id="p1",
        depth=2,
    )


@pytest.fixture
def empty_node() -> NodeMetrics:
    """Node without any traffic."""
    return NodeMetrics(node_id="new-category", project_id="p1", depth=3)


@pytest.fixture
def project_nodes() -> List[NodeMetrics]:
    """A small taxonomy with mixed data quality, deliberately out of depth order."""
    return [
        NodeMetrics("trail-shoes", position=12.3, impressions=4200, clicks=38,
                    sessions=35, revenue=1800.0, transactions=12, project_id="p1", depth=3),
        NodeMetrics("shoes", position=3.2, impressions=52000, clicks=4100,
                    sessions=3900, revenue=48000.0, transactions=410, project_id="p1", depth=1),
        NodeMetrics("running-shoes", position=5.0, impressions=10000, clicks=200,
                    sessions=180, revenue=9000.0, transactions=90, project_id="p1", depth=2),
        NodeMetrics("kids-shoes", position=18.0, impressions=900, clicks=4,
                    sessions=4, revenue=0.0, transactions=0, project_id="p1", depth=2),
        NodeMetrics("new-category", project_id="p1", depth=3),
    ]


@pytest.fixture
def make_opportunity():
    """Factory for persisted opportunities with a given combined value."""
    def _make(
        node_id: str,
        value: float,
        project_id: str = "p1",
        category: OpportunityCategory = OpportunityCategory.MAINTAIN,
    ) -> Opportunity:
        now = datetime.now()
        return Opportunity(
            node_id=node_id,
            project_id=project_id,
            score=int(value),
            revenue_potential=value * 100,
            priority=3,
            factors={"ctr_gap": 0.4},
            combined_value=value,
            confidence=0.8,
            category=category,
            computed_at=now,
            valid_until=now + timedelta(days=7),
        )
    return _make


# ============================================================================
# Processing Fixtures
# ============================================================================

@pytest.fixture
def test_settings() -> Settings:
    """Small batches so a handful of nodes spans several of them."""
    return Settings(
        DATABASE_URL=None,
        BATCH_SIZE=2,
        MAX_CONCURRENT_BATCHES=2,
        BATCH_TIMEOUT_SECONDS=5.0,
        RETRY_BATCH_SIZE=50,
        RETRY_MAX_RETRIES=5,
        JOBS_PATH=None,
    )


@pytest.fixture
def metrics_repository(project_nodes) -> InMemoryMetricsRepository:
    return InMemoryMetricsRepository({"p1": project_nodes})


@pytest.fixture
def tracker() -> JobTracker:
    return JobTracker()


@pytest.fixture
def processor(metrics_repository, tracker, test_settings) -> BatchProcessor:
    return BatchProcessor(metrics_repository, tracker, settings=test_settings)


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def session_factory():
    """In-memory SQLite shared across sessions, fresh per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()
