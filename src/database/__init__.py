"""
Database Layer

Usage:
    from src.database import init_db, SqlMetricsRepository, SqlResultStore

    init_db()
    processor = BatchProcessor(SqlMetricsRepository(), SqlResultStore())
"""

# Models
from .models import (
    Base,
    NodeMetricsRecord,
    ProcessingJobRecord,
    OpportunityScoreRecord,
    RevenueProjectionRecord,
    OpportunityRecord,
)

# Session management
from .session import (
    get_database_url,
    create_db_engine,
    get_engine,
    make_session_factory,
    get_session_factory,
    get_db_context,
    init_db,
    check_db_connection,
)

# Repository
from .repository import SqlMetricsRepository, SqlResultStore

__all__ = [
    "Base",
    "NodeMetricsRecord",
    "ProcessingJobRecord",
    "OpportunityScoreRecord",
    "RevenueProjectionRecord",
    "OpportunityRecord",
    "get_database_url",
    "create_db_engine",
    "get_engine",
    "make_session_factory",
    "get_session_factory",
    "get_db_context",
    "init_db",
    "check_db_connection",
    "SqlMetricsRepository",
    "SqlResultStore",
]
