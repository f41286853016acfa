"""
Taxonomy Opportunity Engine API

Run with:
    uvicorn api.app:app --reload
"""

import logging
import sys

from fastapi import FastAPI

from src import __version__
from src.database import init_db, check_db_connection
from src.utils.config import get_settings

from api.jobs import router as jobs_router, get_processor

# Configure logging to stdout
logging.basicConfig(
    level=get_settings().LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

app = FastAPI(
    title="Taxonomy Opportunity Engine",
    description="Opportunity scoring and revenue projection for taxonomy nodes",
    version=__version__,
)

app.include_router(jobs_router)


# ============================================================================
# STARTUP / SHUTDOWN
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize database on startup."""
    logger.info("Initializing database...")
    try:
        init_db()
        if check_db_connection():
            logger.info("Database connection verified")
        else:
            logger.warning("Database connection check failed - continuing anyway")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop background jobs still running."""
    processor = app.dependency_overrides.get(get_processor, get_processor)()
    await processor.shutdown()


@app.get("/health")
async def health():
    return {"status": "healthy", "version": __version__}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.app:app",
        host="0.0.0.0",
        port=8000,
        reload=get_settings().ENVIRONMENT == "development",
    )
