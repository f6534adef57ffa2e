"""
Main FastAPI application.

Trigger boundary for the monthly ingest and approval workflow.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from uncertainty_index.api.v1 import approvals, ingest, source_schedules
from uncertainty_index.core.config import get_settings
from uncertainty_index.core.database import check_connection, create_tables
from uncertainty_index.jobs.monthly_scheduler import start_scheduler, stop_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Creates tables on startup and optionally runs the monthly scheduler.
    """
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level)
    logger.info("Starting Uncertainty Index Ingestion Service")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Max concurrency: {settings.max_concurrency}")

    try:
        create_tables()
        logger.info("Database tables ready")
    except Exception as e:
        logger.error(f"Failed to create tables: {e}")
        raise

    if settings.scheduler_enabled:
        start_scheduler()

    yield

    if settings.scheduler_enabled:
        stop_scheduler()
    logger.info("Shutting down")


app = FastAPI(
    title="Uncertainty Index Ingestion Service",
    description="Monthly survey ingestion, ledger sync and approval workflow",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ingest.router, prefix="/api/v1")
app.include_router(approvals.router, prefix="/api/v1")
app.include_router(source_schedules.router, prefix="/api/v1")


@app.get("/")
def root():
    """Root endpoint with service info."""
    return {
        "service": "Uncertainty Index Ingestion Service",
        "version": "0.1.0",
        "docs": "/docs"
    }


@app.get("/health")
def health_check():
    """
    Health check endpoint.

    Returns status of the service and database connectivity.
    """
    health_status = {
        "status": "healthy",
        "service": "running",
        "database": "unknown"
    }

    try:
        check_connection()
        health_status["database"] = "connected"
    except Exception as e:
        health_status["status"] = "degraded"
        health_status["database"] = f"error: {str(e)}"
        logger.warning(f"Database health check failed: {e}")

    return health_status
