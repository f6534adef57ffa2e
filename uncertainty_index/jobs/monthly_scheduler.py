"""
Scheduled monthly ingest.

Runs the current month's ingest on a fixed day and hour each month
(MONTHLY_INGEST_CRON_DAY / MONTHLY_INGEST_CRON_HOUR). Before ingesting,
the source statistics are refreshed from the ledger's Meta tab; a failed
refresh falls back to the stored statistics.
"""
import logging
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from uncertainty_index.core.config import get_settings
from uncertainty_index.core.database import get_session_factory
from uncertainty_index.ingest.orchestrator import run_monthly_ingest
from uncertainty_index.ingest.statistics import refresh_statistics_from_ledger
from uncertainty_index.ledger.sheets import TabularLedger
from uncertainty_index.sources.registry import build_survey_panel

logger = logging.getLogger(__name__)

MONTHLY_INGEST_JOB_ID = "monthly_ingest"

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler()
    return _scheduler


async def run_scheduled_monthly_ingest() -> Optional[Dict[str, Any]]:
    """
    Job body: refresh statistics, then ingest the current month.

    Errors are logged rather than raised so the scheduler keeps running;
    the failed run is already recorded in ingest_runs.
    """
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        ledger = TabularLedger.from_settings()
        try:
            refresh_statistics_from_ledger(db, ledger)
        except Exception as e:
            db.rollback()
            logger.warning(f"Statistics refresh failed, using stored values: {e}")

        async with build_survey_panel() as panel:
            result = await run_monthly_ingest(db, ledger, panel.adapters)

        logger.info(
            f"Scheduled ingest for {result.month} finished "
            f"(run {result.ingest_run_id}, {len(result.warnings)} warnings)"
        )
        return {"ingest_run_id": result.ingest_run_id, "month": result.month, "warnings": result.warnings}
    except Exception:
        logger.exception("Scheduled monthly ingest failed")
        return None
    finally:
        db.close()


def register_monthly_ingest(scheduler: Optional[AsyncIOScheduler] = None) -> AsyncIOScheduler:
    """Add (or replace) the monthly ingest job using the configured day and hour."""
    settings = get_settings()
    scheduler = scheduler or get_scheduler()
    trigger = CronTrigger(
        day=settings.monthly_ingest_cron_day,
        hour=settings.monthly_ingest_cron_hour,
        minute=0,
    )
    scheduler.add_job(
        run_scheduled_monthly_ingest,
        trigger=trigger,
        id=MONTHLY_INGEST_JOB_ID,
        name="Monthly uncertainty index ingest",
        replace_existing=True,
    )
    logger.info(
        f"Registered monthly ingest: day {settings.monthly_ingest_cron_day} "
        f"at {settings.monthly_ingest_cron_hour:02d}:00"
    )
    return scheduler


def start_scheduler():
    """Start the scheduler if not already running."""
    scheduler = register_monthly_ingest()
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def stop_scheduler():
    scheduler = get_scheduler()
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
