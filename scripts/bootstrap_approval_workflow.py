#!/usr/bin/env python3
"""
Approval workflow bootstrap.

Seeds a release schedule for every panel source, approves every source
value from runs started before the current month, and mirrors the
ledger's Meta tab into source_statistics.

Usage:
    python scripts/bootstrap_approval_workflow.py
    python scripts/bootstrap_approval_workflow.py --skip-statistics
"""

import argparse
import logging
import sys
from datetime import date, datetime
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from uncertainty_index.approvals.workflow import auto_approve_historical_rows
from uncertainty_index.core.database import create_tables, get_session_factory
from uncertainty_index.ingest.schedules import seed_source_schedules
from uncertainty_index.ingest.statistics import refresh_statistics_from_ledger
from uncertainty_index.ledger.sheets import TabularLedger
from uncertainty_index.sources.registry import build_survey_panel

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Bootstrap the approval workflow")
    parser.add_argument("--skip-statistics", action="store_true", help="Do not read the Meta tab")
    args = parser.parse_args()

    create_tables()
    panel = build_survey_panel()
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        today = date.today()
        seeded = seed_source_schedules(db, panel.adapters, today)

        cutoff = datetime(today.year, today.month, 1)
        approved = auto_approve_historical_rows(db, cutoff)

        refreshed = 0
        if not args.skip_statistics:
            refreshed = refresh_statistics_from_ledger(db, TabularLedger.from_settings())

        print(f"Seeded {seeded} schedules, auto-approved {approved} rows, refreshed {refreshed} statistics")
        print("Approval workflow bootstrap complete.")
        return 0
    except Exception:
        logger.exception("Approval workflow bootstrap failed")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
