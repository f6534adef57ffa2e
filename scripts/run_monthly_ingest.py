#!/usr/bin/env python3
"""
Run the monthly ingest (or a backfill) from the command line.

Usage:
    python scripts/run_monthly_ingest.py
    python scripts/run_monthly_ingest.py --month "Mar 2026"
    python scripts/run_monthly_ingest.py --backfill 6
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from uncertainty_index.core.database import create_tables, get_session_factory
from uncertainty_index.core.periods import parse_month_label
from uncertainty_index.ingest.orchestrator import run_backfill, run_monthly_ingest
from uncertainty_index.ledger.sheets import TabularLedger
from uncertainty_index.sources.registry import build_survey_panel

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def run(args) -> int:
    SessionLocal = get_session_factory()
    db = SessionLocal()
    ledger = TabularLedger.from_settings()
    try:
        async with build_survey_panel() as panel:
            if args.backfill:
                result = await run_backfill(db, ledger, panel.adapters, months=args.backfill)
                for month in result.results:
                    line = f"  {month.month}: {month.status.value}"
                    if month.error:
                        line += f" ({month.error})"
                    print(line)
                print(f"Backfill {result.status}")
                return 0 if result.status == "ok" else 1

            target = parse_month_label(args.month) if args.month else None
            if args.month and target is None:
                print(f"Invalid month label: {args.month}")
                return 2
            result = await run_monthly_ingest(db, ledger, panel.adapters, target_month=target)
            print(f"Ingest run {result.ingest_run_id} for {result.month} complete")
            for warning in result.warnings:
                print(f"  warning: {warning}")
            return 0
    finally:
        db.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the uncertainty index ingest")
    parser.add_argument("--month", help="Month label, e.g. 'Mar 2026' (defaults to current month)")
    parser.add_argument("--backfill", type=int, metavar="N", help="Re-run the last N months instead")
    args = parser.parse_args()

    create_tables()
    try:
        return asyncio.run(run(args))
    except Exception:
        logger.exception("Ingest failed")
        return 1


if __name__ == "__main__":
    sys.exit(main())
