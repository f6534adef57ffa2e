#!/usr/bin/env python3
"""
Patch hand-entered values into the ledger's Data tab.

Values come from a JSON file shaped {"Nov 2025": {"<header>": 111.6, ...}}
or from --month with repeated --set "<header>=<value>".

Usage:
    python scripts/patch_manual_values.py --file manual_values.json
    python scripts/patch_manual_values.py --month "Feb 2026" \
        --set "Conference Board Consumer Confidence=84.5"
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from uncertainty_index.ingest.orchestrator import apply_manual_values
from uncertainty_index.ledger.sheets import TabularLedger

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def parse_assignments(assignments) -> Dict[str, float]:
    values = {}
    for item in assignments:
        header, sep, raw = item.rpartition("=")
        if not sep or not header.strip():
            raise ValueError(f"Expected <header>=<value>, got {item!r}")
        values[header.strip()] = float(raw)
    return values


def main() -> int:
    parser = argparse.ArgumentParser(description="Patch manual values into the ledger")
    parser.add_argument("--file", type=Path, help="JSON file of month -> {header: value}")
    parser.add_argument("--month", help="Month label for --set values")
    parser.add_argument("--set", action="append", default=[], dest="assignments", metavar="HEADER=VALUE")
    args = parser.parse_args()

    if args.file:
        updates = json.loads(args.file.read_text(encoding="utf-8"))
    elif args.month and args.assignments:
        updates = {args.month: parse_assignments(args.assignments)}
    else:
        parser.error("either --file or --month with --set is required")

    ledger = TabularLedger.from_settings()
    for month, values in updates.items():
        try:
            apply_manual_values(ledger, month, values)
        except Exception:
            logger.exception(f"Failed to patch {month}")
            return 1
        print(f"Patched {month}: {', '.join(sorted(values))}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
