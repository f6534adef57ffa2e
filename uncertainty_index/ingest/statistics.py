"""
Per-source weights and rolling statistics.

The ledger's Meta tab is the authoritative copy; source_statistics mirrors
it so validation can run without an extra ledger round trip.
"""
import logging
from datetime import datetime
from typing import Dict

from sqlalchemy.orm import Session

from uncertainty_index.core.models import SourceStatistic
from uncertainty_index.ingest.validation import SourceStats
from uncertainty_index.ledger.sheets import TabularLedger, normalize_header

logger = logging.getLogger(__name__)


def load_statistics_map(db: Session) -> Dict[str, SourceStats]:
    """Normalized ledger header -> SourceStats."""
    return {
        normalize_header(row.source_name): SourceStats(mean=row.mean, stdev=row.stdev, weight=row.weight)
        for row in db.query(SourceStatistic).all()
    }


def refresh_statistics_from_ledger(db: Session, ledger: TabularLedger) -> int:
    """
    Copy the Meta tab into source_statistics.

    Returns:
        Number of surveys written
    """
    entries = ledger.read_meta_statistics()
    existing = {row.source_name: row for row in db.query(SourceStatistic).all()}

    for entry in entries:
        row = existing.get(entry.survey)
        if row is None:
            row = SourceStatistic(source_name=entry.survey)
            db.add(row)
        row.weight = entry.weight
        row.mean = entry.mean
        row.stdev = entry.stdev
        row.direction = entry.direction
        row.updated_at = datetime.utcnow()

    db.commit()
    logger.info(f"Refreshed statistics for {len(entries)} surveys from ledger")
    return len(entries)


def update_source_weight(db: Session, ledger: TabularLedger, survey: str, weight: float) -> SourceStatistic:
    """Write a survey's index weight to the Meta tab, then to the store."""
    ledger.update_meta_weight(survey, weight)

    row = db.query(SourceStatistic).filter(SourceStatistic.source_name == survey).first()
    if row is None:
        row = SourceStatistic(source_name=survey)
        db.add(row)
    row.weight = weight
    row.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(row)
    return row
