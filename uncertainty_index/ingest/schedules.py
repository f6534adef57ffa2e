"""
Release schedule tracking.

Each source has a next expected publication date. A genuine observation
(fresh, not carried forward, not locked) pushes that date forward in whole
cadence steps until it lies after the observation's date. Approvers use
the resulting due state to judge whether a carried-forward value is
expected or overdue.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from uncertainty_index.core.models import SourceReleaseSchedule
from uncertainty_index.core.periods import add_months
from uncertainty_index.sources.base import Frequency, SurveyAdapter

logger = logging.getLogger(__name__)


class ScheduleError(Exception):
    """Invalid schedule request (bad cadence or date)."""
    pass


class UnknownSourceError(ScheduleError):
    """The source name is not part of the panel."""
    pass


@dataclass
class ScheduleEntry:
    source_name: str
    source_url: str
    frequency: str
    release_cadence: str
    advance_months: int
    next_expected_release_date: date
    configured: bool


def default_advance_months(frequency) -> int:
    return 3 if Frequency(frequency) == Frequency.QUARTERLY else 1


def get_schedule(db: Session, source_name: str) -> Optional[SourceReleaseSchedule]:
    return (
        db.query(SourceReleaseSchedule)
        .filter(SourceReleaseSchedule.source_name == source_name)
        .first()
    )


def advance_source_release_schedule(db: Session, source_name: str, reference_date: date) -> bool:
    """
    Move a source's next expected release past reference_date.

    Steps are computed from the stored date (stored + k * cadence) so
    month-end dates do not drift. The date only ever moves forward. The
    caller commits.

    Returns:
        True if the schedule changed
    """
    schedule = get_schedule(db, source_name)
    if schedule is None:
        return False

    original = schedule.next_expected_release_date
    step = max(1, schedule.advance_months or 1)
    steps = 0
    candidate = original
    while candidate <= reference_date:
        steps += 1
        candidate = add_months(original, step * steps)

    if candidate == original:
        return False

    schedule.next_expected_release_date = candidate
    schedule.updated_at = datetime.utcnow()
    db.flush()
    logger.info(f"Advanced release schedule for {source_name}: {original} -> {candidate}")
    return True


def list_source_schedules(db: Session, adapters: Sequence[SurveyAdapter], today: date) -> List[ScheduleEntry]:
    """One entry per panel source; unconfigured sources fall back to today + cadence."""
    stored = {s.source_name: s for s in db.query(SourceReleaseSchedule).all()}
    entries = []
    for adapter in adapters:
        schedule = stored.get(adapter.name)
        advance = schedule.advance_months if schedule else default_advance_months(adapter.frequency)
        entries.append(ScheduleEntry(
            source_name=adapter.name,
            source_url=adapter.source_url,
            frequency=adapter.frequency.value,
            release_cadence=adapter.release_cadence,
            advance_months=advance,
            next_expected_release_date=(
                schedule.next_expected_release_date if schedule else add_months(today, advance)
            ),
            configured=schedule is not None,
        ))
    return entries


def upsert_source_schedule(
    db: Session,
    adapters: Sequence[SurveyAdapter],
    source_name: str,
    advance_months: int,
    next_expected_release_date: date,
) -> SourceReleaseSchedule:
    """
    Create or overwrite one source's schedule.

    Raises:
        UnknownSourceError: source_name is not in the panel
        ScheduleError: advance_months < 1
    """
    source_name = (source_name or "").strip()
    if not any(a.name == source_name for a in adapters):
        raise UnknownSourceError(f"Unknown source: {source_name}")
    if advance_months is None or int(advance_months) < 1:
        raise ScheduleError("advance_months must be at least 1")

    schedule = get_schedule(db, source_name)
    if schedule is None:
        schedule = SourceReleaseSchedule(source_name=source_name)
        db.add(schedule)
    schedule.advance_months = int(advance_months)
    schedule.next_expected_release_date = next_expected_release_date
    schedule.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(schedule)
    return schedule


def seed_source_schedules(db: Session, adapters: Sequence[SurveyAdapter], today: date) -> int:
    """Reset every panel source to its default cadence, due one step from today."""
    for adapter in adapters:
        advance = default_advance_months(adapter.frequency)
        upsert_source_schedule(db, adapters, adapter.name, advance, add_months(today, advance))
    logger.info(f"Seeded release schedules for {len(adapters)} sources")
    return len(adapters)
