"""
Human approval of a month's ingested source values.

Snapshots and the gate are always computed from the persisted run and
source rows; approvals arrive asynchronously, often from another process,
so nothing here is cached.
"""
import enum
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, List, Optional, Sequence, Union

from sqlalchemy.orm import Session

from uncertainty_index.core.models import (
    ApprovalStatus,
    IngestRun,
    IngestRunStatus,
    SourceReleaseSchedule,
    SourceValue,
)
from uncertainty_index.ingest.orchestrator import apply_manual_values
from uncertainty_index.ingest.resolution import calculate_delta
from uncertainty_index.ledger.sheets import TabularLedger
from uncertainty_index.sources.base import SurveyAdapter

logger = logging.getLogger(__name__)

APPROVAL_ACTIONS = ("approve", "reject", "edit")


class ApprovalActionError(Exception):
    """Invalid approval request (unknown action, missing or non-numeric value)."""
    pass


class SourceValueNotFoundError(Exception):
    pass


class DueState(str, enum.Enum):
    PAST_DUE = "PAST_DUE"
    UPCOMING = "UPCOMING"
    UNKNOWN = "UNKNOWN"


class GateState(str, enum.Enum):
    """Run-then-approve gate consumed by downstream newsletter generation."""
    NOT_RUN = "NOT_RUN"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"


@dataclass
class ApprovalRow:
    id: int
    source_name: str
    source_url: str
    value: Optional[float]
    previous_value: Optional[float]
    delta: Optional[float]
    status: str
    message: Optional[str]
    carried_forward: bool
    approval_status: ApprovalStatus
    approval_note: Optional[str]
    approved_at: Optional[datetime]
    approved_by: Optional[str]
    next_expected_release_date: Optional[date]
    due_state: DueState
    due_label: str


@dataclass
class ApprovalSnapshot:
    month: str
    ingest_run_id: int
    ingest_status: IngestRunStatus
    started_at: datetime
    message: Optional[str]
    all_approved: bool
    pending_count: int
    source_count: int
    rows: List[ApprovalRow] = field(default_factory=list)


@dataclass
class ApprovalGateResult:
    ok: bool
    reason: Optional[str] = None
    snapshot: Optional[ApprovalSnapshot] = None


def _as_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


def format_due_label(next_expected_release_date: Optional[date], now: Optional[datetime] = None):
    """
    Due state and display label for a release date.

    Returns:
        (DueState, label), e.g. (PAST_DUE, "Past due · October 5, 2026")
    """
    if next_expected_release_date is None:
        return DueState.UNKNOWN, "No release date configured"

    today = _as_date(now or datetime.utcnow())
    release = _as_date(next_expected_release_date)
    state = DueState.PAST_DUE if release < today else DueState.UPCOMING
    prefix = "Past due" if state == DueState.PAST_DUE else "Upcoming"
    return state, f"{prefix} · {release:%B} {release.day}, {release.year}"


def _latest_run(db: Session, month: str) -> Optional[IngestRun]:
    return (
        db.query(IngestRun)
        .filter(IngestRun.month == month)
        .order_by(IngestRun.started_at.desc(), IngestRun.id.desc())
        .first()
    )


def get_approval_snapshot_for_month(
    db: Session, month: str, now: Optional[datetime] = None
) -> Optional[ApprovalSnapshot]:
    """
    Build the approval snapshot from the month's most recent run.

    Returns:
        ApprovalSnapshot, or None if the month has never been ingested
    """
    run = _latest_run(db, month)
    if run is None:
        return None

    sources = sorted(run.sources, key=lambda s: s.source_name)
    names = [s.source_name for s in sources]
    schedules = {}
    if names:
        schedules = {
            s.source_name: s
            for s in db.query(SourceReleaseSchedule)
            .filter(SourceReleaseSchedule.source_name.in_(names))
            .all()
        }

    rows = []
    for source in sources:
        schedule = schedules.get(source.source_name)
        next_release = schedule.next_expected_release_date if schedule else None
        due_state, due_label = format_due_label(next_release, now)
        rows.append(ApprovalRow(
            id=source.id,
            source_name=source.source_name,
            source_url=source.source_url,
            value=source.value,
            previous_value=source.previous_value,
            delta=source.delta,
            status=source.status.value,
            message=source.message,
            carried_forward=source.carried_forward,
            approval_status=source.approval_status,
            approval_note=source.approval_note,
            approved_at=source.approved_at,
            approved_by=source.approved_by,
            next_expected_release_date=next_release,
            due_state=due_state,
            due_label=due_label,
        ))

    pending = sum(1 for r in rows if r.approval_status != ApprovalStatus.APPROVED)
    return ApprovalSnapshot(
        month=run.month,
        ingest_run_id=run.id,
        ingest_status=run.status,
        started_at=run.started_at,
        message=run.message,
        all_approved=bool(rows) and pending == 0,
        pending_count=pending,
        source_count=len(rows),
        rows=rows,
    )


def assert_month_approved(db: Session, month: str) -> ApprovalGateResult:
    """Check the month's gate; failures come back as a reason, never raised."""
    return _gate_from_snapshot(month, get_approval_snapshot_for_month(db, month))


def _gate_from_snapshot(month: str, snapshot: Optional[ApprovalSnapshot]) -> ApprovalGateResult:
    if snapshot is None:
        return ApprovalGateResult(ok=False, reason=f"No ingest run found for {month}. Run scrape first.")
    if snapshot.ingest_status != IngestRunStatus.SUCCESS:
        return ApprovalGateResult(ok=False, reason=f"Latest ingest for {month} is not successful.")
    if snapshot.source_count == 0:
        return ApprovalGateResult(ok=False, reason=f"No source values found for {month}. Run scrape first.")
    if not snapshot.all_approved:
        plural = "" if snapshot.pending_count == 1 else "s"
        return ApprovalGateResult(
            ok=False,
            reason=f"Approval pending for {snapshot.pending_count} source value{plural}.",
        )
    return ApprovalGateResult(ok=True, snapshot=snapshot)


def get_gate_state(db: Session, month: str) -> GateState:
    snapshot = get_approval_snapshot_for_month(db, month)
    if _gate_from_snapshot(month, snapshot).ok:
        return GateState.APPROVED
    if snapshot is None or snapshot.ingest_status != IngestRunStatus.SUCCESS or snapshot.source_count == 0:
        return GateState.NOT_RUN
    return GateState.PENDING_APPROVAL


def _parse_edit_value(value: Any) -> float:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ApprovalActionError("value is required for edit")
    if isinstance(value, bool):
        raise ApprovalActionError("value must be numeric")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ApprovalActionError("value must be numeric")
    if not math.isfinite(number):
        raise ApprovalActionError("value must be numeric")
    return number


def mutate_approval(
    db: Session,
    source_value_id: int,
    action: str,
    actor: Optional[str],
    value: Any = None,
    note: Optional[str] = None,
    ledger: Optional[TabularLedger] = None,
    adapters: Sequence[SurveyAdapter] = (),
) -> SourceValue:
    """
    Approve, reject or edit one source value.

    Edit writes the new figure through to the ledger before touching the
    store, then resets the row to PENDING so it is reviewed again.

    Raises:
        ApprovalActionError: Unknown action, or bad value for edit
        SourceValueNotFoundError: No row with source_value_id
    """
    action = (action or "").strip().lower()
    if action not in APPROVAL_ACTIONS:
        raise ApprovalActionError(f"Invalid action: {action or '<empty>'}")
    note = note.strip() if note and note.strip() else None

    source_value = db.query(SourceValue).filter(SourceValue.id == source_value_id).first()
    if source_value is None:
        raise SourceValueNotFoundError(f"Source value {source_value_id} not found")

    if action == "edit":
        new_value = _parse_edit_value(value)
        if ledger is None:
            raise ApprovalActionError("A ledger is required to edit a value")

        adapter = next((a for a in adapters if a.name == source_value.source_name), None)
        header = adapter.sheet_header if adapter else source_value.source_name
        month = source_value.ingest_run.month

        apply_manual_values(ledger, month, {header: new_value})

        source_value.value = new_value
        source_value.delta = calculate_delta(new_value, source_value.previous_value)
        source_value.carried_forward = False
        source_value.approval_status = ApprovalStatus.PENDING
        source_value.approved_at = None
        source_value.approved_by = None
        source_value.approval_note = note
        logger.info(f"Edited {source_value.source_name} for {month} to {new_value} (by {actor})")
    else:
        source_value.approval_status = (
            ApprovalStatus.APPROVED if action == "approve" else ApprovalStatus.REJECTED
        )
        source_value.approval_note = note
        source_value.approved_at = datetime.utcnow()
        source_value.approved_by = actor
        logger.info(
            f"{source_value.approval_status.value.title()} {source_value.source_name} "
            f"(value id {source_value.id}) by {actor}"
        )

    db.commit()
    db.refresh(source_value)
    return source_value


def auto_approve_historical_rows(
    db: Session,
    cutoff: datetime,
    note: str = "Auto-approved during approval workflow rollout",
) -> int:
    """
    Approve every source value from runs started before cutoff.

    Returns:
        Number of rows approved
    """
    run_ids = [r.id for r in db.query(IngestRun.id).filter(IngestRun.started_at < cutoff).all()]
    if not run_ids:
        return 0

    approved_at = datetime.utcnow()
    count = 0
    for source_value in db.query(SourceValue).filter(SourceValue.ingest_run_id.in_(run_ids)).all():
        source_value.approval_status = ApprovalStatus.APPROVED
        source_value.approval_note = note
        source_value.approved_at = approved_at
        count += 1
    db.commit()
    logger.info(f"Auto-approved {count} source values from runs before {cutoff:%Y-%m-%d}")
    return count
