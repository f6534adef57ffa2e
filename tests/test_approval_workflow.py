"""
Tests for the approval workflow and the month gate.
"""
from datetime import date, datetime

import pytest

from tests.helpers import StaticAdapter
from uncertainty_index.approvals.workflow import (
    ApprovalActionError,
    DueState,
    GateState,
    SourceValueNotFoundError,
    assert_month_approved,
    auto_approve_historical_rows,
    format_due_label,
    get_approval_snapshot_for_month,
    get_gate_state,
    mutate_approval,
)
from uncertainty_index.core.models import (
    ApprovalStatus,
    IngestRun,
    IngestRunStatus,
    SourceReleaseSchedule,
    SourceStatus,
    SourceValue,
)
from uncertainty_index.sources.base import AdapterResult

NOW = datetime(2026, 3, 20, 12, 0)


def make_run(db, month="Feb 2026", status=IngestRunStatus.SUCCESS, started_at=None, sources=None):
    run = IngestRun(month=month, status=status, started_at=started_at or datetime(2026, 3, 1, 9, 0))
    for name, value, previous in sources or []:
        run.sources.append(SourceValue(
            source_name=name,
            source_url=f"https://example.com/{name}",
            value=value,
            previous_value=previous,
            delta=None if value is None or previous is None else value - previous,
            status=SourceStatus.SUCCESS,
        ))
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


@pytest.mark.unit
class TestDueLabel:
    def test_unknown(self):
        assert format_due_label(None, NOW) == (DueState.UNKNOWN, "No release date configured")

    def test_past_due(self):
        assert format_due_label(date(2026, 3, 5), NOW) == (DueState.PAST_DUE, "Past due · March 5, 2026")

    def test_upcoming_includes_today(self):
        state, label = format_due_label(date(2026, 3, 20), NOW)
        assert state == DueState.UPCOMING
        assert label == "Upcoming · March 20, 2026"


@pytest.mark.unit
class TestSnapshot:
    def test_no_run(self, test_db):
        assert get_approval_snapshot_for_month(test_db, "Feb 2026") is None

    def test_snapshot_uses_latest_run(self, test_db):
        make_run(test_db, started_at=datetime(2026, 3, 1), sources=[("Old", 1.0, None)])
        latest = make_run(
            test_db, started_at=datetime(2026, 3, 2), sources=[("Survey B", 5.0, 4.0), ("Survey A", 1.0, None)]
        )
        test_db.add(SourceReleaseSchedule(
            source_name="Survey A", advance_months=1, next_expected_release_date=date(2026, 3, 5)
        ))
        test_db.commit()

        snapshot = get_approval_snapshot_for_month(test_db, "Feb 2026", now=NOW)

        assert snapshot.ingest_run_id == latest.id
        assert [r.source_name for r in snapshot.rows] == ["Survey A", "Survey B"]
        assert snapshot.rows[0].due_state == DueState.PAST_DUE
        assert snapshot.rows[1].due_state == DueState.UNKNOWN
        assert snapshot.pending_count == 2
        assert snapshot.source_count == 2
        assert snapshot.all_approved is False

    def test_started_at_ties_broken_by_id(self, test_db):
        same = datetime(2026, 3, 1, 9, 0)
        make_run(test_db, started_at=same, sources=[("First", 1.0, None)])
        second = make_run(test_db, started_at=same, sources=[("Second", 1.0, None)])

        assert get_approval_snapshot_for_month(test_db, "Feb 2026").ingest_run_id == second.id


@pytest.mark.unit
class TestGate:
    def test_no_run(self, test_db):
        gate = assert_month_approved(test_db, "Feb 2026")

        assert gate.ok is False
        assert gate.reason == "No ingest run found for Feb 2026. Run scrape first."
        assert get_gate_state(test_db, "Feb 2026") == GateState.NOT_RUN

    def test_failed_run(self, test_db):
        make_run(test_db, status=IngestRunStatus.FAILED, sources=[("Survey A", 1.0, None)])

        gate = assert_month_approved(test_db, "Feb 2026")

        assert gate.reason == "Latest ingest for Feb 2026 is not successful."
        assert get_gate_state(test_db, "Feb 2026") == GateState.NOT_RUN

    def test_zero_sources(self, test_db):
        make_run(test_db)

        gate = assert_month_approved(test_db, "Feb 2026")

        assert gate.ok is False
        assert gate.reason == "No source values found for Feb 2026. Run scrape first."

    def test_pending_reason_pluralized(self, test_db):
        run = make_run(test_db, sources=[("Survey A", 1.0, None), ("Survey B", 2.0, None)])

        assert assert_month_approved(test_db, "Feb 2026").reason == "Approval pending for 2 source values."

        mutate_approval(test_db, run.sources[0].id, "approve", actor="reviewer@example.com")

        assert assert_month_approved(test_db, "Feb 2026").reason == "Approval pending for 1 source value."
        assert get_gate_state(test_db, "Feb 2026") == GateState.PENDING_APPROVAL

    def test_rejected_blocks_gate(self, test_db):
        run = make_run(test_db, sources=[("Survey A", 1.0, None)])
        mutate_approval(test_db, run.sources[0].id, "reject", actor="reviewer@example.com")

        assert assert_month_approved(test_db, "Feb 2026").ok is False

    def test_all_approved(self, test_db):
        run = make_run(test_db, sources=[("Survey A", 1.0, None), ("Survey B", 2.0, None)])
        for source in run.sources:
            mutate_approval(test_db, source.id, "APPROVE", actor="reviewer@example.com")

        gate = assert_month_approved(test_db, "Feb 2026")

        assert gate.ok is True
        assert gate.reason is None
        assert gate.snapshot.all_approved is True
        assert get_gate_state(test_db, "Feb 2026") == GateState.APPROVED

    def test_new_run_reopens_gate(self, test_db):
        run = make_run(test_db, started_at=datetime(2026, 3, 1), sources=[("Survey A", 1.0, None)])
        mutate_approval(test_db, run.sources[0].id, "approve", actor="reviewer@example.com")
        make_run(test_db, started_at=datetime(2026, 3, 2), sources=[("Survey A", 1.0, None)])

        assert get_gate_state(test_db, "Feb 2026") == GateState.PENDING_APPROVAL


@pytest.mark.unit
class TestMutateApproval:
    def test_approve_records_reviewer(self, test_db):
        run = make_run(test_db, sources=[("Survey A", 1.0, None)])

        updated = mutate_approval(test_db, run.sources[0].id, "approve", actor="ana@example.com", note="  looks right ")

        assert updated.approval_status == ApprovalStatus.APPROVED
        assert updated.approved_by == "ana@example.com"
        assert updated.approval_note == "looks right"
        assert isinstance(updated.approved_at, datetime)

    def test_invalid_action(self, test_db):
        run = make_run(test_db, sources=[("Survey A", 1.0, None)])
        with pytest.raises(ApprovalActionError):
            mutate_approval(test_db, run.sources[0].id, "delete", actor="x")

    def test_unknown_source_value(self, test_db):
        with pytest.raises(SourceValueNotFoundError):
            mutate_approval(test_db, 999, "approve", actor="x")

    def test_edit_resets_approval_and_writes_ledger(self, test_db, ledger, fake_backend):
        run = make_run(test_db, sources=[("Survey A", 101.0, 99.0)])
        source = run.sources[0]
        source.carried_forward = True
        test_db.commit()
        mutate_approval(test_db, source.id, "approve", actor="ana@example.com")

        updated = mutate_approval(
            test_db, source.id, "edit", actor="ana@example.com", value="104.5",
            ledger=ledger, adapters=[StaticAdapter("Survey A", AdapterResult.missing())],
        )

        assert updated.value == 104.5
        assert updated.delta == 104.5 - 99.0
        assert updated.carried_forward is False
        assert updated.approval_status == ApprovalStatus.PENDING
        assert updated.approved_by is None
        assert updated.approved_at is None
        assert fake_backend.cell("Data", "Feb 2026", "Survey A") == "104.5"

    def test_edit_uses_adapter_sheet_header(self, test_db, ledger, fake_backend):
        run = make_run(test_db, sources=[("Long Display Name", 1.0, None)])
        adapter = StaticAdapter("Long Display Name", AdapterResult.missing(), sheet_header="Survey C")

        mutate_approval(test_db, run.sources[0].id, "edit", actor="x", value=9, ledger=ledger, adapters=[adapter])

        assert fake_backend.cell("Data", "Feb 2026", "Survey C") == "9"

    def test_edit_without_previous_has_null_delta(self, test_db, ledger):
        run = make_run(test_db, sources=[("Survey B", None, None)])

        updated = mutate_approval(test_db, run.sources[0].id, "edit", actor="x", value=3, ledger=ledger)

        assert updated.value == 3.0
        assert updated.delta is None

    @pytest.mark.parametrize("value,message", [
        (None, "value is required"),
        ("", "value is required"),
        ("abc", "must be numeric"),
        ("nan", "must be numeric"),
    ])
    def test_edit_value_validation(self, test_db, ledger, value, message):
        run = make_run(test_db, sources=[("Survey A", 1.0, None)])

        with pytest.raises(ApprovalActionError, match=message):
            mutate_approval(test_db, run.sources[0].id, "edit", actor="x", value=value, ledger=ledger)

    def test_edit_requires_ledger(self, test_db):
        run = make_run(test_db, sources=[("Survey A", 1.0, None)])
        with pytest.raises(ApprovalActionError):
            mutate_approval(test_db, run.sources[0].id, "edit", actor="x", value=2)


@pytest.mark.unit
def test_auto_approve_historical_rows(test_db):
    old = make_run(test_db, month="Jan 2026", started_at=datetime(2026, 2, 3), sources=[("Survey A", 1.0, None)])
    new = make_run(test_db, month="Mar 2026", started_at=datetime(2026, 3, 3), sources=[("Survey A", 2.0, None)])

    count = auto_approve_historical_rows(test_db, datetime(2026, 3, 1))

    assert count == 1
    test_db.refresh(old.sources[0])
    test_db.refresh(new.sources[0])
    assert old.sources[0].approval_status == ApprovalStatus.APPROVED
    assert old.sources[0].approval_note == "Auto-approved during approval workflow rollout"
    assert new.sources[0].approval_status == ApprovalStatus.PENDING
