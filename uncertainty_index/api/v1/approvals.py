"""
Approval endpoints.

The month snapshot carries the gate state so a reviewer sees at a glance
whether downstream generation is unblocked.
"""
import logging
from dataclasses import asdict
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from uncertainty_index.api.v1.deps import get_ledger, get_survey_panel
from uncertainty_index.approvals.workflow import (
    ApprovalActionError,
    GateState,
    SourceValueNotFoundError,
    assert_month_approved,
    get_approval_snapshot_for_month,
    get_gate_state,
    mutate_approval,
)
from uncertainty_index.core.database import get_db
from uncertainty_index.core.periods import format_month_label, parse_month_label
from uncertainty_index.core.schemas import ApprovalActionRequest, SourceValueResponse
from uncertainty_index.ledger.sheets import LedgerError, TabularLedger
from uncertainty_index.sources.registry import SurveyPanel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/approvals", tags=["approvals"])


@router.get("/month")
def get_month_approvals(month: Optional[str] = None, db: Session = Depends(get_db)):
    """
    Approval snapshot for a month label (current month by default).

    Returns 404 with a null snapshot if the month has never been ingested.
    """
    parsed = parse_month_label(month) if month and month.strip() else date.today()
    if parsed is None:
        raise HTTPException(status_code=400, detail="month must look like 'Mar 2026'")
    month = format_month_label(parsed)
    snapshot = get_approval_snapshot_for_month(db, month)
    if snapshot is None:
        raise HTTPException(
            status_code=404,
            detail={"month": month, "snapshot": None, "gate": GateState.NOT_RUN.value},
        )

    gate = assert_month_approved(db, month)
    return {
        "month": month,
        "snapshot": asdict(snapshot),
        "gate": get_gate_state(db, month).value,
        "reason": gate.reason,
    }


@router.post("/source", response_model=SourceValueResponse)
def post_source_approval(
    request: ApprovalActionRequest,
    db: Session = Depends(get_db),
    ledger: TabularLedger = Depends(get_ledger),
    panel: SurveyPanel = Depends(get_survey_panel),
):
    """
    Approve, reject or edit a single source value.

    Edit writes the new value to the ledger and resets approval to PENDING.
    """
    try:
        return mutate_approval(
            db,
            request.source_value_id,
            request.action,
            actor=request.actor,
            value=request.value,
            note=request.note,
            ledger=ledger,
            adapters=panel.adapters,
        )
    except ApprovalActionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SourceValueNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except LedgerError as e:
        logger.error(f"Ledger write for source value {request.source_value_id} failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
