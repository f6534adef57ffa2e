"""
Ingest endpoints.

Trigger the monthly ingest, backfill recent months, patch hand-entered
values and list recent runs.
"""
import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from uncertainty_index.api.v1.deps import get_ledger, get_survey_panel
from uncertainty_index.core.database import get_db
from uncertainty_index.core.periods import parse_month_label
from uncertainty_index.core.schemas import (
    BackfillRequest,
    BackfillResponse,
    ManualValuesRequest,
    MonthlyIngestRequest,
    MonthlyIngestResponse,
    RunHistoryResponse,
)
from uncertainty_index.ingest.orchestrator import (
    apply_manual_values,
    list_recent_runs,
    run_backfill,
    run_monthly_ingest,
)
from uncertainty_index.ingest.statistics import refresh_statistics_from_ledger
from uncertainty_index.ledger.sheets import LedgerError, TabularLedger
from uncertainty_index.sources.registry import SurveyPanel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ingest", tags=["ingest"])


@router.post("/monthly", response_model=MonthlyIngestResponse)
async def ingest_monthly(
    request: MonthlyIngestRequest,
    db: Session = Depends(get_db),
    ledger: TabularLedger = Depends(get_ledger),
    panel: SurveyPanel = Depends(get_survey_panel),
):
    """
    Run the ingest for one month (current month by default).

    The run is recorded either way; on an orchestration failure the run is
    marked FAILED and the error message is returned with a 500.
    """
    target = parse_month_label(request.month) if request.month else date.today()
    try:
        refresh_statistics_from_ledger(db, ledger)
    except Exception as e:
        db.rollback()
        logger.warning(f"Statistics refresh failed, using stored values: {e}")

    try:
        result = await run_monthly_ingest(db, ledger, panel.adapters, target_month=target)
    except Exception as e:
        logger.exception(f"Monthly ingest for {request.month or 'current month'} failed")
        raise HTTPException(status_code=500, detail=str(e))

    return MonthlyIngestResponse(
        ingest_run_id=result.ingest_run_id,
        month=result.month,
        warnings=result.warnings,
    )


@router.post("/backfill", response_model=BackfillResponse)
async def ingest_backfill(
    request: BackfillRequest,
    db: Session = Depends(get_db),
    ledger: TabularLedger = Depends(get_ledger),
    panel: SurveyPanel = Depends(get_survey_panel),
):
    """
    Re-run the last N months, newest first.

    Values already in the ledger for past months are kept; only gaps are
    filled. Per-month failures are reported, not raised.
    """
    try:
        result = await run_backfill(db, ledger, panel.adapters, months=request.months)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return BackfillResponse.model_validate(result)


@router.post("/manual")
def ingest_manual(
    request: ManualValuesRequest,
    ledger: TabularLedger = Depends(get_ledger),
):
    """Patch hand-entered values into a month's ledger row."""
    try:
        apply_manual_values(ledger, request.month, request.values)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LedgerError as e:
        logger.error(f"Manual patch for {request.month} failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {"status": "ok", "month": request.month, "updated": sorted(request.values)}


@router.get("/history", response_model=RunHistoryResponse)
def ingest_history(
    limit: int = 5,
    db: Session = Depends(get_db),
    ledger: TabularLedger = Depends(get_ledger),
):
    """Most recent runs with their source values and z-scores."""
    if limit < 1 or limit > 50:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 50")
    return {"runs": list_recent_runs(db, ledger, limit=limit)}
