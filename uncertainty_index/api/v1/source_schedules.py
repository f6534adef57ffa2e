"""
Release schedule and weight endpoints.
"""
import logging
from dataclasses import asdict
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from uncertainty_index.api.v1.deps import get_ledger, get_survey_panel
from uncertainty_index.core.database import get_db
from uncertainty_index.core.schemas import (
    ScheduleResponse,
    ScheduleUpsertRequest,
    StatisticResponse,
    WeightUpdateRequest,
)
from uncertainty_index.ingest.schedules import (
    ScheduleError,
    UnknownSourceError,
    list_source_schedules,
    upsert_source_schedule,
)
from uncertainty_index.ingest.statistics import update_source_weight
from uncertainty_index.ledger.sheets import LedgerError, TabularLedger
from uncertainty_index.sources.registry import SurveyPanel

logger = logging.getLogger(__name__)

router = APIRouter(tags=["schedules"])


@router.get("/source-schedules")
def get_source_schedules(
    db: Session = Depends(get_db),
    panel: SurveyPanel = Depends(get_survey_panel),
):
    """Next expected release per panel source; unconfigured ones get a default."""
    entries = list_source_schedules(db, panel.adapters, date.today())
    return {"schedules": [asdict(entry) for entry in entries]}


@router.post("/source-schedules", response_model=ScheduleResponse)
def post_source_schedule(
    request: ScheduleUpsertRequest,
    db: Session = Depends(get_db),
    panel: SurveyPanel = Depends(get_survey_panel),
):
    try:
        schedule = upsert_source_schedule(
            db,
            panel.adapters,
            request.source_name,
            request.advance_months,
            request.next_expected_release_date,
        )
    except UnknownSourceError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ScheduleError as e:
        raise HTTPException(status_code=400, detail=str(e))

    adapter = panel.get(schedule.source_name)
    return ScheduleResponse(
        source_name=schedule.source_name,
        source_url=adapter.source_url if adapter else None,
        frequency=adapter.frequency.value if adapter else None,
        release_cadence=adapter.release_cadence if adapter else None,
        advance_months=schedule.advance_months,
        next_expected_release_date=schedule.next_expected_release_date,
    )


@router.post("/weights", response_model=StatisticResponse)
def post_weight(
    request: WeightUpdateRequest,
    db: Session = Depends(get_db),
    ledger: TabularLedger = Depends(get_ledger),
):
    """Set a survey's index weight in the ledger's Meta tab and the store."""
    try:
        return update_source_weight(db, ledger, request.survey.strip(), request.weight)
    except LedgerError as e:
        logger.error(f"Weight update for {request.survey} failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
