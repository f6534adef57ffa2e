"""
Pydantic schemas for API requests and responses.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field, field_validator

from uncertainty_index.core.models import ApprovalStatus, IngestRunStatus, SourceStatus
from uncertainty_index.core.periods import format_month_label, parse_month_label


def _validate_month_label(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    if not v:
        return None
    parsed = parse_month_label(v)
    if parsed is None:
        raise ValueError("month must look like 'Mar 2026'")
    return format_month_label(parsed)


class MonthlyIngestRequest(BaseModel):
    """Request schema for a monthly ingest run."""
    month: Optional[str] = Field(
        None,
        description="Month label to ingest, e.g. 'Mar 2026' (defaults to the current month)"
    )

    @field_validator("month")
    @classmethod
    def validate_month(cls, v: Optional[str]) -> Optional[str]:
        return _validate_month_label(v)


class MonthlyIngestResponse(BaseModel):
    ingest_run_id: int
    month: str
    warnings: List[str] = []


class BackfillRequest(BaseModel):
    months: int = Field(4, ge=1, description="Number of months to re-run, newest first")


class BackfillMonthResponse(BaseModel):
    month: str
    status: IngestRunStatus
    ingest_run_id: Optional[int] = None
    warnings: List[str] = []
    error: Optional[str] = None

    model_config = {"from_attributes": True}


class BackfillResponse(BaseModel):
    status: str
    results: List[BackfillMonthResponse]

    model_config = {"from_attributes": True}


class ManualValuesRequest(BaseModel):
    """Hand-entered values keyed by ledger header."""
    month: str = Field(..., description="Month label of the ledger row, e.g. 'Mar 2026'")
    values: Dict[str, Union[float, str, None]] = Field(..., min_length=1)

    @field_validator("month")
    @classmethod
    def validate_month(cls, v: str) -> str:
        v = _validate_month_label(v)
        if v is None:
            raise ValueError("month cannot be empty")
        return v


class ApprovalActionRequest(BaseModel):
    source_value_id: int
    action: str = Field(..., description="approve, reject or edit")
    actor: Optional[str] = Field(None, description="Identity of the reviewer")
    value: Optional[Union[float, str]] = Field(None, description="New value (edit only)")
    note: Optional[str] = None


class SourceValueResponse(BaseModel):
    id: int
    ingest_run_id: int
    source_name: str
    source_url: str
    value: Optional[float] = None
    previous_value: Optional[float] = None
    delta: Optional[float] = None
    status: SourceStatus
    carried_forward: bool
    value_date: Optional[date] = None
    message: Optional[str] = None
    approval_status: ApprovalStatus
    approval_note: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ScheduleUpsertRequest(BaseModel):
    source_name: str = Field(..., min_length=1)
    advance_months: int = Field(..., ge=1)
    next_expected_release_date: date


class ScheduleResponse(BaseModel):
    source_name: str
    source_url: Optional[str] = None
    frequency: Optional[str] = None
    release_cadence: Optional[str] = None
    advance_months: int
    next_expected_release_date: date
    configured: bool = True

    model_config = {"from_attributes": True}


class WeightUpdateRequest(BaseModel):
    survey: str = Field(..., min_length=1, description="Ledger header of the survey")
    weight: float


class StatisticResponse(BaseModel):
    source_name: str
    weight: Optional[float] = None
    mean: Optional[float] = None
    stdev: Optional[float] = None
    direction: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RunHistoryResponse(BaseModel):
    runs: List[Dict[str, Any]]
