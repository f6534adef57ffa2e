"""
Monthly ingest orchestration.

One run, for one month label:
1. Create the IngestRun (optimistically SUCCESS) so failures are auditable
2. Read the Data sheet once: headers, the target month's existing row and
   the previous month's values
3. Fetch every source concurrently, isolating adapter failures
4. In panel order: resolve (lock / fresh / carry forward), validate,
   persist a SourceValue, advance the release schedule on genuine values
5. Upsert the month's raw columns into the ledger in a single call
6. Mirror new date labels into the zscores sheet (non-fatal)
7. Finalize the run with the aggregated validation warnings

Any failure outside a single adapter (ledger read/write, statistics,
persistence) marks the run FAILED with the error text and re-raises.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from uncertainty_index.core.config import Settings, get_settings
from uncertainty_index.core.models import IngestRun, IngestRunStatus, SourceStatus, SourceValue
from uncertainty_index.core.periods import (
    add_months,
    format_month_label,
    is_current_month,
    month_end,
    month_start,
)
from uncertainty_index.ingest.resolution import ResolvedValue, parse_numeric_value, resolve_value
from uncertainty_index.ingest.schedules import advance_source_release_schedule
from uncertainty_index.ingest.statistics import load_statistics_map
from uncertainty_index.ingest.validation import (
    SourceStats,
    flagged_status,
    format_warning,
    validate_value,
)
from uncertainty_index.ledger.sheets import (
    LedgerError,
    TabularLedger,
    find_row_by_date,
    header_index_map,
    normalize_header,
    previous_row_map,
    raw_column_bound,
)
from uncertainty_index.sources.base import AdapterResult, SurveyAdapter

logger = logging.getLogger(__name__)

CARRIED_FORWARD_MESSAGE = "Carried forward prior value"
LOCKED_MESSAGE = "Preserved locked historical value"
MISSING_HEADER_MESSAGE = "Sheet header not found"


class IngestPhase(str, enum.Enum):
    STARTED = "STARTED"
    FETCHING = "FETCHING"
    RESOLVING = "RESOLVING"
    VALIDATING = "VALIDATING"
    PERSISTED = "PERSISTED"
    FINALIZING = "FINALIZING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class IngestResult:
    ingest_run_id: int
    month: str
    warnings: List[str] = field(default_factory=list)


@dataclass
class FetchOutcome:
    """An adapter's result, or the exception it raised."""
    result: Optional[AdapterResult] = None
    error: Optional[Exception] = None


class MonthlyIngestOrchestrator:
    """
    Runs the monthly ingest for the survey panel.

    The coordinator is the only writer of the ledger row accumulator;
    fetches are the only concurrent step.
    """

    def __init__(
        self,
        db: Session,
        ledger: TabularLedger,
        adapters: Sequence[SurveyAdapter],
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.ledger = ledger
        self.adapters = list(adapters)
        self.settings = settings or get_settings()

    async def run(self, target_month: Optional[date] = None, today: Optional[date] = None) -> IngestResult:
        """
        Ingest one month.

        Args:
            target_month: Any date inside the month to ingest (defaults to today)
            today: Reference date for "current month" decisions

        Returns:
            IngestResult with the run id, month label and validation warnings

        Raises:
            Exception: Orchestration-level failure, after the run is marked FAILED
        """
        today = today or date.today()
        target = month_start(target_month or today)
        label = format_month_label(target)
        is_historical = not is_current_month(target, today)

        run = IngestRun(month=label, status=IngestRunStatus.SUCCESS, started_at=datetime.utcnow())
        self.db.add(run)
        self.db.commit()
        self.db.refresh(run)
        logger.info(
            f"[{IngestPhase.STARTED.value}] Ingest run {run.id} for {label} "
            f"(historical={is_historical}, sources={len(self.adapters)})"
        )

        try:
            warnings = await self._ingest(run, target, today, is_historical)
        except Exception as e:
            self.db.rollback()
            run.status = IngestRunStatus.FAILED
            run.finished_at = datetime.utcnow()
            run.message = str(e)
            self.db.commit()
            logger.error(f"[{IngestPhase.FAILED.value}] Ingest run {run.id} for {label} failed: {e}")
            raise

        finished = datetime.utcnow()
        run.status = IngestRunStatus.SUCCESS
        run.finished_at = finished
        if warnings:
            run.message = f"Ingest completed with {len(warnings)} validation warnings: {'; '.join(warnings)}"
        else:
            run.message = f"Ingest completed {finished:%b %d, %Y %H:%M} UTC"
        self.db.commit()
        logger.info(f"[{IngestPhase.SUCCESS.value}] Ingest run {run.id} for {label}: {run.message}")
        return IngestResult(ingest_run_id=run.id, month=label, warnings=warnings)

    async def _ingest(self, run: IngestRun, target: date, today: date, is_historical: bool) -> List[str]:
        data_sheet = self.ledger.data_sheet
        values = await asyncio.to_thread(self.ledger.read_sheet, data_sheet)
        if not values or not values[0]:
            raise LedgerError(f"Sheet {data_sheet} has no header row")

        headers = values[0]
        index_map = header_index_map(values)
        existing_index = find_row_by_date(values, run.month)
        existing_row = values[existing_index] if is_historical and existing_index != -1 else None
        previous = previous_row_map(values, target)
        stats = load_statistics_map(self.db)
        max_raw_index = raw_column_bound(headers, [a.sheet_header for a in self.adapters])

        present = [a for a in self.adapters if normalize_header(a.sheet_header) in index_map]
        outcomes = await self._fetch_all(present, target)

        row_data: Dict[str, Any] = {}
        warnings: List[str] = []

        for adapter in self.adapters:
            header_key = normalize_header(adapter.sheet_header)
            previous_value = parse_numeric_value(previous.get(header_key))

            if header_key not in index_map:
                logger.warning(f"No ledger column for {adapter.sheet_header}; skipping")
                self.db.add(SourceValue(
                    ingest_run_id=run.id,
                    source_name=adapter.name,
                    source_url=adapter.source_url,
                    previous_value=previous_value,
                    status=SourceStatus.MISSING_HEADER,
                    carried_forward=False,
                    message=MISSING_HEADER_MESSAGE,
                ))
                self.db.commit()
                continue

            locked_cell = None
            if existing_row is not None:
                col = index_map[header_key]
                locked_cell = existing_row[col] if col < len(existing_row) else None

            resolved, warning = self._process_source(
                run, adapter, outcomes[adapter.name], previous_value, locked_cell,
                stats.get(header_key), target, today, is_historical,
            )
            # locked cells keep their original text, numeric or not
            row_data[header_key] = locked_cell if resolved.locked else resolved.value
            if warning:
                warnings.append(warning)

        logger.info(f"[{IngestPhase.FINALIZING.value}] Writing {run.month} to {data_sheet}")
        await asyncio.to_thread(
            self.ledger.partial_upsert_row, data_sheet, run.month, headers, row_data, max_raw_index
        )
        try:
            await asyncio.to_thread(self.ledger.sync_derived_dates_from_data)
        except Exception as e:
            logger.error(f"Failed to sync {self.ledger.zscore_sheet} dates: {e}", exc_info=True)

        return warnings

    async def _fetch_all(self, adapters: Sequence[SurveyAdapter], target: date) -> Dict[str, FetchOutcome]:
        semaphore = asyncio.Semaphore(self.settings.max_concurrency)

        async def fetch_one(adapter: SurveyAdapter):
            async with semaphore:
                logger.debug(f"[{IngestPhase.FETCHING.value}] {adapter.name}")
                try:
                    return adapter.name, FetchOutcome(result=await adapter.fetch(target))
                except Exception as e:
                    logger.warning(f"Adapter {adapter.name} failed: {e}")
                    return adapter.name, FetchOutcome(error=e)

        pairs = await asyncio.gather(*(fetch_one(a) for a in adapters))
        return dict(pairs)

    def _process_source(
        self,
        run: IngestRun,
        adapter: SurveyAdapter,
        outcome: FetchOutcome,
        previous_value: Optional[float],
        locked_cell: Any,
        stats: Optional[SourceStats],
        target: date,
        today: date,
        is_historical: bool,
    ):
        """Resolve, validate and persist one source; returns (resolved, warning or None)."""
        result, error = outcome.result, outcome.error

        resolved: ResolvedValue = resolve_value(previous_value, result if error is None else None, locked_cell)
        logger.debug(
            f"[{IngestPhase.RESOLVING.value}] {adapter.name}: value={resolved.value} "
            f"carried={resolved.carried_forward} locked={resolved.locked}"
        )

        flag = validate_value(resolved.value, stats, self.settings.outlier_z_threshold)
        warning = None
        if flag:
            warning = format_warning(adapter.sheet_header, flag)
            logger.warning(f"[{IngestPhase.VALIDATING.value}] {warning}")

        if error is not None:
            status = SourceStatus.FAILED
        elif resolved.locked:
            status = flagged_status(SourceStatus.SUCCESS, flag)
        else:
            status = flagged_status(result.status, flag)

        fallback_date = month_end(target) if is_historical else today
        if resolved.locked:
            value_date = month_end(target)
        elif result is not None and result.value_date is not None:
            value_date = result.value_date
        else:
            value_date = fallback_date

        if error is not None:
            parts = [str(error) or error.__class__.__name__, flag]
        elif resolved.locked:
            parts = [flag]
        else:
            parts = [result.message, flag]
        if resolved.carried_forward:
            parts.append(CARRIED_FORWARD_MESSAGE)
        if resolved.locked:
            parts.append(LOCKED_MESSAGE)
        message = " | ".join(p for p in parts if p) or None

        self.db.add(SourceValue(
            ingest_run_id=run.id,
            source_name=adapter.name,
            source_url=adapter.source_url,
            value=resolved.value,
            previous_value=resolved.previous_value,
            delta=resolved.delta,
            status=status,
            carried_forward=resolved.carried_forward,
            value_date=value_date,
            message=message,
        ))

        if error is None and not resolved.carried_forward and not resolved.locked and resolved.value is not None:
            advance_source_release_schedule(self.db, adapter.name, result.value_date or fallback_date)

        self.db.commit()
        logger.info(
            f"[{IngestPhase.PERSISTED.value}] {adapter.name}: status={status.value} "
            f"value={resolved.value} previous={resolved.previous_value}"
        )
        return resolved, warning


async def run_monthly_ingest(
    db: Session,
    ledger: TabularLedger,
    adapters: Sequence[SurveyAdapter],
    target_month: Optional[date] = None,
    today: Optional[date] = None,
    settings: Optional[Settings] = None,
) -> IngestResult:
    """Run the monthly ingest for target_month (defaults to the current month)."""
    orchestrator = MonthlyIngestOrchestrator(db, ledger, adapters, settings)
    return await orchestrator.run(target_month=target_month, today=today)


@dataclass
class BackfillMonthResult:
    month: str
    status: IngestRunStatus
    ingest_run_id: Optional[int] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class BackfillResult:
    status: str  # "ok" or "partial"
    results: List[BackfillMonthResult]


async def run_backfill(
    db: Session,
    ledger: TabularLedger,
    adapters: Sequence[SurveyAdapter],
    months: int = 4,
    today: Optional[date] = None,
    settings: Optional[Settings] = None,
) -> BackfillResult:
    """
    Re-run the last `months` months, newest first.

    Historical months keep their existing ledger values (locked), so a
    backfill only fills gaps. A failed month does not stop the others.

    Raises:
        ValueError: months outside 1..backfill_max_months
    """
    settings = settings or get_settings()
    if months < 1 or months > settings.backfill_max_months:
        raise ValueError(f"months must be between 1 and {settings.backfill_max_months}")

    today = today or date.today()
    orchestrator = MonthlyIngestOrchestrator(db, ledger, adapters, settings)
    results: List[BackfillMonthResult] = []

    for offset in range(months):
        target = add_months(month_start(today), -offset)
        try:
            outcome = await orchestrator.run(target_month=target, today=today)
            results.append(BackfillMonthResult(
                month=outcome.month,
                status=IngestRunStatus.SUCCESS,
                ingest_run_id=outcome.ingest_run_id,
                warnings=outcome.warnings,
            ))
        except Exception as e:
            logger.error(f"Backfill for {format_month_label(target)} failed: {e}")
            results.append(BackfillMonthResult(
                month=format_month_label(target),
                status=IngestRunStatus.FAILED,
                error=str(e),
            ))

    failed = [r for r in results if r.status == IngestRunStatus.FAILED]
    return BackfillResult(status="partial" if failed else "ok", results=results)


def apply_manual_values(ledger: TabularLedger, month_label: str, values: Mapping[str, Any]) -> None:
    """
    Patch hand-entered values into one month's ledger row.

    The row write must succeed; re-mirroring dates and re-sorting are
    best effort.
    """
    if not values:
        raise ValueError("values must not be empty")
    ledger.patch_row_partial(ledger.data_sheet, month_label, values)

    try:
        ledger.sync_derived_dates_from_data()
    except Exception as e:
        logger.error(f"Failed to sync {ledger.zscore_sheet} dates: {e}", exc_info=True)
    try:
        ledger.sort_by_date_column(ledger.data_sheet)
    except Exception as e:
        logger.error(f"Failed to sort {ledger.data_sheet}: {e}", exc_info=True)


def list_recent_runs(db: Session, ledger: TabularLedger, limit: int = 5) -> List[Dict[str, Any]]:
    """Latest runs with their source values and each month's z-score row."""
    runs = (
        db.query(IngestRun)
        .order_by(IngestRun.started_at.desc(), IngestRun.id.desc())
        .limit(limit)
        .all()
    )
    zscores = ledger.read_zscores_for_months([r.month for r in runs]) if runs else {}
    return [
        {
            "id": r.id,
            "month": r.month,
            "status": r.status.value,
            "started_at": r.started_at,
            "finished_at": r.finished_at,
            "message": r.message,
            "sources": [
                {
                    "id": s.id,
                    "source_name": s.source_name,
                    "value": s.value,
                    "previous_value": s.previous_value,
                    "delta": s.delta,
                    "status": s.status.value,
                    "carried_forward": s.carried_forward,
                    "message": s.message,
                    "approval_status": s.approval_status.value,
                }
                for s in r.sources
            ],
            "zscores": zscores.get(r.month, {}),
        }
        for r in runs
    ]
