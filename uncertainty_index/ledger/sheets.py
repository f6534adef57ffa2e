"""
Tabular ledger: the spreadsheet the index is computed in.

The Data sheet is keyed by a month label in column 0. Columns 1 through
the last adapter-owned header hold raw survey values; every column after
that holds formulas authored in the spreadsheet, which this module never
overwrites. When a month row is appended, those formulas are copied down
from the row above so derived metrics keep computing. The zscores sheet
mirrors the Data sheet's date labels.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from uncertainty_index.core.config import Settings, get_settings
from uncertainty_index.core.periods import month_start, parse_month_label
from uncertainty_index.ingest.resolution import parse_numeric_value
from uncertainty_index.ledger.backend import (
    GoogleSheetsBackend,
    LedgerBackend,
    LedgerError,
    column_letter,
)

logger = logging.getLogger(__name__)

SheetValues = List[List[str]]

__all__ = [
    "LedgerError",
    "MetaEntry",
    "TabularLedger",
    "UpsertResult",
    "cell_text",
    "column_letter",
    "find_row_by_date",
    "header_index_map",
    "normalize_header",
    "previous_row_map",
    "raw_column_bound",
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_header(header: Any) -> str:
    """Collapse whitespace and case so header drift does not break lookups."""
    if header is None:
        return ""
    return " ".join(str(header).split()).lower()


def header_index_map(values: SheetValues) -> Dict[str, int]:
    """Normalized header -> column index, first occurrence wins."""
    mapping: Dict[str, int] = {}
    for idx, header in enumerate(values[0] if values else []):
        key = normalize_header(header)
        if key:
            mapping.setdefault(key, idx)
    return mapping


def find_row_by_date(values: SheetValues, date_label: str) -> int:
    """Index of the data row whose column 0 equals date_label, or -1."""
    target = date_label.strip()
    for idx, row in enumerate(values):
        if idx == 0 or not row:
            continue
        if str(row[0]).strip() == target:
            return idx
    return -1


def raw_column_bound(headers: Sequence[str], raw_headers: Iterable[str]) -> int:
    """Highest column index holding an adapter-owned header (0 if none)."""
    raw = {normalize_header(h) for h in raw_headers}
    bound = 0
    for idx, header in enumerate(headers):
        if idx > 0 and normalize_header(header) in raw:
            bound = idx
    return bound


def previous_row_map(values: SheetValues, target_month: date) -> Dict[str, str]:
    """
    Cells of the latest row dated strictly before target_month.

    Keys are normalized headers. Rows whose label does not parse as a
    month are ignored.
    """
    cutoff = month_start(target_month)
    best_row: Optional[List[str]] = None
    best_month: Optional[date] = None
    for row in values[1:]:
        if not row:
            continue
        row_month = parse_month_label(row[0])
        if row_month is None or row_month >= cutoff:
            continue
        if best_month is None or row_month >= best_month:
            best_month, best_row = row_month, row

    if best_row is None:
        return {}
    headers = values[0]
    return {
        normalize_header(header): (best_row[idx] if idx < len(best_row) else "")
        for idx, header in enumerate(headers)
        if normalize_header(header)
    }


def cell_text(value: Any) -> str:
    """Render a value for USER_ENTERED input; None becomes a blank cell."""
    if value is None:
        return ""
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    return str(value)


@dataclass
class UpsertResult:
    action: str  # "append" or "update"
    row_index: int


@dataclass
class MetaEntry:
    survey: str
    weight: Optional[float]
    mean: Optional[float]
    stdev: Optional[float]
    direction: Optional[str]


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class TabularLedger:
    """
    Date-keyed access to the Data, zscores and Meta sheets.

    Calls are serialized per instance; row indices computed from a read
    stay valid only until the next write.
    """

    def __init__(
        self,
        backend: LedgerBackend,
        data_sheet: str = "Data",
        zscore_sheet: str = "zscores",
        meta_sheet: str = "Meta",
    ):
        self.backend = backend
        self.data_sheet = data_sheet
        self.zscore_sheet = zscore_sheet
        self.meta_sheet = meta_sheet
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "TabularLedger":
        settings = settings or get_settings()
        return cls(
            GoogleSheetsBackend.from_settings(settings),
            data_sheet=settings.data_sheet_name,
            zscore_sheet=settings.zscore_sheet_name,
            meta_sheet=settings.meta_sheet_name,
        )

    def read_sheet(self, sheet: str) -> SheetValues:
        with self._lock:
            return self.backend.read_values(sheet)

    def _copy_formulas(self, sheet: str, source_row: int, target_row: int, start_col: int, end_col: int) -> None:
        """Copy trailing formulas; failures are logged since the raw write already landed."""
        if start_col > end_col or source_row < 1:
            return
        try:
            self.backend.copy_formula_range(sheet, source_row, target_row, start_col, end_col)
        except Exception as e:
            logger.error(
                f"Formula copy failed on {sheet} row {target_row + 1} "
                f"({column_letter(start_col)}:{column_letter(end_col)}): {e}",
                exc_info=True,
            )

    def partial_upsert_row(
        self,
        sheet: str,
        date_label: str,
        header_order: Sequence[str],
        data: Mapping[str, Any],
        max_raw_index: int,
    ) -> UpsertResult:
        """
        Write one month's raw values without touching formula columns.

        Args:
            sheet: Sheet name
            date_label: Month label written to column 0
            header_order: The sheet's header row
            data: Values keyed by header (normalized or verbatim)
            max_raw_index: Last adapter-owned column; nothing after it is written

        Returns:
            UpsertResult telling whether the row was appended or updated
        """
        if not header_order:
            raise LedgerError(f"Sheet {sheet} has no header row")

        normalized = {normalize_header(k): v for k, v in data.items()}
        row = [date_label] + [
            cell_text(normalized.get(normalize_header(header)))
            for header in header_order[1:max_raw_index + 1]
        ]

        with self._lock:
            values = self.backend.read_values(sheet)
            row_index = find_row_by_date(values, date_label)

            if row_index == -1:
                self.backend.append_row(sheet, max_raw_index, row)
                new_row_index = len(values)
                self._copy_formulas(
                    sheet, new_row_index - 1, new_row_index, max_raw_index + 1, len(header_order) - 1
                )
                logger.info(f"Appended {sheet} row {new_row_index + 1} for {date_label}")
                return UpsertResult("append", new_row_index)

            self.backend.update_row_range(sheet, row_index, 0, max_raw_index, row)
            logger.info(f"Updated {sheet} row {row_index + 1} for {date_label}")
            return UpsertResult("update", row_index)

    def patch_row_partial(
        self,
        sheet: str,
        date_label: str,
        data: Mapping[str, Any],
        max_raw_index: Optional[int] = None,
    ) -> UpsertResult:
        """
        Write only the named cells of one month's row.

        Used for approval edits and manual values. A missing row is
        appended (through max_raw_index, or the last named column) and
        gets its formulas copied down like any new month.
        """
        with self._lock:
            values = self.backend.read_values(sheet)
            if not values:
                raise LedgerError(f"Sheet {sheet} has no header row")
            headers = values[0]
            index_map = header_index_map(values)

            cells: Dict[int, str] = {}
            for header, value in data.items():
                col = index_map.get(normalize_header(header))
                if col is None or col == 0:
                    raise LedgerError(f"Column {header} not found in {sheet}")
                cells[col] = cell_text(value)

            row_index = find_row_by_date(values, date_label)
            if row_index == -1:
                end_col = max([max_raw_index or 0] + list(cells))
                row = [date_label] + [cells.get(col, "") for col in range(1, end_col + 1)]
                self.backend.append_row(sheet, end_col, row)
                new_row_index = len(values)
                self._copy_formulas(sheet, new_row_index - 1, new_row_index, end_col + 1, len(headers) - 1)
                return UpsertResult("append", new_row_index)

            for col, text in sorted(cells.items()):
                self.backend.update_row_range(sheet, row_index, col, col, [text])
            return UpsertResult("update", row_index)

    def _append_derived_rows(self, labels: Sequence[str]) -> List[str]:
        z_values = self.backend.read_values(self.zscore_sheet)
        if not z_values:
            raise LedgerError(f"Sheet {self.zscore_sheet} has no header row")
        last_col = len(z_values[0]) - 1
        existing = {str(row[0]).strip() for row in z_values[1:] if row}

        appended: List[str] = []
        next_row_index = len(z_values)
        for label in labels:
            if label in existing:
                continue
            self.backend.append_row(self.zscore_sheet, 0, [label])
            self._copy_formulas(self.zscore_sheet, next_row_index - 1, next_row_index, 1, last_col)
            existing.add(label)
            appended.append(label)
            next_row_index += 1
        if appended:
            logger.info(f"Mirrored {len(appended)} date row(s) into {self.zscore_sheet}: {appended}")
        return appended

    def mirror_date_into_derived_sheet(self, date_label: str) -> bool:
        """Ensure the zscores sheet has a row for date_label; True if one was added."""
        with self._lock:
            return bool(self._append_derived_rows([date_label]))

    def sync_derived_dates_from_data(self) -> List[str]:
        """Append every Data date label missing from the zscores sheet, in Data order."""
        with self._lock:
            data_values = self.backend.read_values(self.data_sheet)
            labels = [str(row[0]).strip() for row in data_values[1:] if row and str(row[0]).strip()]
            return self._append_derived_rows(labels)

    def sort_by_date_column(self, sheet: str) -> bool:
        """
        Put data rows in chronological order; True if a sort was issued.

        The sort runs server-side so formula cells move with their rows.
        """
        with self._lock:
            values = self.backend.read_values(sheet)
            months = [parse_month_label(row[0]) if row else None for row in values[1:]]
            known = [m for m in months if m is not None]
            if known == sorted(known):
                return False
            self.backend.sort_rows(sheet, 1, len(values), 0)
            logger.info(f"Sorted {sheet} by date")
            return True

    def read_meta_statistics(self) -> List[MetaEntry]:
        """Rows of the Meta sheet (Survey, Weight, Mean, Stdev, Direction)."""
        values = self.read_sheet(self.meta_sheet)
        index_map = header_index_map(values)
        survey_idx = index_map.get("survey", 0)

        def cell(row: List[str], key: str) -> Optional[str]:
            idx = index_map.get(key)
            if idx is None or idx >= len(row):
                return None
            return row[idx]

        entries = []
        for row in values[1:]:
            survey = row[survey_idx].strip() if survey_idx < len(row) else ""
            if not survey:
                continue
            direction = cell(row, "direction")
            entries.append(MetaEntry(
                survey=survey,
                weight=parse_numeric_value(cell(row, "weight")),
                mean=parse_numeric_value(cell(row, "mean")),
                stdev=parse_numeric_value(cell(row, "stdev")),
                direction=(direction or "").strip() or None,
            ))
        return entries

    def update_meta_weight(self, survey: str, weight: float) -> None:
        with self._lock:
            values = self.backend.read_values(self.meta_sheet)
            index_map = header_index_map(values)
            survey_idx = index_map.get("survey", 0)
            weight_idx = index_map.get("weight")
            if weight_idx is None:
                raise LedgerError(f"Weight column not found in {self.meta_sheet} tab")

            target = normalize_header(survey)
            row_index = next(
                (i for i, row in enumerate(values)
                 if i > 0 and survey_idx < len(row) and normalize_header(row[survey_idx]) == target),
                -1,
            )
            if row_index == -1:
                raise LedgerError(f"Survey {survey} not found in {self.meta_sheet} tab")
            self.backend.update_row_range(self.meta_sheet, row_index, weight_idx, weight_idx, [cell_text(weight)])

    def read_zscores_for_months(self, labels: Sequence[str]) -> Dict[str, Dict[str, Optional[float]]]:
        """Z-score row per requested month label, keyed by zscores header."""
        values = self.read_sheet(self.zscore_sheet)
        if not values:
            return {}
        headers = values[0]
        wanted = set(labels)
        result: Dict[str, Dict[str, Optional[float]]] = {}
        for row in values[1:]:
            label = str(row[0]).strip() if row else ""
            if label not in wanted:
                continue
            result[label] = {
                " ".join(str(header).split()): parse_numeric_value(row[idx] if idx < len(row) else None)
                for idx, header in enumerate(headers)
                if idx > 0 and str(header).strip()
            }
        return result
