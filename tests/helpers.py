"""
Test doubles: an in-memory spreadsheet backend and canned survey adapters.
"""
import copy
from datetime import date
from typing import Dict, List, Optional, Sequence

from uncertainty_index.core.periods import parse_month_label
from uncertainty_index.ledger.backend import LedgerBackend, LedgerError
from uncertainty_index.sources.base import AdapterResult, Frequency, SurveyAdapter


class FakeLedgerBackend(LedgerBackend):
    """
    In-memory spreadsheet.

    Formula cells are plain strings starting with "="; copy_formula_range
    copies them verbatim, which is enough to assert that derived columns
    were propagated.
    """

    def __init__(self, sheets: Dict[str, List[List[str]]]):
        self.sheets = copy.deepcopy(sheets)
        self.calls: List[tuple] = []
        self.fail_copy = False
        self.fail_reads: set = set()
        self.fail_writes = False

    def _sheet(self, sheet: str) -> List[List[str]]:
        if sheet not in self.sheets:
            raise LedgerError(f"Worksheet {sheet} not found")
        return self.sheets[sheet]

    def read_values(self, sheet: str) -> List[List[str]]:
        self.calls.append(("read", sheet))
        if sheet in self.fail_reads:
            raise LedgerError(f"Read of {sheet} failed")
        return copy.deepcopy(self._sheet(sheet))

    def update_row_range(self, sheet: str, row_index: int, start_col: int, end_col: int, values: Sequence[str]):
        self.calls.append(("update", sheet, row_index, start_col, end_col))
        if self.fail_writes:
            raise LedgerError("Write rejected")
        row = self._sheet(sheet)[row_index]
        while len(row) <= end_col:
            row.append("")
        for offset, value in enumerate(values[: end_col - start_col + 1]):
            row[start_col + offset] = value

    def append_row(self, sheet: str, end_col: int, values: Sequence[str]):
        self.calls.append(("append", sheet, end_col))
        if self.fail_writes:
            raise LedgerError("Write rejected")
        self._sheet(sheet).append(list(values[: end_col + 1]))

    def copy_formula_range(self, sheet: str, source_row: int, target_row: int, start_col: int, end_col: int):
        self.calls.append(("copy", sheet, source_row, target_row, start_col, end_col))
        if self.fail_copy:
            raise RuntimeError("copyPaste rejected")
        rows = self._sheet(sheet)
        source, target = rows[source_row], rows[target_row]
        while len(target) <= end_col:
            target.append("")
        for col in range(start_col, end_col + 1):
            target[col] = source[col] if col < len(source) else ""

    def sort_rows(self, sheet: str, start_row: int, end_row: int, sort_col: int):
        self.calls.append(("sort", sheet, start_row, end_row, sort_col))
        rows = self._sheet(sheet)
        body = rows[start_row:end_row]
        body.sort(key=lambda r: parse_month_label(r[sort_col]) or date.max)
        rows[start_row:end_row] = body

    def cell(self, sheet: str, label: str, header: str) -> Optional[str]:
        rows = self.sheets[sheet]
        col = rows[0].index(header)
        for row in rows[1:]:
            if row and row[0] == label:
                return row[col] if col < len(row) else ""
        return None


class StaticAdapter(SurveyAdapter):
    """Adapter returning a canned result, or raising a canned error."""

    def __init__(
        self,
        name: str,
        result: Optional[AdapterResult] = None,
        error: Optional[Exception] = None,
        frequency: Frequency = Frequency.MONTHLY,
        sheet_header: Optional[str] = None,
    ):
        super().__init__(name, frequency, f"https://example.com/{name.lower().replace(' ', '-')}",
                         sheet_header=sheet_header)
        self.result = result
        self.error = error
        self.calls: List[date] = []

    async def fetch(self, target_month: date) -> AdapterResult:
        self.calls.append(target_month)
        if self.error is not None:
            raise self.error
        return self.result


SURVEY_HEADERS = ["Survey A", "Survey B", "Survey C"]


def make_ledger_sheets(data_rows: List[List[str]], headers: Sequence[str] = SURVEY_HEADERS):
    """Data sheet with raw survey columns followed by one formula column."""
    header_row = ["Date"] + list(headers) + ["Composite"]
    zscore_rows = [["Date"] + list(headers)] + [
        [row[0]] + [f"=Z{i}" for i in range(len(headers))] for row in data_rows
    ]
    return {
        "Data": [header_row] + [list(r) for r in data_rows],
        "zscores": zscore_rows,
        "Meta": [
            ["Survey", "Weight", "Mean", "Stdev", "Direction"],
            ["Survey A", "0.5", "100", "5", "positive"],
            ["Survey B", "0.3", "50", "10", "negative"],
        ],
    }

