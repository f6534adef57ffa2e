"""
Spreadsheet RPC surface used by the tabular ledger.

GoogleSheetsBackend talks to the production spreadsheet through gspread
with service-account credentials. Row and column indices are 0-based
everywhere in this package; conversion to A1 notation happens here.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import gspread
from google.oauth2.service_account import Credentials
from gspread.utils import ValueInputOption

from uncertainty_index.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
TOKEN_URI = "https://oauth2.googleapis.com/token"


class LedgerError(Exception):
    """A ledger read or write failed (missing sheet, rejected request)."""
    pass


def column_letter(index: int) -> str:
    """0 -> A, 25 -> Z, 26 -> AA."""
    result = ""
    n = index + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        result = chr(65 + rem) + result
    return result


class LedgerBackend(ABC):
    """Minimal spreadsheet operations the ledger relies on."""

    @abstractmethod
    def read_values(self, sheet: str) -> List[List[str]]:
        """All populated rows of a sheet as display strings, header row first."""

    @abstractmethod
    def update_row_range(
        self, sheet: str, row_index: int, start_col: int, end_col: int, values: Sequence[str]
    ) -> None:
        """Overwrite columns start_col..end_col (inclusive) of one row."""

    @abstractmethod
    def append_row(self, sheet: str, end_col: int, values: Sequence[str]) -> None:
        """Append a row after the last populated row, writing columns 0..end_col."""

    @abstractmethod
    def copy_formula_range(
        self, sheet: str, source_row: int, target_row: int, start_col: int, end_col: int
    ) -> None:
        """Paste formulas of source_row[start_col..end_col] into target_row."""

    @abstractmethod
    def sort_rows(self, sheet: str, start_row: int, end_row: int, sort_col: int) -> None:
        """Sort rows start_row..end_row-1 ascending by sort_col, moving whole rows."""


class GoogleSheetsBackend(LedgerBackend):
    """
    LedgerBackend over the Google Sheets API.

    Writes use USER_ENTERED so numbers and month labels are parsed the
    same way as typed input.
    """

    def __init__(self, client: gspread.Client, spreadsheet_id: str):
        self.client = client
        self.spreadsheet_id = spreadsheet_id
        self._spreadsheet: Optional[gspread.Spreadsheet] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "GoogleSheetsBackend":
        settings = settings or get_settings()
        creds = settings.require_ledger_credentials()
        credentials = Credentials.from_service_account_info(
            {
                "type": "service_account",
                "client_email": creds["client_email"],
                "private_key": creds["private_key"],
                "token_uri": TOKEN_URI,
            },
            scopes=SCOPES,
        )
        return cls(gspread.authorize(credentials), creds["sheet_id"])

    @property
    def spreadsheet(self) -> gspread.Spreadsheet:
        if self._spreadsheet is None:
            self._spreadsheet = self.client.open_by_key(self.spreadsheet_id)
        return self._spreadsheet

    def _worksheet(self, sheet: str) -> gspread.Worksheet:
        try:
            return self.spreadsheet.worksheet(sheet)
        except gspread.exceptions.WorksheetNotFound as e:
            raise LedgerError(f"Sheet {sheet} not found") from e

    def read_values(self, sheet: str) -> List[List[str]]:
        try:
            return self._worksheet(sheet).get_all_values()
        except gspread.exceptions.APIError as e:
            raise LedgerError(f"Failed to read sheet {sheet}: {e}") from e

    def update_row_range(
        self, sheet: str, row_index: int, start_col: int, end_col: int, values: Sequence[str]
    ) -> None:
        row_number = row_index + 1
        a1 = f"{column_letter(start_col)}{row_number}:{column_letter(end_col)}{row_number}"
        try:
            self._worksheet(sheet).update(
                values=[list(values)],
                range_name=a1,
                value_input_option=ValueInputOption.user_entered,
            )
        except gspread.exceptions.APIError as e:
            raise LedgerError(f"Failed to update {sheet}!{a1}: {e}") from e

    def append_row(self, sheet: str, end_col: int, values: Sequence[str]) -> None:
        try:
            self._worksheet(sheet).append_row(
                list(values),
                value_input_option=ValueInputOption.user_entered,
                table_range=f"A1:{column_letter(end_col)}1",
            )
        except gspread.exceptions.APIError as e:
            raise LedgerError(f"Failed to append row to {sheet}: {e}") from e

    def copy_formula_range(
        self, sheet: str, source_row: int, target_row: int, start_col: int, end_col: int
    ) -> None:
        sheet_id = self._worksheet(sheet).id

        def grid(row: int) -> Dict[str, Any]:
            return {
                "sheetId": sheet_id,
                "startRowIndex": row,
                "endRowIndex": row + 1,
                "startColumnIndex": start_col,
                "endColumnIndex": end_col + 1,
            }

        self.spreadsheet.batch_update({
            "requests": [{
                "copyPaste": {
                    "source": grid(source_row),
                    "destination": grid(target_row),
                    "pasteType": "PASTE_FORMULA",
                }
            }]
        })

    def sort_rows(self, sheet: str, start_row: int, end_row: int, sort_col: int) -> None:
        ws = self._worksheet(sheet)
        a1 = f"A{start_row + 1}:{column_letter(ws.col_count - 1)}{end_row}"
        try:
            ws.sort((sort_col + 1, "asc"), range=a1)
        except gspread.exceptions.APIError as e:
            raise LedgerError(f"Failed to sort {sheet}: {e}") from e
