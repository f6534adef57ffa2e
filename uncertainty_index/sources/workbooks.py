"""
Panel sources published as Excel workbooks.

- Richmond Fed CFO Survey: quarterly optimism ratings for the economy and
  for respondents' own firms (two sheets, old and new methodology).
- Atlanta Fed Survey of Business Uncertainty: monthly employment and
  revenue growth uncertainty, located by keyword header match.
- NY Fed Survey of Consumer Expectations: median one-year-ahead expected
  inflation, dated YYYYMM.

Each dataset downloads its workbook once per cache TTL; the adapters that
share a workbook share the dataset instance.
"""
import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from io import BytesIO
from typing import Any, Dict, List, Optional, Sequence, Tuple

import openpyxl
from dateutil import parser as date_parser
from openpyxl.utils.datetime import from_excel

from uncertainty_index.core.api_errors import ParseError
from uncertainty_index.core.cache import InMemoryCache
from uncertainty_index.core.periods import add_months, month_end
from uncertainty_index.sources.base import AdapterResult, Frequency, SurveyAdapter
from uncertainty_index.sources.scraping import WebClient

logger = logging.getLogger(__name__)

Rows = List[List[Any]]

CFO_DATA_URL = (
    "https://www.richmondfed.org/-/media/RichmondFedOrg/research/national_economy/"
    "cfo_survey/current_historical_cfo_data.xlsx"
)
CFO_PAGE_URL = "https://www.richmondfed.org/research/national_economy/cfo_survey/data_and_results"
SBU_DATA_URL = (
    "https://www.atlantafed.org/-/media/Project/Atlanta/FRBA/Documents/datafiles/research/"
    "surveys/business-uncertainty/sbu-data.xlsx"
)
SBU_PAGE_URL = "https://www.atlantafed.org/research-and-data/surveys/business-uncertainty"
SCE_DATA_URL = (
    "https://www.newyorkfed.org/medialibrary/interactives/sce/sce/downloads/data/"
    "frbny-sce-data.xlsx?sc_lang=en"
)
SCE_PAGE_URL = "https://www.newyorkfed.org/microeconomics/sce#/"

# Sheet name -> column header for (year, quarter, economy, own firm)
CFO_SHEETS: Sequence[Tuple[str, Tuple[str, str, str, str]]] = (
    ("through_Q1_2020", ("year", "quarter", "opt_rating_econ", "opt_rating_own")),
    ("CFO_optimism_all", ("year", "quarter", "economy_mean", "ownfirm_mean")),
)

SBU_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "empgrowth": ("empgrowth", "employment", "emp growth", "employment growth"),
    "revgrowth": ("revgrowth", "revenue", "rev growth", "revenue growth"),
}
SBU_HEADER_SEARCH_ROWS = 50

SCE_INFLATION_SHEET = "Inflation expectations"
SCE_TARGET_LABEL = "median one-year ahead expected inflation rate"


# ---------------------------------------------------------------------------
# Cell helpers
# ---------------------------------------------------------------------------

def read_workbook_rows(content: bytes) -> Dict[str, Rows]:
    """Every sheet of an .xlsx payload as lists of cell values, in sheet order."""
    try:
        wb = openpyxl.load_workbook(BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise ParseError(f"Unreadable workbook: {e}") from e
    try:
        return {
            ws.title: [list(row) for row in ws.iter_rows(values_only=True)]
            for ws in wb.worksheets
        }
    finally:
        wb.close()


def to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            number = float(value.replace(",", "").strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def normalize_date(value: Any) -> Optional[date]:
    """
    Coerce a workbook date cell.

    Handles real dates, YYYYMM integers/strings, Excel serial numbers and
    free-text dates. YYYYMM resolves to the first of the month.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if not math.isfinite(value):
            return None
        whole = int(value)
        year, month = divmod(whole, 100)
        if whole == value and 1900 < year < 2200 and 1 <= month <= 12:
            return date(year, month, 1)
        if value < 1:
            return None
        try:
            return from_excel(value).date()
        except (ValueError, OverflowError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if len(text) == 6 and text.isdigit():
            return normalize_date(int(text))
        try:
            return date_parser.parse(text).date()
        except (ValueError, OverflowError):
            return None
    return None


def normalize_quarter(value: Any) -> Optional[int]:
    """1..4 from 3, 3.0, "3", "Q3"; None otherwise."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        quarter = int(value) if value == int(value) else None
    else:
        digits = "".join(ch for ch in str(value) if ch.isdigit())
        quarter = int(digits) if digits else None
    return quarter if quarter in (1, 2, 3, 4) else None


def quarter_end_date(year: int, quarter: int) -> date:
    return month_end(date(year, quarter * 3, 1))


def _lower(cell: Any) -> Optional[str]:
    return cell.strip().lower() if isinstance(cell, str) else None


def latest_on_or_before(series: Sequence[Tuple[date, float]], cutoff: date) -> Optional[Tuple[date, float]]:
    candidates = [pair for pair in series if pair[0] <= cutoff]
    if not candidates:
        return None
    return max(candidates, key=lambda pair: pair[0])


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------

@dataclass
class CfoObservation:
    date: date
    economy: float
    own_firm: float


def parse_cfo_workbook(sheets: Dict[str, Rows]) -> List[CfoObservation]:
    """
    Merge both CFO sheets into one quarterly series, oldest first.

    Later sheets win when both carry the same quarter.
    """
    by_date: Dict[date, CfoObservation] = {}
    matched_sheets = 0

    for sheet_name, columns in CFO_SHEETS:
        rows = sheets.get(sheet_name)
        if not rows:
            continue
        header_index = next(
            (i for i, row in enumerate(rows) if any(_lower(c) == columns[0] for c in row)),
            None,
        )
        if header_index is None:
            continue
        header = [_lower(c) for c in rows[header_index]]
        try:
            year_idx, quarter_idx, economy_idx, own_idx = (header.index(c) for c in columns)
        except ValueError:
            logger.warning(f"CFO sheet {sheet_name} is missing an expected column")
            continue
        matched_sheets += 1

        for row in rows[header_index + 1:]:
            cells = list(row) + [None] * (len(header) - len(row))
            year = to_number(cells[year_idx])
            quarter = normalize_quarter(cells[quarter_idx])
            economy = to_number(cells[economy_idx])
            own_firm = to_number(cells[own_idx])
            if year is None or quarter is None or economy is None or own_firm is None:
                continue
            observed = quarter_end_date(int(year), quarter)
            by_date[observed] = CfoObservation(observed, economy, own_firm)

    if not matched_sheets:
        raise ParseError("CFO workbook has none of the expected sheets", source="cfo_survey")
    return sorted(by_date.values(), key=lambda obs: obs.date)


def find_header_row(
    rows: Rows, keywords: Sequence[str], max_rows: int = SBU_HEADER_SEARCH_ROWS
) -> Optional[Tuple[int, int, int]]:
    """
    Locate (header_row, date_col, value_col) in the first max_rows rows.

    The header row holds a "date"/"month" cell and a cell containing one
    of the keywords.
    """
    for i, row in enumerate(rows[:max_rows]):
        cells = [_lower(c) for c in row]
        date_col = next(
            (j for j, c in enumerate(cells) if c and ("date" in c or "month" in c)), None
        )
        if date_col is None:
            continue
        value_col = next(
            (j for j, c in enumerate(cells) if c and any(k in c for k in keywords)), None
        )
        if value_col is not None:
            return i, date_col, value_col
    return None


def _column_pairs(rows: Rows, start: int, date_col: int, value_col: int) -> List[Tuple[date, float]]:
    pairs = []
    for row in rows[start:]:
        if max(date_col, value_col) >= len(row):
            continue
        observed = normalize_date(row[date_col])
        value = to_number(row[value_col])
        if observed is not None and value is not None:
            pairs.append((observed, value))
    return pairs


def sbu_series_value(
    sheets: Dict[str, Rows], series: str, target_month: date
) -> Optional[Tuple[date, float]]:
    """Newest SBU observation on or before the end of target_month."""
    keywords = SBU_KEYWORDS[series]
    cutoff = month_end(target_month)
    for sheet_name, rows in sheets.items():
        header = find_header_row(rows, keywords)
        if header is None:
            continue
        header_index, date_col, value_col = header
        latest = latest_on_or_before(_column_pairs(rows, header_index + 1, date_col, value_col), cutoff)
        if latest:
            logger.debug(f"SBU {series} value from sheet {sheet_name}: {latest}")
            return latest
    return None


def parse_sce_inflation(sheets: Dict[str, Rows]) -> List[Tuple[date, float]]:
    """Median one-year-ahead expected inflation series, oldest first."""
    rows = sheets.get(SCE_INFLATION_SHEET)
    if rows is None:
        raise ParseError(f"NY Fed SCE sheet not found: {SCE_INFLATION_SHEET}", source="ny_fed_sce")

    header_index = next(
        (i for i, row in enumerate(rows)
         if any(SCE_TARGET_LABEL in (_lower(c) or "") for c in row)),
        None,
    )
    if header_index is None:
        raise ParseError("NY Fed SCE header row not found", source="ny_fed_sce")

    header = [_lower(c) for c in rows[header_index]]
    date_col = header.index("date") if "date" in header else 0
    if SCE_TARGET_LABEL in header:
        value_col = header.index(SCE_TARGET_LABEL)
    else:
        value_col = next(
            (j for j, c in enumerate(header) if c and "median" in c and "one-year" in c), None
        )
    if value_col is None:
        raise ParseError("NY Fed SCE median one-year ahead column not found", source="ny_fed_sce")

    return sorted(_column_pairs(rows, header_index + 1, date_col, value_col))


# ---------------------------------------------------------------------------
# Shared datasets
# ---------------------------------------------------------------------------

class WorkbookDataset:
    """A downloaded workbook, parsed once per cache TTL."""

    def __init__(self, client: WebClient, url: str, cache: Optional[InMemoryCache] = None):
        self.client = client
        self.url = url
        self.cache = cache or InMemoryCache()

    def parse(self, sheets: Dict[str, Rows]) -> Any:
        return sheets

    async def _load(self) -> Any:
        content = await self.client.get_bytes(self.url, resource_id=self.url)
        sheets = await asyncio.to_thread(read_workbook_rows, content)
        return self.parse(sheets)

    async def data(self) -> Any:
        return await self.cache.get_or_load(self.url, self._load)


class CfoSurveyDataset(WorkbookDataset):
    def __init__(self, client: WebClient, cache: Optional[InMemoryCache] = None, url: str = CFO_DATA_URL):
        super().__init__(client, url, cache)

    def parse(self, sheets: Dict[str, Rows]) -> List[CfoObservation]:
        return parse_cfo_workbook(sheets)

    async def latest(self, target_month: date) -> Optional[CfoObservation]:
        cutoff = month_end(target_month)
        candidates = [obs for obs in await self.data() if obs.date <= cutoff]
        return candidates[-1] if candidates else None


class SbuDataset(WorkbookDataset):
    def __init__(self, client: WebClient, cache: Optional[InMemoryCache] = None, url: str = SBU_DATA_URL):
        super().__init__(client, url, cache)

    async def value(self, series: str, target_month: date) -> Optional[Tuple[date, float]]:
        return sbu_series_value(await self.data(), series, target_month)


class SceInflationDataset(WorkbookDataset):
    def __init__(self, client: WebClient, cache: Optional[InMemoryCache] = None, url: str = SCE_DATA_URL):
        super().__init__(client, url, cache)

    def parse(self, sheets: Dict[str, Rows]) -> List[Tuple[date, float]]:
        return parse_sce_inflation(sheets)

    async def median_expectation(self, target_month: date) -> Optional[Tuple[date, float]]:
        # Survey month M is published in M+1, so read through the prior month
        cutoff = month_end(add_months(target_month, -1))
        return latest_on_or_before(await self.data(), cutoff)


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------

class CfoSurveyAdapter(SurveyAdapter):
    """One of the two CFO optimism ratings ("economy" or "own_firm")."""

    def __init__(self, dataset: CfoSurveyDataset, field: str, name: str):
        if field not in ("economy", "own_firm"):
            raise ValueError(f"Unknown CFO survey field: {field}")
        super().__init__(
            name=name,
            frequency=Frequency.QUARTERLY,
            source_url=CFO_PAGE_URL,
        )
        self.dataset = dataset
        self.field = field

    async def fetch(self, target_month: date) -> AdapterResult:
        latest = await self.dataset.latest(target_month)
        if latest is None:
            return AdapterResult.missing("No CFO survey quarter on or before month end")
        return AdapterResult.success(getattr(latest, self.field), latest.date)


class SbuAdapter(SurveyAdapter):
    def __init__(self, dataset: SbuDataset, series: str, name: str):
        if series not in SBU_KEYWORDS:
            raise ValueError(f"Unknown SBU series: {series}")
        super().__init__(name=name, frequency=Frequency.MONTHLY, source_url=SBU_PAGE_URL)
        self.dataset = dataset
        self.series = series

    async def fetch(self, target_month: date) -> AdapterResult:
        result = await self.dataset.value(self.series, target_month)
        if result is None:
            return AdapterResult.missing(f"No SBU {self.series} observation on or before month end")
        observed, value = result
        return AdapterResult.success(value, observed)


class SceInflationAdapter(SurveyAdapter):
    def __init__(self, dataset: SceInflationDataset, name: str):
        super().__init__(name=name, frequency=Frequency.MONTHLY, source_url=SCE_PAGE_URL)
        self.dataset = dataset

    async def fetch(self, target_month: date) -> AdapterResult:
        result = await self.dataset.median_expectation(target_month)
        if result is None:
            return AdapterResult.missing("No SCE observation before the target month")
        observed, value = result
        return AdapterResult.success(value, observed)
