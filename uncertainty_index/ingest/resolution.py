"""
Value resolution: which number a source contributes to the month's row.

Precedence, highest first:
1. a non-blank ledger cell for a historical month (locked; backfills must
   not rewrite published history)
2. a fresh adapter value with status success or warning
3. the previous month's value (carried forward)
4. nothing
"""
import math
from dataclasses import dataclass
from typing import Any, Optional

from uncertainty_index.core.models import SourceStatus
from uncertainty_index.sources.base import AdapterResult

ACCEPTABLE_STATUSES = (SourceStatus.SUCCESS, SourceStatus.WARNING)


@dataclass(frozen=True)
class ResolvedValue:
    value: Optional[float]
    previous_value: Optional[float]
    delta: Optional[float]
    carried_forward: bool = False
    locked: bool = False


def parse_numeric_value(cell: Any) -> Optional[float]:
    """
    Parse a ledger cell into a finite float.

    Blank cells, text and non-finite numbers give None. Thousands
    separators are ignored.
    """
    if cell is None or isinstance(cell, bool):
        return None
    if isinstance(cell, (int, float)):
        return float(cell) if math.isfinite(cell) else None
    text = str(cell).strip().replace(",", "")
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def is_blank(cell: Any) -> bool:
    return cell is None or str(cell).strip() == ""


def calculate_delta(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    if current is None or previous is None:
        return None
    return current - previous


def resolve_value(
    previous_value: Optional[float],
    outcome: Optional[AdapterResult],
    locked_cell: Any = None,
) -> ResolvedValue:
    """
    Resolve a source's value for the month.

    Args:
        previous_value: The source's value in the latest earlier ledger row
        outcome: Adapter result, or None when the adapter raised
        locked_cell: Existing ledger cell for a historical month; pass None
            for the current month so nothing is locked

    Returns:
        ResolvedValue with the delta against previous_value
    """
    if not is_blank(locked_cell):
        value = parse_numeric_value(locked_cell)
        return ResolvedValue(
            value=value,
            previous_value=previous_value,
            delta=calculate_delta(value, previous_value),
            locked=True,
        )

    if outcome is not None and outcome.value is not None and outcome.status in ACCEPTABLE_STATUSES:
        return ResolvedValue(
            value=outcome.value,
            previous_value=previous_value,
            delta=calculate_delta(outcome.value, previous_value),
        )

    if previous_value is not None:
        return ResolvedValue(
            value=previous_value,
            previous_value=previous_value,
            delta=calculate_delta(previous_value, previous_value),
            carried_forward=True,
        )

    return ResolvedValue(value=None, previous_value=None, delta=None)
