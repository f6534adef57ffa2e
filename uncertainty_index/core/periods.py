"""
Month arithmetic and the ledger's month label format ("Feb 2026").
"""
import calendar
from datetime import date, datetime
from typing import Optional

from dateutil.relativedelta import relativedelta

MONTH_LABEL_FORMAT = "%b %Y"


def month_start(value: date) -> date:
    return value.replace(day=1)


def month_end(value: date) -> date:
    last_day = calendar.monthrange(value.year, value.month)[1]
    return value.replace(day=last_day)


def add_months(value: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    return value + relativedelta(months=months)


def format_month_label(value: date) -> str:
    return value.strftime(MONTH_LABEL_FORMAT)


def parse_month_label(label: str) -> Optional[date]:
    """
    Parse a ledger date cell into the first day of its month.

    Accepts the canonical "Feb 2026" form plus the full month name and
    ISO dates the ledger sometimes holds. Returns None when unparseable.
    """
    if label is None:
        return None
    text = " ".join(str(label).split())
    if not text:
        return None
    for fmt in (MONTH_LABEL_FORMAT, "%B %Y", "%Y-%m-%d", "%Y-%m", "%m/%d/%Y"):
        try:
            return month_start(datetime.strptime(text, fmt).date())
        except ValueError:
            continue
    return None


def is_current_month(target: date, today: date) -> bool:
    return (target.year, target.month) == (today.year, today.month)
