"""
Outlier validation against each source's historical mean and stdev.

Flags never block ingestion. A flag turns a success into a warning and
is reported in the run's aggregated warnings as "<header>: <flag>".
"""
from dataclasses import dataclass
from typing import Optional

from uncertainty_index.core.models import SourceStatus

DEFAULT_Z_THRESHOLD = 4.0


@dataclass(frozen=True)
class SourceStats:
    mean: Optional[float]
    stdev: Optional[float]
    weight: Optional[float] = None


def validate_value(
    value: Optional[float],
    stats: Optional[SourceStats],
    z_threshold: float = DEFAULT_Z_THRESHOLD,
) -> Optional[str]:
    """
    Return the first applicable flag for value, or None.

    Checks, in order: missing value, |z| >= z_threshold (only when the
    source has a mean and a positive stdev), negative value.
    """
    if value is None:
        return "Missing value"

    if stats is not None and stats.mean is not None and stats.stdev is not None and stats.stdev > 0:
        z = (value - stats.mean) / stats.stdev
        if abs(z) >= z_threshold:
            return f"Outlier detected (z={z:.2f})"

    if value < 0:
        return "Negative value"
    return None


def flagged_status(status: SourceStatus, flag: Optional[str]) -> SourceStatus:
    """Downgrade success to warning when flagged; other statuses stand."""
    if flag and status == SourceStatus.SUCCESS:
        return SourceStatus.WARNING
    return status


def format_warning(sheet_header: str, flag: str) -> str:
    return f"{sheet_header}: {flag}"
