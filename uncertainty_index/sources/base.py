"""
Survey adapter contract.

An adapter turns one panel source into a single number for a target month.
Adapters return a `missing` result when the origin simply has no
observation for that period and raise only when the transport or the
payload is broken; the orchestrator records raised errors as per-source
failures without aborting the run.
"""
import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Optional

from uncertainty_index.core.models import SourceStatus


class Frequency(str, enum.Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    DAILY = "daily"


@dataclass
class AdapterResult:
    """Outcome of one adapter fetch."""
    value: Optional[float]
    status: SourceStatus
    value_date: Optional[date] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, value: float, value_date: Optional[date] = None) -> "AdapterResult":
        return cls(value=value, status=SourceStatus.SUCCESS, value_date=value_date)

    @classmethod
    def missing(cls, message: Optional[str] = None) -> "AdapterResult":
        return cls(value=None, status=SourceStatus.MISSING, message=message)


class SurveyAdapter(ABC):
    """
    One named source of the panel.

    Attributes:
        name: Display name, also the key for release schedules
        sheet_header: Ledger column header the value is written under
        frequency: Publication frequency
        source_url: Human-facing page for the source
        release_cadence: Free-text cadence label shown to approvers
    """

    def __init__(
        self,
        name: str,
        frequency: Frequency,
        source_url: str,
        release_cadence: Optional[str] = None,
        sheet_header: Optional[str] = None,
    ):
        self.name = name
        self.sheet_header = sheet_header or name
        self.frequency = Frequency(frequency)
        self.source_url = source_url
        self.release_cadence = release_cadence or self.frequency.value.capitalize()

    @abstractmethod
    async def fetch(self, target_month: date) -> AdapterResult:
        """
        Fetch the value for the month containing target_month.

        Quarterly and irregular sources return the most recent observation
        dated on or before the end of that month.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.name}', frequency={self.frequency.value})>"
