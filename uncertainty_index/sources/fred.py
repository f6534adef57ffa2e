"""
FRED API client and the FRED-backed panel adapters.

Official FRED API documentation:
https://fred.stlouisfed.org/docs/api/fred/

Rate limits:
- With API key (free): 120 requests per minute per IP
- API key available at: https://fred.stlouisfed.org/docs/api/api_key.html

The panel uses three series: UMCSENT (Michigan sentiment), USACSCICP02STSAM
(OECD consumer confidence) and USEPUINDXD (daily economic policy
uncertainty, averaged over the month).
"""
import logging
import math
from datetime import date
from typing import Any, Dict, List, Optional

from uncertainty_index.core.api_errors import (
    APIError,
    AuthenticationError,
    FatalError,
    RetryableError,
)
from uncertainty_index.core.http_client import BaseAPIClient
from uncertainty_index.core.periods import month_end, month_start
from uncertainty_index.sources.base import AdapterResult, Frequency, SurveyAdapter

logger = logging.getLogger(__name__)


class FREDClient(BaseAPIClient):
    """HTTP client for FRED series observations."""

    SOURCE_NAME = "fred"
    BASE_URL = "https://api.stlouisfed.org/fred"

    # FRED allows 120 requests per minute with a key; stay well below it
    DEFAULT_MAX_CONCURRENCY = 2

    def _add_auth_to_params(self, params: Dict[str, Any]) -> Dict[str, Any]:
        params["file_type"] = "json"
        if self.api_key:
            params["api_key"] = self.api_key
        return params

    def _check_api_error(self, data: Dict[str, Any], resource_id: str) -> Optional[APIError]:
        if "error_code" not in data:
            return None

        error_code = data.get("error_code")
        error_message = data.get("error_message", "Unknown error")
        message = f"FRED API error {error_code}: {error_message}"
        logger.warning(f"{message} (series {resource_id})")

        if "api_key" in str(error_message).lower():
            return AuthenticationError(message, source=self.SOURCE_NAME, response_data=data)
        if error_code in (400, 404):
            return FatalError(message, source=self.SOURCE_NAME, status_code=error_code, response_data=data)
        return RetryableError(message, source=self.SOURCE_NAME, status_code=error_code, response_data=data)

    async def get_series_observations(
        self,
        series_id: str,
        observation_start: Optional[date] = None,
        observation_end: Optional[date] = None,
        sort_order: str = "asc",
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch observations for a FRED series.

        Args:
            series_id: FRED series ID (e.g. "UMCSENT")
            observation_start: First observation date (inclusive)
            observation_end: Last observation date (inclusive)
            sort_order: "asc" or "desc" by observation date
            limit: Maximum number of observations

        Returns:
            List of {"date": "YYYY-MM-DD", "value": "..."} dicts
        """
        params: Dict[str, Any] = {"series_id": series_id, "sort_order": sort_order}
        if observation_start:
            params["observation_start"] = observation_start.isoformat()
        if observation_end:
            params["observation_end"] = observation_end.isoformat()
        if limit:
            params["limit"] = limit

        data = await self.get("series/observations", params=params, resource_id=series_id)
        return data.get("observations", [])


def parse_observation_value(raw: Any) -> Optional[float]:
    """FRED marks absent observations with "."; those and non-numbers become None."""
    if raw is None:
        return None
    try:
        value = float(str(raw).replace(",", ""))
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_observation_date(raw: str) -> Optional[date]:
    try:
        return date.fromisoformat(raw)
    except (TypeError, ValueError):
        return None


class FredLatestValueAdapter(SurveyAdapter):
    """Latest observation dated on or before the end of the target month."""

    # Recent observations scanned past "." placeholders
    LOOKBACK = 5

    def __init__(self, client: FREDClient, series_id: str, name: str,
                 frequency: Frequency = Frequency.MONTHLY, release_cadence: Optional[str] = None):
        super().__init__(
            name=name,
            frequency=frequency,
            source_url=f"https://fred.stlouisfed.org/series/{series_id}",
            release_cadence=release_cadence,
        )
        self.client = client
        self.series_id = series_id

    async def fetch(self, target_month: date) -> AdapterResult:
        observations = await self.client.get_series_observations(
            self.series_id,
            observation_end=month_end(target_month),
            sort_order="desc",
            limit=self.LOOKBACK,
        )
        for obs in observations:
            value = parse_observation_value(obs.get("value"))
            if value is not None:
                return AdapterResult.success(value, parse_observation_date(obs.get("date")))
        return AdapterResult.missing(f"No FRED observation for {self.series_id}")


class FredMonthlyAverageAdapter(SurveyAdapter):
    """Mean of every numeric observation inside the target month."""

    def __init__(self, client: FREDClient, series_id: str, name: str,
                 frequency: Frequency = Frequency.DAILY, release_cadence: Optional[str] = None):
        super().__init__(
            name=name,
            frequency=frequency,
            source_url=f"https://fred.stlouisfed.org/series/{series_id}",
            release_cadence=release_cadence,
        )
        self.client = client
        self.series_id = series_id

    async def fetch(self, target_month: date) -> AdapterResult:
        end = month_end(target_month)
        observations = await self.client.get_series_observations(
            self.series_id,
            observation_start=month_start(target_month),
            observation_end=end,
        )
        values = [
            v for v in (parse_observation_value(obs.get("value")) for obs in observations)
            if v is not None
        ]
        if not values:
            return AdapterResult.missing(f"No FRED observations for {self.series_id} in month")
        return AdapterResult.success(sum(values) / len(values), end)
