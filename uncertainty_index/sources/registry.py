"""
The fixed fourteen-source survey panel.

Order matters: the orchestrator processes sources in panel order, and
approvers see the same list. Adding a source means adding an entry here
and a ledger column with the same header.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional

from uncertainty_index.core.cache import InMemoryCache
from uncertainty_index.core.config import Settings, get_settings
from uncertainty_index.core.http_client import BaseAPIClient
from uncertainty_index.sources.base import Frequency, SurveyAdapter
from uncertainty_index.sources.fred import (
    FREDClient,
    FredLatestValueAdapter,
    FredMonthlyAverageAdapter,
)
from uncertainty_index.sources.scraping import (
    BUSINESS_ROUNDTABLE_PATTERNS,
    BUSINESS_ROUNDTABLE_URL,
    CONFERENCE_BOARD_PATTERNS,
    CONFERENCE_BOARD_URL,
    DELOITTE_PATTERNS,
    DELOITTE_URL,
    EY_PARTHENON_PATTERNS,
    EY_PARTHENON_URL,
    NFIB_OPTIMISM_PATTERNS,
    NFIB_UNCERTAINTY_PATTERNS,
    NFIB_URL,
    PageScraper,
    ScrapedValueAdapter,
    WebClient,
)
from uncertainty_index.sources.workbooks import (
    CfoSurveyAdapter,
    CfoSurveyDataset,
    SbuAdapter,
    SbuDataset,
    SceInflationAdapter,
    SceInflationDataset,
)

logger = logging.getLogger(__name__)


@dataclass
class SurveyPanel:
    """The adapter list plus the HTTP clients it holds open."""
    adapters: List[SurveyAdapter]
    clients: List[BaseAPIClient] = field(default_factory=list)

    def get(self, name: str) -> Optional[SurveyAdapter]:
        return next((a for a in self.adapters if a.name == name), None)

    @property
    def names(self) -> List[str]:
        return [a.name for a in self.adapters]

    async def aclose(self) -> None:
        for client in self.clients:
            await client.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()


def build_survey_panel(
    settings: Optional[Settings] = None,
    today_provider: Callable[[], date] = date.today,
) -> SurveyPanel:
    """
    Build the production panel.

    Shared origins (NFIB page, CFO workbook, SBU workbook) get one holder
    each, with its own TTL cache, so every adapter reading them triggers
    a single download per run.
    """
    settings = settings or get_settings()
    ttl = settings.adapter_cache_ttl_seconds

    fred = FREDClient(
        api_key=settings.require_fred_api_key(),
        max_retries=settings.max_retries,
        backoff_factor=settings.retry_backoff_factor,
    )
    web = WebClient(
        max_concurrency=settings.max_concurrency,
        max_retries=settings.max_retries,
        backoff_factor=settings.retry_backoff_factor,
    )

    def page(url: str) -> PageScraper:
        return PageScraper(web, url, InMemoryCache(default_ttl=ttl))

    nfib_page = page(NFIB_URL)
    cfo = CfoSurveyDataset(web, InMemoryCache(default_ttl=ttl))
    sbu = SbuDataset(web, InMemoryCache(default_ttl=ttl))
    sce = SceInflationDataset(web, InMemoryCache(default_ttl=ttl))

    adapters: List[SurveyAdapter] = [
        FredLatestValueAdapter(fred, "UMCSENT", "University of Michigan Consumer Sentiment"),
        ScrapedValueAdapter(
            "Conference Board Consumer Confidence", Frequency.MONTHLY,
            page(CONFERENCE_BOARD_URL), CONFERENCE_BOARD_PATTERNS, today_provider=today_provider,
        ),
        SceInflationAdapter(sce, "NY Fed Consumer Expectations - inflation"),
        CfoSurveyAdapter(cfo, "economy", "Duke/Fed CFO Survey Optimism - Economy"),
        ScrapedValueAdapter(
            "NFIB Small Business Optimism", Frequency.MONTHLY,
            nfib_page, NFIB_OPTIMISM_PATTERNS, today_provider=today_provider,
        ),
        ScrapedValueAdapter(
            "Business Roundtable CEO Outlook", Frequency.QUARTERLY,
            page(BUSINESS_ROUNDTABLE_URL), BUSINESS_ROUNDTABLE_PATTERNS, today_provider=today_provider,
        ),
        CfoSurveyAdapter(cfo, "own_firm", "Duke/Fed CFO Survey Optimism - Own Firm"),
        ScrapedValueAdapter(
            "EY-Parthenon CEO Confidence", Frequency.QUARTERLY,
            page(EY_PARTHENON_URL), EY_PARTHENON_PATTERNS, today_provider=today_provider,
        ),
        ScrapedValueAdapter(
            "Deloitte CFO Confidence", Frequency.QUARTERLY,
            page(DELOITTE_URL), DELOITTE_PATTERNS, today_provider=today_provider,
        ),
        FredMonthlyAverageAdapter(fred, "USEPUINDXD", "Economic Policy Uncertainty Index (month average)"),
        ScrapedValueAdapter(
            "NFIB Uncertainty Index", Frequency.MONTHLY,
            nfib_page, NFIB_UNCERTAINTY_PATTERNS, today_provider=today_provider,
        ),
        SbuAdapter(sbu, "empgrowth", "Atlanta Fed SBU Empgrowth Uncert"),
        SbuAdapter(sbu, "revgrowth", "Atlanta Fed SBU RevGrowth Uncert"),
        FredLatestValueAdapter(
            fred, "USACSCICP02STSAM", "OECD Composite Consumer Confidence for United States"
        ),
    ]

    logger.info(f"Built survey panel with {len(adapters)} sources")
    return SurveyPanel(adapters=adapters, clients=[fred, web])
