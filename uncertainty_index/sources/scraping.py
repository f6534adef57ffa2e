"""
HTML scraping for survey sources that only publish a press-release page.

Pages reflect the latest release only, so scrape adapters return a missing
result for any month before the current one instead of attributing today's
number to a past month.
"""
import logging
import math
import re
from datetime import date
from typing import Callable, Dict, Optional, Pattern, Sequence

from bs4 import BeautifulSoup

from uncertainty_index.core.cache import InMemoryCache
from uncertainty_index.core.http_client import BaseAPIClient
from uncertainty_index.core.periods import month_start
from uncertainty_index.sources.base import AdapterResult, Frequency, SurveyAdapter

logger = logging.getLogger(__name__)

NUMBER = r"([0-9]+(?:\.[0-9]+)?)"

CONFERENCE_BOARD_URL = "https://www.conference-board.org/topics/consumer-confidence/"
NFIB_URL = "https://www.nfib.com/news/monthly_report/sbet/"
BUSINESS_ROUNDTABLE_URL = "https://www.businessroundtable.org/media/ceo-economic-outlook-index"
EY_PARTHENON_URL = "https://www.ey.com/en_gl/ceo/ceo-outlook-global-report"
DELOITTE_URL = "https://www.deloitte.com/us/en/insights/topics/leadership/cfo-survey-data-dashboard.html"


def _patterns(*sources: str) -> Sequence[Pattern[str]]:
    return tuple(re.compile(source, re.IGNORECASE) for source in sources)


CONFERENCE_BOARD_PATTERNS = _patterns(
    rf"Consumer Confidence Index[^.]*?to\s+{NUMBER}",
    rf"Consumer Confidence Index[^.]*?reached\s+{NUMBER}",
)
NFIB_OPTIMISM_PATTERNS = _patterns(
    rf"Small Business Optimism Index[^.]*?to\s+{NUMBER}",
    rf"Optimism Index[^.]*?to\s+{NUMBER}",
)
NFIB_UNCERTAINTY_PATTERNS = _patterns(
    rf"Uncertainty Index[^.]*?to\s+{NUMBER}",
    rf"Uncertainty Index[^.]*?from[^.]*?to\s+{NUMBER}",
)
BUSINESS_ROUNDTABLE_PATTERNS = _patterns(
    rf"overall Index[^.]*?to\s+{NUMBER}",
    rf"Index posted[^.]*?to\s+{NUMBER}",
)
EY_PARTHENON_PATTERNS = _patterns(
    rf"Overall sentiment declined from\s+[0-9]+(?:\.[0-9]+)?\s+to\s+{NUMBER}",
    rf"Overall sentiment rose from\s+[0-9]+(?:\.[0-9]+)?\s+to\s+{NUMBER}",
)
DELOITTE_PATTERNS = _patterns(
    r"CFO confidence continues to rise[^0-9]*([0-9]+\.[0-9]+)",
    r"CFO confidence[^0-9]*([0-9]+\.[0-9]+)",
    r"The\s+([0-9]+\.[0-9]+)\s+reading marks",
)


class WebClient(BaseAPIClient):
    """Fetches public pages and file downloads with browser-like headers."""

    SOURCE_NAME = "web"

    def _build_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": (
                "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
            ),
            "Accept-Language": "en-US,en;q=0.9",
            "Accept": "text/html,application/xhtml+xml,*/*;q=0.8",
        }


def html_to_text(html: str) -> str:
    """Visible page text with scripts and styles removed and whitespace collapsed."""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return " ".join(soup.get_text(" ").split())


def match_number(patterns: Sequence[Pattern[str]], text: str) -> Optional[float]:
    """First finite number captured by the first pattern that matches."""
    for pattern in patterns:
        match = pattern.search(text)
        if match and match.group(1):
            try:
                value = float(match.group(1))
            except ValueError:
                continue
            if math.isfinite(value):
                return value
    return None


class PageScraper:
    """
    One scraped page, shared by every adapter that reads it.

    The extracted text is cached for the cache's TTL so the NFIB page is
    downloaded once for both NFIB series.
    """

    def __init__(self, client: WebClient, url: str, cache: Optional[InMemoryCache] = None):
        self.client = client
        self.url = url
        self.cache = cache or InMemoryCache()

    async def _load(self) -> str:
        html = await self.client.get_text(self.url, resource_id=self.url)
        return html_to_text(html)

    async def text(self) -> str:
        return await self.cache.get_or_load(self.url, self._load)

    async def match(self, patterns: Sequence[Pattern[str]]) -> Optional[float]:
        return match_number(patterns, await self.text())


class ScrapedValueAdapter(SurveyAdapter):
    """A panel source read off a press-release page by regex."""

    def __init__(
        self,
        name: str,
        frequency: Frequency,
        scraper: PageScraper,
        patterns: Sequence[Pattern[str]],
        source_url: Optional[str] = None,
        today_provider: Callable[[], date] = date.today,
    ):
        super().__init__(name=name, frequency=frequency, source_url=source_url or scraper.url)
        self.scraper = scraper
        self.patterns = patterns
        self._today = today_provider

    async def fetch(self, target_month: date) -> AdapterResult:
        if month_start(target_month) < month_start(self._today()):
            return AdapterResult.missing("Page reflects only the latest release")

        value = await self.scraper.match(self.patterns)
        if value is None:
            logger.info(f"No value pattern matched for {self.name} on {self.scraper.url}")
            return AdapterResult.missing("No value found on page")
        return AdapterResult.success(value)
