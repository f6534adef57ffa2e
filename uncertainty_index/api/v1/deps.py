"""
Shared route dependencies: the ledger and the survey panel.

Tests replace both through app.dependency_overrides.
"""
import logging
from typing import AsyncGenerator

from fastapi import HTTPException

from uncertainty_index.core.config import MissingFredAPIKeyError, MissingLedgerCredentialsError
from uncertainty_index.ledger.sheets import TabularLedger
from uncertainty_index.sources.registry import SurveyPanel, build_survey_panel

logger = logging.getLogger(__name__)


def get_ledger() -> TabularLedger:
    try:
        return TabularLedger.from_settings()
    except MissingLedgerCredentialsError as e:
        logger.error(f"Ledger not configured: {e}")
        raise HTTPException(status_code=500, detail=str(e))


async def get_survey_panel() -> AsyncGenerator[SurveyPanel, None]:
    try:
        panel = build_survey_panel()
    except MissingFredAPIKeyError as e:
        logger.error(f"Survey panel not configured: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    try:
        yield panel
    finally:
        await panel.aclose()
