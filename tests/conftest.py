"""
Pytest configuration and shared fixtures.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tests.helpers import FakeLedgerBackend, make_ledger_sheets
from uncertainty_index.core.config import reset_settings
from uncertainty_index.core.models import Base
from uncertainty_index.ledger.sheets import TabularLedger


@pytest.fixture(scope="function")
def clean_env(monkeypatch):
    """
    Clean environment for testing.

    Removes all app-related env vars to ensure clean state.
    """
    env_vars = [
        "DATABASE_URL",
        "FRED_API_KEY",
        "GOOGLE_SHEETS_CLIENT_EMAIL",
        "GOOGLE_SHEETS_PRIVATE_KEY",
        "GOOGLE_SHEET_ID",
        "MAX_CONCURRENCY",
        "LOG_LEVEL",
        "RUN_INTEGRATION_TESTS",
        "MAX_RETRIES",
        "RETRY_BACKOFF_FACTOR",
        "OUTLIER_Z_THRESHOLD",
        "BACKFILL_MAX_MONTHS",
        "SCHEDULER_ENABLED",
    ]
    for var in env_vars:
        monkeypatch.delenv(var, raising=False)

    reset_settings()

    yield

    reset_settings()


@pytest.fixture(scope="function")
def test_engine():
    """
    In-memory SQLite engine shared across threads.

    StaticPool keeps one connection so sessions opened from FastAPI's
    threadpool see the same database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def test_db(test_engine):
    """
    Create an in-memory SQLite database for testing.

    Fresh database for each test.
    """
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


# =============================================================================
# Ledger fixtures
# =============================================================================

@pytest.fixture
def fake_backend():
    return FakeLedgerBackend(make_ledger_sheets([
        ["Jan 2026", "99", "48", "7", "=AVG(B2:D2)"],
        ["Feb 2026", "101", "52", "8", "=AVG(B3:D3)"],
    ]))


@pytest.fixture
def ledger(fake_backend):
    return TabularLedger(fake_backend)
