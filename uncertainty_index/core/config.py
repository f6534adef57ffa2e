"""
Configuration module with strict validation.

Key principles:
- APP STARTUP only requires DATABASE_URL
- Ledger (Google Sheets) access DOES require service-account credentials
  (fails early with clear error)
- FRED adapters need FRED_API_KEY for real requests
- Safe defaults for all optional settings
"""
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MissingFredAPIKeyError(Exception):
    """Raised when FRED-backed adapters run without an API key."""
    pass


class MissingLedgerCredentialsError(Exception):
    """Raised when the Google Sheets ledger is used without credentials."""
    pass


class Settings(BaseSettings):
    """Application settings with validation.

    Loads from environment variables and .env file.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database (REQUIRED for API startup)
    database_url: str = Field(
        ...,
        description="PostgreSQL connection URL"
    )

    # FRED API Configuration (OPTIONAL for startup, REQUIRED for FRED adapters)
    fred_api_key: Optional[str] = Field(
        default=None,
        description="FRED API key - required by the FRED-backed survey adapters"
    )

    # Google Sheets ledger (OPTIONAL for startup, REQUIRED for ingestion)
    google_sheets_client_email: Optional[str] = Field(
        default=None,
        description="Service account email with edit access to the ledger"
    )
    google_sheets_private_key: Optional[str] = Field(
        default=None,
        description="Service account private key (literal \\n sequences allowed)"
    )
    google_sheet_id: Optional[str] = Field(
        default=None,
        description="Spreadsheet ID of the uncertainty index ledger"
    )
    data_sheet_name: str = Field(default="Data", description="Raw values tab")
    zscore_sheet_name: str = Field(default="zscores", description="Derived z-score tab")
    meta_sheet_name: str = Field(default="Meta", description="Weights and statistics tab")

    # Rate Limiting and Concurrency
    max_concurrency: int = Field(
        default=4,
        ge=1,
        le=50,
        description="Maximum concurrent adapter fetches per ingest run"
    )

    # Retry Configuration
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Maximum number of retries for failed HTTP requests"
    )

    retry_backoff_factor: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Exponential backoff factor for retries"
    )

    # Adapters and validation
    adapter_cache_ttl_seconds: float = Field(
        default=900.0,
        ge=0.0,
        description="How long downloaded pages/workbooks are reused within a process"
    )

    outlier_z_threshold: float = Field(
        default=4.0,
        gt=0.0,
        description="Absolute z-score at or above which a value is flagged as an outlier"
    )

    backfill_max_months: int = Field(
        default=24,
        ge=1,
        le=120,
        description="Upper bound on months accepted by a single backfill request"
    )

    # Scheduled trigger
    monthly_ingest_cron_day: int = Field(default=20, ge=1, le=28)
    monthly_ingest_cron_hour: int = Field(default=12, ge=0, le=23)
    scheduler_enabled: bool = Field(
        default=False,
        description="Start the monthly ingest scheduler with the API process"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # Testing
    run_integration_tests: bool = Field(
        default=False,
        description="Enable integration tests (requires credentials and network)"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v_upper

    def require_fred_api_key(self) -> str:
        """
        Get FRED API key, raising clear error if missing.

        Raises:
            MissingFredAPIKeyError: If the key is not configured

        Returns:
            str: The API key
        """
        if not self.fred_api_key:
            raise MissingFredAPIKeyError(
                "FRED_API_KEY is required for the FRED survey adapters. "
                "Please set it in your .env file or environment variables. "
                "Get a free key at: https://fred.stlouisfed.org/docs/api/api_key.html"
            )
        return self.fred_api_key

    def require_ledger_credentials(self) -> dict:
        """
        Get Google Sheets service-account credentials for the ledger.

        Call this before constructing the Google Sheets backend.

        Raises:
            MissingLedgerCredentialsError: If any credential is missing

        Returns:
            dict with client_email, private_key (unescaped) and sheet_id
        """
        missing = [
            name for name, value in (
                ("GOOGLE_SHEETS_CLIENT_EMAIL", self.google_sheets_client_email),
                ("GOOGLE_SHEETS_PRIVATE_KEY", self.google_sheets_private_key),
                ("GOOGLE_SHEET_ID", self.google_sheet_id),
            )
            if not value
        ]
        if missing:
            raise MissingLedgerCredentialsError(
                f"{', '.join(missing)} required for ledger access. "
                "Please set them in your .env file or environment variables."
            )
        return {
            "client_email": self.google_sheets_client_email,
            "private_key": self.google_sheets_private_key.replace("\\n", "\n"),
            "sheet_id": self.google_sheet_id,
        }


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get or create the global settings instance.

    Lazy loading keeps imports cheap and lets tests reset the
    instance between cases.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """
    Reset the global settings instance.

    Useful for testing to ensure clean state between tests.
    """
    global _settings
    _settings = None
