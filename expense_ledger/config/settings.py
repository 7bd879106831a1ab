"""
Ledger Configuration

Environment-driven settings, parsed and validated by pydantic-settings.

DESIGN DECISION: Every knob the ledger reads lives in this module, so a
deployment can be reviewed by reading one file, and a bad value stops
the process at startup rather than in the middle of a settlement run.
"""

import warnings
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Where the shared expense spreadsheet lives and how to reach it."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Service account key file used to authorize gspread"
    )
    spreadsheet_id: str = Field(
        ...,
        description="Key of the spreadsheet holding the ledger"
    )

    expenses_sheet_name: str = Field(
        default="Expenses",
        description="Worksheet with one row per expense or occurrence"
    )
    categories_sheet_name: str = Field(
        default="Categories",
        description="Worksheet with one row per category"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Append-only worksheet for audit events"
    )

    @field_validator("credentials_path")
    @classmethod
    def check_credentials_file(cls, v: str) -> str:
        # A missing key file is only a warning: containers often mount it after import.
        if not Path(v).exists():
            warnings.warn(f"Service account key not found at {v}; Sheets storage will fail to connect.")
        return v


class LedgerSettings(BaseSettings):
    """Engine tolerances, storage selection and display options."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Deployment name, e.g. development or production"
    )
    debug_mode: bool = Field(
        default=False,
        description="Verbose local logging"
    )

    currency_code: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="ISO 4217 code amounts are displayed in"
    )

    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Where expenses, categories and audit events are stored"
    )
    split_data_path: str = Field(
        default="split-data.json",
        description="JSON file holding participants and split groups"
    )

    settlement_epsilon: Decimal = Field(
        default=Decimal("0.01"),
        gt=0,
        le=1,
        description="Balances within this of zero count as settled"
    )
    upcoming_horizon_days: int = Field(
        default=30,
        ge=0,
        le=366,
        description="Default look-ahead for upcoming recurring expenses"
    )


class Settings(BaseSettings):
    """
    Entry point for all settings.

    Sections are built on access, so a memory-backed install never needs
    the Google Sheets variables to be set.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings. Tests reset them with get_settings.cache_clear()."""
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Startup check of each settings section.

    Returns {section: ok} plus a "<section>_error" message for each
    failure. The Google Sheets section is only checked when it is the
    selected backend.
    """
    results = {}
    settings = get_settings()

    try:
        ledger = settings.ledger
        results["ledger"] = True
    except Exception as e:
        results["ledger"] = False
        results["ledger_error"] = str(e)
        return results

    if ledger.storage_backend == "google_sheets":
        try:
            settings.google_sheets
            results["google_sheets"] = True
        except Exception as e:
            results["google_sheets"] = False
            results["google_sheets_error"] = str(e)

    return results
