"""
Configuration Management for the Envelope Ledger

Every knob is read from the environment (or .env) through pydantic-settings.

DESIGN DECISION: One module owns all configuration. The database URL, the
activity sink and the scheduled-run limits are validated here, once, so a
misconfigured deployment fails at startup instead of halfway through a run.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Ledger store and scheduled-run behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./envelope_ledger.db",
        description="SQLAlchemy async URL (sqlite+aiosqlite or postgresql+asyncpg)"
    )
    database_echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )
    pool_size: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Connection pool size (ignored for SQLite)"
    )

    integrity_epsilon: Decimal = Field(
        default=Decimal("0.005"),
        gt=0,
        description="Largest stored/recomputed pool difference still considered valid"
    )
    block_overspend: bool = Field(
        default=False,
        description="Reject spends larger than the envelope's remaining funds"
    )
    max_catch_up_occurrences: int = Field(
        default=60,
        ge=1,
        description="Most occurrences one obligation may catch up in a single run"
    )

    activity_sink: Literal["database", "google_sheets", "none"] = Field(
        default="database",
        description="Where household activity entries are persisted"
    )

    @field_validator("database_url")
    @classmethod
    def validate_async_driver(cls, v: str) -> str:
        if not (v.startswith("sqlite+aiosqlite") or v.startswith("postgresql+asyncpg")):
            raise ValueError(
                "database_url must use an async driver "
                "(sqlite+aiosqlite:// or postgresql+asyncpg://)"
            )
        return v


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets activity mirror configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )
    activity_sheet_name: str = Field(
        default="Activity",
        description="Name of the sheet for the household activity feed"
    )

    @field_validator("credentials_path")
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Credentials may be mounted after the settings load; only warn."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"No Google credentials at {v}; the activity mirror will fail to connect "
                "until the file is mounted."
            )
        return v


class ApiSettings(BaseSettings):
    """HTTP trigger endpoints."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_API_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="When set, trigger endpoints require a matching X-API-Key header"
    )
    title: str = Field(
        default="Envelope Ledger",
        description="OpenAPI title"
    )


class AppSettings(BaseSettings):
    """Process-wide settings: environment name, debug flag and logging."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )
    json_logs: bool = Field(
        default=False,
        description="Render logs as JSON lines instead of console output"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Entry point to every settings group.

    Groups are built on access, so a missing Google Sheets configuration
    only matters when the Sheets mirror is actually used.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def api(self) -> ApiSettings:
        return ApiSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """Cached settings root; tests call get_settings.cache_clear() after patching env vars."""
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Startup check: load every settings group and report which ones fail.

    Returns a dict of {setting_name: is_valid}, plus "<name>_error"
    entries for the failures. Used by the startup check.
    """
    results = {}
    settings = get_settings()

    for name in ("ledger", "api", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    # Sheets credentials are only required when the mirror is enabled
    try:
        if settings.ledger.activity_sink == "google_sheets":
            _ = settings.google_sheets
        results["google_sheets"] = True
    except Exception as e:
        results["google_sheets"] = False
        results["google_sheets_error"] = str(e)

    return results
