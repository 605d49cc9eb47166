"""
Ledger configuration.

Every tunable lives in one of three pydantic-settings groups, each read
from the environment (or a local .env file) under its own prefix:

- GOOGLE_SHEETS_*  the shared ledger document
- GEMINI_*         the extraction model
- (no prefix)      calendar, money and AI context knobs

Groups are built on first access, so a local run with the in-memory store
does not need Sheets credentials.
"""

from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env(prefix: str = "") -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix=prefix,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class GoogleSheetsSettings(BaseSettings):
    """Where the shared ledger document is kept."""

    model_config = _env("GOOGLE_SHEETS_")

    credentials_path: str = Field(
        ...,
        description="Service account key file"
    )
    spreadsheet_id: str = Field(
        ...,
        description="Spreadsheet that owns the ledger worksheet"
    )
    # One row per top-level ledger field
    data_sheet_name: str = Field(
        default="AppData",
        description="Worksheet the ledger document is serialized into"
    )
    poll_interval_seconds: float = Field(
        default=5.0,
        ge=0.5,
        le=300.0,
        description="Seconds between remote change checks"
    )

    @field_validator("credentials_path")
    @classmethod
    def check_key_file(cls, v: str) -> str:
        # Secrets are sometimes mounted after the process starts
        if not Path(v).exists():
            import warnings
            warnings.warn(f"No service account key at {v}; Sheets calls will fail until it appears.")
        return v


class GeminiSettings(BaseSettings):
    model_config = _env("GEMINI_")

    api_key: str = Field(..., description="Gemini API key")
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Model used for chat, file and insight requests"
    )
    max_tokens: int = Field(
        default=4096,
        ge=100,
        le=8192,
        description="Upper bound on reply length"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sampling temperature; extraction wants it low"
    )


class AppSettings(BaseSettings):
    """Ledger behaviour that is not tied to an external service."""

    model_config = _env()

    timezone: str = Field(
        default="UTC",
        description="IANA zone that defines calendar days, weeks and months"
    )
    repayment_tolerance: float = Field(
        default=0.005,
        ge=0.0,
        le=1.0,
        description="A repayment within this much of the balance closes the loan"
    )

    chat_context_size: int = Field(
        default=10,
        ge=0,
        le=100,
        description="Recent transactions sent with a chat request"
    )
    import_context_size: int = Field(
        default=20,
        ge=0,
        le=200,
        description="Recent transactions sent with a bulk import request"
    )
    min_insight_transactions: int = Field(
        default=5,
        ge=1,
        description="Ledger size below which insights are not requested"
    )

    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Largest statement file bulk import accepts"
    )
    supported_import_formats: str = Field(
        default="csv,png,jpg,jpeg,pdf",
        description="File extensions bulk import accepts, comma separated"
    )

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        ZoneInfo(v)  # raises for unknown names
        return v

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def supported_formats_list(self) -> list[str]:
        return [ext.strip().lower() for ext in self.supported_import_formats.split(",")]

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


class Settings(BaseSettings):
    """Entry point to the three groups; each is parsed when first read."""

    model_config = _env()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings. Tests call get_settings.cache_clear() to reload."""
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Try to load each settings group.

    Returns {group: ok}; a failed group also gets a "{group}_error" entry
    with the pydantic message, for the sidebar health panel.
    """
    results = {}
    settings = get_settings()

    for name in ("google_sheets", "gemini", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
