"""
Configuration Utility - Environment Variables Management

Centralized configuration loading from environment variables, an optional
.env file and command line flags using pydantic-settings.
Type-safe access to all options with validation.

Usage:
    from utils.config import load_settings

    settings = load_settings(sys.argv[1:])
    output = settings.OUTPUT
    retries = settings.RETRY
"""

import argparse
import os
from pathlib import Path
from typing import Any, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.schemas import OutputFormat, RetryConfig, SourceSpec

ALLOWED_EXTENSIONS = tuple(fmt.value for fmt in OutputFormat)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Output Configuration
    OUTPUT: str = Field(..., description="Output file path (.csv or .xlsx)")
    TIMESTAMP_FORMAT: Optional[str] = Field(default=None)
    SORT_COLUMNS: bool = Field(default=False)

    # Retry Configuration
    RETRY: int = Field(default=5, ge=0)
    RETRY_DELAY: int = Field(default=10000, ge=0)
    PERSISTENT_ERROR_COOLDOWN: int = Field(default=600000, ge=0)

    # Scheduler Configuration
    CRON: Optional[str] = Field(default=None)
    TIMEZONE: Optional[str] = Field(default=None)

    # BigQuery Configuration
    BQKEYFILE: Optional[str] = Field(default=None)
    BQPROJECT: str = Field(...)
    BQDATASET: str = Field(...)
    BQTABLE: Optional[str] = Field(default=None)
    SQL: Optional[str] = Field(default=None)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="text")

    @field_validator("OUTPUT")
    @classmethod
    def validate_output_extension(cls, v: str) -> str:
        extension = Path(v).suffix[1:].lower()
        if extension not in ALLOWED_EXTENSIONS:
            raise ValueError(
                f"Unsupported output extension {extension!r}. "
                f"Allowed extensions: {', '.join(ALLOWED_EXTENSIONS)}."
            )
        return v

    @field_validator("CRON", "TIMESTAMP_FORMAT", "BQTABLE", "SQL", "BQKEYFILE", "TIMEZONE")
    @classmethod
    def empty_as_unset(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("CRON")
    @classmethod
    def validate_cron(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        try:
            CronTrigger.from_crontab(v, timezone="UTC")
        except ValueError as e:
            raise ValueError(f"Invalid cron expression {v!r}: {e}") from e
        return v

    @field_validator("TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone {v!r}") from e
        return v

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return v

    @model_validator(mode="after")
    def validate_source(self) -> "Settings":
        if not self.BQTABLE and not self.SQL:
            raise ValueError("BQTABLE or SQL must be set")
        if self.BQTABLE and self.SQL:
            raise ValueError("BQTABLE and SQL are mutually exclusive")
        return self

    @property
    def output_format(self) -> OutputFormat:
        return OutputFormat(Path(self.OUTPUT).suffix[1:].lower())

    @property
    def tzinfo(self) -> Optional[ZoneInfo]:
        return ZoneInfo(self.TIMEZONE) if self.TIMEZONE else None

    @property
    def retry_config(self) -> RetryConfig:
        return RetryConfig(max_attempts=self.RETRY, delay_ms=self.RETRY_DELAY)

    @property
    def source_spec(self) -> SourceSpec:
        return SourceSpec(
            project=self.BQPROJECT,
            dataset=self.BQDATASET,
            table=self.BQTABLE,
            query=self.SQL,
        )


def build_parser() -> argparse.ArgumentParser:
    """Command line flags mirroring the environment variables.

    Flags left unset fall back to the environment / .env file.
    """
    parser = argparse.ArgumentParser(
        prog="bq-exporter",
        description="Export a BigQuery table or query result to a CSV or XLSX file",
    )
    parser.add_argument("--env", dest="ENV", help="Path to .env file (env: ENV)")
    parser.add_argument(
        "-o",
        "--output",
        dest="OUTPUT",
        help=f"Output file path. Allowed extensions: {', '.join(ALLOWED_EXTENSIONS)}.",
    )
    parser.add_argument(
        "-t",
        "--timestamp-format",
        dest="TIMESTAMP_FORMAT",
        help="strftime format of the timestamp appended to the output filename",
    )
    parser.add_argument("-r", "--retry", dest="RETRY", type=int, help="Retry errors (default: 5)")
    parser.add_argument(
        "--retry-delay",
        dest="RETRY_DELAY",
        type=int,
        help="Time delay in ms before retrying errors (default: 10000)",
    )
    parser.add_argument(
        "-c",
        "--persistent-error-cooldown",
        dest="PERSISTENT_ERROR_COOLDOWN",
        type=int,
        help="Time in ms between re-extraction attempts after a persistent error (default: 600000)",
    )
    parser.add_argument("--cron", dest="CRON", help="Cron expression to schedule extraction")
    parser.add_argument("--timezone", dest="TIMEZONE", help="IANA timezone for timestamps and cron")
    parser.add_argument("--bqkeyfile", dest="BQKEYFILE", help="BigQuery key file")
    parser.add_argument("--bqproject", dest="BQPROJECT", help="BigQuery project name")
    parser.add_argument("--bqdataset", dest="BQDATASET", help="BigQuery dataset name")
    parser.add_argument("--bqtable", dest="BQTABLE", help="BigQuery table name")
    parser.add_argument("--sql", dest="SQL", help="Custom SQL query instead of a table name")
    parser.add_argument(
        "--sort-columns",
        dest="SORT_COLUMNS",
        action="store_const",
        const=True,
        help="Sort output columns alphabetically",
    )
    parser.add_argument("--log-level", dest="LOG_LEVEL", help="Log level (default: INFO)")
    parser.add_argument("--log-format", dest="LOG_FORMAT", help="Log format: text or json (default: text)")
    return parser


def load_settings(argv: Optional[Sequence[str]] = None) -> Settings:
    """Build settings from CLI flags, the .env file and the environment.

    CLI flags take precedence over environment variables, which take
    precedence over the .env file.

    Raises:
        pydantic.ValidationError: If the resulting configuration is invalid
    """
    args = vars(build_parser().parse_args(argv))
    env_file = args.pop("ENV") or os.getenv("ENV") or ".env"
    overrides: dict[str, Any] = {k: v for k, v in args.items() if v is not None}
    return Settings(_env_file=env_file, **overrides)


