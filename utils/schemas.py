"""
Pydantic Schemas - Data Models

Defines the models shared throughout the export pipeline:
- Source selection (table or query)
- Table schema descriptors
- Retry configuration
- Cycle results and schedule state

Usage:
    from utils.schemas import RetryConfig

    config = RetryConfig(max_attempts=5, delay_ms=10000)
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

Row = dict[str, Any]


class OutputFormat(str, Enum):
    """Output file formats, keyed by file extension."""

    CSV = "csv"
    XLSX = "xlsx"


class FieldDescriptor(BaseModel):
    """One column of a table schema."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Column name")
    field_type: str = Field(default="STRING", description="BigQuery logical type")
    mode: str = Field(default="NULLABLE", description="NULLABLE, REQUIRED or REPEATED")


class TableSchema(BaseModel):
    """Ordered column descriptors of a table or query result."""

    model_config = ConfigDict(frozen=True)

    fields: tuple[FieldDescriptor, ...] = Field(default=())

    @property
    def names(self) -> list[str]:
        return [field.name for field in self.fields]


class SourceSpec(BaseModel):
    """What to read: a table name XOR a SQL query, inside a project/dataset."""

    model_config = ConfigDict(frozen=True)

    project: str = Field(..., description="BigQuery project")
    dataset: str = Field(..., description="Default dataset")
    table: Optional[str] = Field(default=None, description="Table name")
    query: Optional[str] = Field(default=None, description="Free-form SQL query")

    @model_validator(mode="after")
    def validate_table_or_query(self) -> "SourceSpec":
        if bool(self.table) == bool(self.query):
            raise ValueError("Exactly one of table or query must be set")
        return self

    @property
    def description(self) -> str:
        if self.table:
            return f"table {self.project}.{self.dataset}.{self.table}"
        return "query"


class RetryConfig(BaseModel):
    """Retry policy configuration, shared by the extract and write stages.

    Attributes:
        max_attempts: Additional attempts after the first failure (0 = no retry)
        delay_ms: Fixed delay between attempts in milliseconds
        reset_on_success: Reset the failure counter after a successful call
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=5, ge=0)
    delay_ms: int = Field(default=10000, ge=0)
    reset_on_success: bool = Field(default=True)

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000


class RunOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class RunResult(BaseModel):
    """Outcome of one extraction-to-write cycle."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    rows_written: int = Field(default=0, ge=0)
    outcome: RunOutcome = Field(default=RunOutcome.SUCCESS)
    error: Optional[BaseException] = Field(default=None)
    output_path: Optional[str] = Field(default=None)

    @property
    def succeeded(self) -> bool:
        return self.outcome is RunOutcome.SUCCESS


class ScheduleState(BaseModel):
    """One-shot (no cron) or recurring schedule with its next fire instant."""

    cron: Optional[str] = Field(default=None, description="Crontab expression")
    next_fire: Optional[datetime] = Field(default=None)

    @property
    def recurring(self) -> bool:
        return self.cron is not None
