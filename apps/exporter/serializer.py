"""
Batch Accumulator and Serializers

Buffers the transformed rows of one extraction in memory and renders them
into the configured output format:

- csv:  one line per row as rows arrive, header once, UTF-8 BOM first
- xlsx: records collected, one sheet built from the whole batch at the end

Column order is resolved from the first row: schema order when a schema is
known, else the first row's key order; optionally sorted alphabetically.
"""

import base64
import csv
import io
import logging
from datetime import date, datetime, time
from typing import Any, Optional

import orjson
import pandas as pd
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from utils.schemas import OutputFormat, Row, TableSchema

logger = logging.getLogger(__name__)

BOM = "\ufeff"
SHEET_NAME = "Sheet1"


def resolve_field_order(row: Row, schema: Optional[TableSchema], sort_columns: bool = False) -> list[str]:
    fields = schema.names if schema is not None and schema.fields else list(row.keys())
    return sorted(fields) if sort_columns else fields


def _encode_nested(value: Any) -> Any:
    if isinstance(value, (dict, list, tuple)):
        return orjson.dumps(value, default=str).decode("utf-8")
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(value).decode("ascii")
    return value


def render_csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    value = _encode_nested(value)
    return value if isinstance(value, str) else str(value)


class CsvSerializer:
    """Serializes rows to delimited text, one independent line per row."""

    def __init__(self, fields: list[str]) -> None:
        self.fields = fields

    def _line(self, values: list[str]) -> str:
        buffer = io.StringIO()
        csv.writer(buffer, lineterminator="\n").writerow(values)
        return buffer.getvalue()

    def header(self) -> str:
        return self._line(self.fields)

    def row(self, row: Row) -> str:
        return self._line([render_csv_value(row.get(field)) for field in self.fields])


def _excel_value(value: Any) -> Any:
    value = _encode_nested(value)
    # Worksheets reject XML control characters
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def build_workbook(records: list[Row], fields: list[str]) -> bytes:
    """Build a single sheet workbook from all records."""
    df = pd.DataFrame.from_records(
        [{field: _excel_value(record.get(field)) for field in fields} for record in records],
        columns=fields,
    )
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name=SHEET_NAME)
    return buffer.getvalue()


class BatchAccumulator:
    """
    In-memory buffer for one extraction.

    A fresh accumulator is created for every extraction attempt, so a failed
    attempt's rows are discarded with it.
    """

    def __init__(self, output_format: OutputFormat, sort_columns: bool = False) -> None:
        self.output_format = output_format
        self.sort_columns = sort_columns
        self.fields: Optional[list[str]] = None
        self._csv: Optional[CsvSerializer] = None
        self._chunks: list[str] = []
        self._records: list[Row] = []

    def __len__(self) -> int:
        if self.output_format is OutputFormat.CSV:
            return len(self._chunks)
        return len(self._records)

    def add(self, row: Row, schema: Optional[TableSchema] = None) -> None:
        if self.fields is None:
            self.fields = resolve_field_order(row, schema, self.sort_columns)
            logger.debug("Output columns resolved: %s", self.fields)

        if self.output_format is OutputFormat.CSV:
            if self._csv is None:
                self._csv = CsvSerializer(self.fields)
                self._chunks.append(BOM + self._csv.header() + self._csv.row(row))
            else:
                self._chunks.append(self._csv.row(row))
        else:
            self._records.append(row)

    def serialize(self) -> bytes:
        """Render the whole batch. Only meaningful when at least one row was added."""
        if self.output_format is OutputFormat.CSV:
            return "".join(self._chunks).encode("utf-8")
        return build_workbook(self._records, self.fields or [])
