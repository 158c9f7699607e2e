"""
Row Transformer

Normalizes BigQuery date and timestamp values into fixed display strings:

- DATE (``datetime.date``)          -> ``DD/MM/YYYY``
- TIMESTAMP (tz-aware ``datetime``) -> ``DD/MM/YYYY HH:mm:ss`` in the display timezone

Everything else, including naive DATETIME values, passes through unchanged.
"""

from datetime import date, datetime, tzinfo
from typing import Any, Optional

from utils.errors import TransformError
from utils.schemas import Row

DATE_FORMAT = "%d/%m/%Y"
TIMESTAMP_FORMAT = "%d/%m/%Y %H:%M:%S"


def format_value(value: Any, tz: Optional[tzinfo] = None) -> Any:
    """Format a single value; non date/timestamp values are returned as is."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value
        # astimezone(None) converts to the process local time
        return value.astimezone(tz).strftime(TIMESTAMP_FORMAT)
    if isinstance(value, date):
        return value.strftime(DATE_FORMAT)
    return value


def transform_row(row: Row, tz: Optional[tzinfo] = None) -> Row:
    """
    Apply value normalization to every field of a row.

    Args:
        row: Source row
        tz: Display timezone for TIMESTAMP values (None = local time)

    Returns:
        New row with the same keys

    Raises:
        TransformError: If a field cannot be formatted. The error carries the
            field key, the offending value and the whole row.
    """
    transformed: Row = {}
    for key, value in row.items():
        try:
            transformed[key] = format_value(value, tz)
        except (ValueError, OverflowError, TypeError) as e:
            raise TransformError(
                f"Failed to format field {key!r}: {e}", key=key, value=value, row=row
            ) from e
    return transformed
