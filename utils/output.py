"""
File Output Utilities

Writes serialized export data to the output path. Files are written to a
temporary sibling first and moved into place, so a reader never sees a
partially written export.
"""

import asyncio
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def resolve_output_path(path: str, timestamp_format: Optional[str], now: datetime) -> str:
    """
    Insert the formatted timestamp before the file extension.

    Args:
        path: Configured output path, e.g. ``exports/data.csv``
        timestamp_format: strftime format, or None to keep the path unchanged
        now: Instant to format

    Returns:
        Output path, e.g. ``exports/data20250115_031500.csv``
    """
    if not timestamp_format:
        return path

    target = Path(path)
    stamped = f"{target.stem}{now.strftime(timestamp_format)}{target.suffix}"
    return str(target.with_name(stamped))


def _write_atomic(data: bytes, path: str) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, target)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise


async def write_output(data: bytes, path: str) -> None:
    """
    Write export bytes to path without blocking the event loop.

    Args:
        data: Serialized file content
        path: Destination file path (parent directories are created)

    Raises:
        OSError: If the file cannot be written
    """
    await asyncio.to_thread(_write_atomic, data, path)
    logger.info("Output file written: path=%s, bytes=%d", path, len(data))
