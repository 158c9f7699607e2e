"""
Extraction Job - One Extract-to-File Cycle

Runs the extract stage (stream, transform, accumulate, serialize) and, when
rows were found, the write stage. Each stage is wrapped in its own retry
policy; a retry always restarts the whole stage.

Output:
- <OUTPUT> or <OUTPUT stem><timestamp><OUTPUT extension>
"""

import logging
import time
from datetime import datetime, tzinfo
from typing import Awaitable, Callable, NamedTuple, Optional

from apps.exporter.retry import RetryPolicy
from apps.exporter.serializer import BatchAccumulator
from apps.exporter.stream import SourceStream
from apps.exporter.transform import transform_row
from utils.bigquery import BigQuerySource
from utils.output import resolve_output_path, write_output
from utils.schemas import OutputFormat, RetryConfig, RunResult, SourceSpec

logger = logging.getLogger(__name__)

Writer = Callable[[bytes, str], Awaitable[None]]


class ExtractedBatch(NamedTuple):
    rows: int
    data: Optional[bytes]


class ExtractionJob:
    """
    One extraction-to-write cycle over a configured source and output.

    The retry policies live on the job, so their counters persist across
    cycles while every cycle gets a fresh row buffer.
    """

    def __init__(
        self,
        source: BigQuerySource,
        spec: SourceSpec,
        output_path: str,
        output_format: OutputFormat,
        retry_config: RetryConfig,
        timestamp_format: Optional[str] = None,
        sort_columns: bool = False,
        tz: Optional[tzinfo] = None,
        writer: Writer = write_output,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_buffered: int = 1000,
    ) -> None:
        self.source = source
        self.spec = spec
        self.output_path = output_path
        self.output_format = output_format
        self.timestamp_format = timestamp_format
        self.sort_columns = sort_columns
        self.tz = tz
        self.max_buffered = max_buffered
        self.extract_policy = RetryPolicy("Extraction", retry_config, sleep=sleep)
        self.write_policy = RetryPolicy("Write", retry_config, sleep=sleep)
        self._writer = writer
        self._clock = clock or (lambda: datetime.now(self.tz))

    async def extract(self) -> ExtractedBatch:
        """
        Stream, transform and serialize the whole source once.

        Raises:
            TransportError: If the source stream fails
            TransformError: If a row cannot be normalized
        """
        start_time = time.time()
        batch = BatchAccumulator(self.output_format, sort_columns=self.sort_columns)

        logger.info("Reading %s", self.spec.description)

        async with SourceStream(self.source.open(self.spec), max_buffered=self.max_buffered) as stream:
            async for row, schema in stream:
                batch.add(transform_row(row, self.tz), schema)

        rows = len(batch)
        data = batch.serialize() if rows > 0 else None

        logger.info(
            "Extraction finished: rows=%d, bytes=%d, elapsed=%.3fs",
            rows,
            len(data) if data is not None else 0,
            time.time() - start_time,
        )
        return ExtractedBatch(rows=rows, data=data)

    async def run(self) -> RunResult:
        """
        Run one cycle: retried extraction, then retried write if there is data.

        Returns:
            RunResult with the number of rows written and the output path

        Raises:
            Exception: The last stage error once that stage's retries are exhausted
        """
        batch = await self.extract_policy.call(self.extract)

        if batch.rows == 0:
            logger.info("No rows extracted, skipping write")
            return RunResult(rows_written=0)

        path = resolve_output_path(self.output_path, self.timestamp_format, self._clock())
        await self.write_policy.call(lambda: self._writer(batch.data, path))

        return RunResult(rows_written=batch.rows, output_path=path)
