"""
Export Scheduler - One-Shot and Cron Execution

Drives repeated extraction cycles:

    IDLE -> RUNNING -> COMPLETED -> WAITING -> RUNNING ...   (CRON set)
                    -> COMPLETED -> TERMINATED               (no CRON)
                    -> PERSISTENTLY_FAILED -> (cooldown) -> RUNNING

Features:
- Cron-based scheduling (configurable via CRON), next run computed from "now"
  after every completed cycle
- Persistent error cooldown (PERSISTENT_ERROR_COOLDOWN) before restarting a
  failed cycle from scratch
- Graceful shutdown on SIGINT/SIGTERM

Usage:
    # Run once and exit
    python -m apps.exporter --output data.csv --bqtable orders

    # Scheduled mode
    CRON="0 3 * * *" python -m apps.exporter
"""

import asyncio
import logging
import signal
from datetime import datetime, tzinfo
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence

from apscheduler.triggers.cron import CronTrigger
from pydantic import ValidationError

from apps.exporter.job import ExtractionJob
from utils.bigquery import BigQuerySource
from utils.config import Settings, load_settings
from utils.errors import error_context
from utils.logging import setup_logging
from utils.schemas import RunOutcome, RunResult, ScheduleState

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    PERSISTENTLY_FAILED = "persistently_failed"
    WAITING = "waiting"
    TERMINATED = "terminated"


def next_fire_after(cron: str, now: datetime, timezone: Optional[tzinfo] = None) -> datetime:
    """
    Next occurrence of a crontab expression strictly after ``now``.

    Args:
        cron: Five-field crontab expression
        now: Timezone-aware reference instant
        timezone: Zone the expression is evaluated in (None = local zone)

    Raises:
        ValueError: If the expression is invalid or never fires again
    """
    trigger = CronTrigger.from_crontab(cron, timezone=timezone)
    next_fire = trigger.get_next_fire_time(now, now)
    if next_fire is None:
        raise ValueError(f"Cron expression {cron!r} has no occurrence after {now.isoformat()}")
    return next_fire


def seconds_until(target: datetime, now: datetime) -> float:
    return max(0.0, (target - now).total_seconds())


class ExportScheduler:
    """
    Run loop for periodic or one-shot extraction.

    Handles:
    - Cycle execution and persistent failure cooldown
    - Cron-based next run computation
    - Signal handling for graceful shutdown
    """

    def __init__(
        self,
        job: ExtractionJob,
        cron: Optional[str] = None,
        persistent_error_cooldown_ms: int = 600000,
        timezone: Optional[tzinfo] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        """
        Initialize scheduler.

        Args:
            job: Extraction cycle to run
            cron: Crontab expression, or None to run once and exit
            persistent_error_cooldown_ms: Wait after a persistently failed cycle
            timezone: Zone used for "now" and cron evaluation (None = local)
            clock: Returns the current timezone-aware instant (injectable for tests)
            sleep: Waits the given seconds (injectable for tests)
        """
        self.job = job
        self.schedule = ScheduleState(cron=cron)
        self.cooldown_seconds = persistent_error_cooldown_ms / 1000
        self.timezone = timezone
        self.state = SchedulerState.IDLE
        self.last_result: Optional[RunResult] = None
        self.cycles = 0
        self.shutdown_event = asyncio.Event()
        self._clock = clock or self._now
        self._sleep = sleep or self._interruptible_sleep

        logger.info(
            "ExportScheduler initialized",
            extra={
                "cron_schedule": cron,
                "persistent_error_cooldown_ms": persistent_error_cooldown_ms,
            },
        )

    def _now(self) -> datetime:
        return datetime.now(self.timezone) if self.timezone else datetime.now().astimezone()

    async def _interruptible_sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _transition(self, state: SchedulerState) -> None:
        logger.debug("Scheduler state: %s -> %s", self.state.value, state.value)
        self.state = state

    def stop(self) -> None:
        """Request shutdown; takes effect at the next wait or after the running cycle."""
        self.shutdown_event.set()

    async def run_cycle(self) -> RunResult:
        """Run one extraction cycle; failures are returned, not raised."""
        self._transition(SchedulerState.RUNNING)
        self.cycles += 1
        logger.info("Starting extraction", extra={"cycle": self.cycles})

        try:
            result = await self.job.run()
        except Exception as e:
            result = RunResult(outcome=RunOutcome.FAILURE, error=e)
            self._transition(SchedulerState.PERSISTENTLY_FAILED)
            logger.error(
                "Extraction failed: %s",
                str(e),
                extra={"error_type": type(e).__name__, "context": error_context(e)},
                exc_info=True,
            )
        else:
            self._transition(SchedulerState.COMPLETED)
            logger.info(
                "Extraction completed",
                extra={"rows_written": result.rows_written, "output_file": result.output_path},
            )

        self.last_result = result
        return result

    async def run(self) -> Optional[RunResult]:
        """
        Loop until a one-shot cycle succeeds or shutdown is requested.

        Returns:
            The last cycle's result
        """
        while not self.shutdown_event.is_set():
            result = await self.run_cycle()

            if not result.succeeded:
                logger.info(
                    "Persistent error occurred. Will retry in %.0fs", self.cooldown_seconds
                )
                await self._sleep(self.cooldown_seconds)
                continue

            if not self.schedule.recurring:
                break

            now = self._clock()
            self.schedule.next_fire = next_fire_after(self.schedule.cron, now, self.timezone)
            delay = seconds_until(self.schedule.next_fire, now)

            self._transition(SchedulerState.WAITING)
            logger.info(
                "Next extraction will start in %.0fs at %s",
                delay,
                self.schedule.next_fire.isoformat(),
            )
            await self._sleep(delay)

        self._transition(SchedulerState.TERMINATED)
        return self.last_result

    def setup_signal_handlers(self) -> None:
        """Setup handlers for graceful shutdown on SIGINT/SIGTERM."""

        def signal_handler(signum: int, frame: object) -> None:
            logger.info(f"Received signal {signum}, initiating graceful shutdown")
            self.stop()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def start(self) -> Optional[RunResult]:
        """Install signal handlers and run the loop."""
        self.setup_signal_handlers()
        mode = "scheduled" if self.schedule.recurring else "one-shot"
        logger.info(f"Running in {mode} mode")
        result = await self.run()
        logger.info("Scheduler shutdown complete", extra={"cycles": self.cycles})
        return result


def build_scheduler(settings: Settings, source: Optional[BigQuerySource] = None) -> ExportScheduler:
    """Wire settings -> source -> job -> scheduler."""
    tz = settings.tzinfo

    if source is None:
        source = BigQuerySource(project=settings.BQPROJECT, key_file=settings.BQKEYFILE)

    job = ExtractionJob(
        source=source,
        spec=settings.source_spec,
        output_path=settings.OUTPUT,
        output_format=settings.output_format,
        retry_config=settings.retry_config,
        timestamp_format=settings.TIMESTAMP_FORMAT,
        sort_columns=settings.SORT_COLUMNS,
        tz=tz,
    )

    return ExportScheduler(
        job,
        cron=settings.CRON,
        persistent_error_cooldown_ms=settings.PERSISTENT_ERROR_COOLDOWN,
        timezone=tz,
    )


async def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the exporter. Returns the process exit code."""
    try:
        settings = load_settings(argv)
    except ValidationError as e:
        setup_logging()
        logger.error("Invalid configuration: %s", str(e))
        return 2

    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    logger.info(
        "Exporter configured",
        extra={
            "output": settings.OUTPUT,
            "source": settings.source_spec.description,
            "retry": settings.RETRY,
            "retry_delay_ms": settings.RETRY_DELAY,
            "cron": settings.CRON,
        },
    )

    scheduler = build_scheduler(settings)

    try:
        await scheduler.start()
    except Exception as e:
        logger.error("Scheduler failed", extra={"error": str(e)}, exc_info=True)
        return 1
    return 0
