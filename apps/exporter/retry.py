"""
Retry Policy

Wraps one async unit of work (an extraction attempt, a file write) with a
bounded number of fixed-delay retries using tenacity.

The failure counter is kept on the policy so it can be inspected: a success
resets it when ``reset_on_success`` is set, and an exhausted invocation
always starts the next one from zero.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, wait_fixed

from utils.schemas import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Fixed-delay retry around an async operation.

    Args:
        name: Stage name used in log messages
        config: Shared, immutable retry configuration
        sleep: Coroutine used to wait between attempts (injectable for tests)
    """

    def __init__(
        self,
        name: str,
        config: RetryConfig,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.name = name
        self.config = config
        self.failures = 0
        self.last_attempts = 0
        self._sleep = sleep or asyncio.sleep

    def _record_failure(self, retry_state: RetryCallState) -> None:
        self.failures += 1

    def _exhausted(self, retry_state: RetryCallState) -> bool:
        return self.failures > self.config.max_attempts

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            "%s failed (attempt %d/%d), retrying in %.1fs: %s",
            self.name,
            retry_state.attempt_number,
            self.config.max_attempts + 1,
            self.config.delay_seconds,
            str(error),
        )

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run operation, retrying failures per the configuration.

        Raises:
            Exception: The last error, unchanged, once all attempts are exhausted
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(Exception),
            stop=self._exhausted,
            wait=wait_fixed(self.config.delay_seconds),
            after=self._record_failure,
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    self.last_attempts = attempt.retry_state.attempt_number
                    result = await operation()
        except Exception:
            logger.error("%s failed after %d attempts", self.name, self.last_attempts)
            self.failures = 0
            raise

        if self.config.reset_on_success:
            self.failures = 0
        return result
