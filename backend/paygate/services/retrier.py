"""
Backoff Retrier — retries transient ledger failures with exponential delay.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from paygate.errors import RetryableLedgerError

logger = logging.getLogger("paygate.retrier")

T = TypeVar("T")

RETRYABLE_ERRORS = (
    RetryableLedgerError,
    TimeoutError,
    asyncio.TimeoutError,
    ConnectionError,
    httpx.TransportError,
)


def is_retryable(error: BaseException) -> bool:
    """Network/timeout/try-again errors are retried; everything else is fatal."""
    return isinstance(error, RETRYABLE_ERRORS)


class BackoffRetrier:
    """Wraps an async operation; waits `base * 2**(attempt-1)` between tries.

    After the last attempt the final error is re-raised unmodified so callers
    can tell transient exhaustion apart from a fatal cause.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep or asyncio.sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
    ) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts or self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=2, min=0, max=self.max_delay),
            retry=retry_if_exception(is_retryable),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        # `operation` may be a plain lambda returning a coroutine
        async for attempt in retrying:
            with attempt:
                return await operation()

    @staticmethod
    def _log_retry(state: RetryCallState):
        error = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0
        logger.warning(
            f"Attempt {state.attempt_number} failed ({type(error).__name__}: {error}); "
            f"retrying in {delay:.2f}s"
        )
