"""
Exponential backoff shared by sync jobs and provider HTTP calls.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Tuple, Type, TypeVar

import httpx

logger = logging.getLogger("wotc_sync.retry")

T = TypeVar("T")

# Transient network failures worth retrying at the HTTP layer
RETRYABLE_HTTP_ERRORS: Tuple[Type[BaseException], ...] = (httpx.TimeoutException, httpx.ConnectError)


@dataclass
class RetryOutcome(Generic[T]):
    success: bool
    attempts: int
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def retry_count(self) -> int:
        return max(self.attempts - 1, 0)


class RetryPolicy:
    """
    Run an async callable up to ``max_attempts`` times.

    Between attempts the policy suspends for ``base_delay * 2**attempt``
    seconds (attempt is zero-based), so with base 5 the waits are 5, 10, 20.
    A raised exception listed in ``retry_on``, or a returned value for which
    ``is_failure`` is true, counts as a failed attempt. Other exceptions
    propagate immediately.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        is_failure: Optional[Callable[[Any], bool]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        max_delay: Optional[float] = None,
        name: str = "operation",
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.retry_on = retry_on
        self.is_failure = is_failure
        self.sleep = sleep or asyncio.sleep
        self.max_delay = max_delay
        self.name = name

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay * (2 ** attempt)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    async def run(self, fn: Callable[[], Awaitable[T]]) -> RetryOutcome[T]:
        last_value: Optional[T] = None
        last_error: Optional[BaseException] = None

        for attempt in range(self.max_attempts):
            try:
                value = await fn()
            except self.retry_on as e:
                last_error, last_value = e, None
                reason = f"{e.__class__.__name__}: {e}"
            else:
                if self.is_failure is None or not self.is_failure(value):
                    return RetryOutcome(success=True, attempts=attempt + 1, value=value)
                last_error, last_value = None, value
                reason = "reported failure"

            if attempt < self.max_attempts - 1:
                wait_time = self.delay_for(attempt)
                logger.warning(
                    f"{self.name} failed (attempt {attempt + 1}/{self.max_attempts}): {reason}. "
                    f"Retrying in {wait_time}s..."
                )
                await self.sleep(wait_time)
            else:
                logger.error(f"{self.name} failed after {self.max_attempts} attempts: {reason}")

        return RetryOutcome(success=False, attempts=self.max_attempts, value=last_value, error=last_error)

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Like run, but re-raise the last exception when every attempt fails."""
        outcome = await self.run(fn)
        if outcome.error is not None:
            raise outcome.error
        return outcome.value  # type: ignore[return-value]
