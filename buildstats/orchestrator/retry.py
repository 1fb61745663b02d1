"""Job-level retry policy: retry the same execution forever with a fixed delay.

Scrape jobs talk to an unreliable, rate-limited server, and every execution
is an idempotent metric publish, so a failed execution is simply replayed
until it succeeds.  The policy is a plain object injected into each job
loop, so the loop's cancellation handling stays separate from the backoff
strategy and tests can swap the sleep for a recorder.

Only :class:`Exception` subclasses are retried.  :class:`asyncio.CancelledError`
(a :class:`BaseException`) interrupts the current attempt or the backoff
wait immediately and propagates to the loop.

Typical usage::

    from buildstats.orchestrator.retry import RetryForever

    policy = RetryForever(delay=30.0)
    await policy.run(job.scrape, name=job.name)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_never,
    wait_fixed,
)

from buildstats.core import events

__all__ = ["DEFAULT_RETRY_DELAY", "RetryForever"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: Seconds between attempts of a failed execution.
DEFAULT_RETRY_DELAY: float = 30.0


async def _asyncio_sleep(seconds: float) -> None:
    # Resolved at call time so tests patching ``asyncio.sleep`` take effect.
    await asyncio.sleep(seconds)


class RetryForever:
    """Unbounded, fixed-delay retry of an async operation.

    Args:
        delay: Seconds to wait between a failed attempt and the next one.
        sleep: Awaitable sleep used for the wait.  Defaults to
            :func:`asyncio.sleep`.

    Raises:
        ValueError: If *delay* is negative.
    """

    def __init__(
        self,
        delay: float = DEFAULT_RETRY_DELAY,
        *,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        if delay < 0:
            raise ValueError(f"delay must be ≥ 0, got {delay!r}.")
        self.delay = delay
        self._sleep = sleep or _asyncio_sleep

    async def run(self, operation: Callable[[], Awaitable[T]], *, name: str = "operation") -> T:
        """Await ``operation()`` until it returns without raising.

        Args:
            operation: Zero-argument coroutine function; called afresh for
                every attempt.
            name: Label used in the failure log lines.

        Returns:
            The value of the first successful attempt.

        Raises:
            asyncio.CancelledError: The task was cancelled during an attempt
                or during the backoff wait.
        """

        def _log_failure(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.error(
                "Exception %s while scraping %s. Waiting %.0f s before next retry. "
                "Retry attempt %d",
                exc,
                name,
                rs.next_action.sleep if rs.next_action else self.delay,
                rs.attempt_number,
                exc_info=exc,
                extra={"event": events.SCRAPE_RETRY, "attempt": rs.attempt_number},
            )

        result: T | None = None
        async for attempt in AsyncRetrying(
            wait=wait_fixed(self.delay),
            stop=stop_never,
            retry=retry_if_exception_type(Exception),
            reraise=True,
            before_sleep=_log_failure,
            sleep=self._sleep,
        ):
            with attempt:
                result = await operation()
        return result  # type: ignore[return-value]

    def __repr__(self) -> str:
        return f"RetryForever(delay={self.delay!r})"
