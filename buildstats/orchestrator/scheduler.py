"""Continuous scheduler: one independent loop per scrape job.

Each job runs in its own ``asyncio`` task for the lifetime of the process:

1. Execute ``job.scrape()`` through the injected
   :class:`~buildstats.orchestrator.retry.RetryForever` policy, which replays
   a failed execution every 30 s until it succeeds.
2. Log the completion and its duration.
3. Sleep ``job.interval`` seconds, then repeat.

A job's next execution starts only after the previous one (including its
retries) has returned, so one job never runs concurrently with itself and
its seen-set needs no lock.  Jobs never wait for each other: a job stuck
retrying leaves every other loop untouched.

Shutdown
~~~~~~~~
``SIGTERM`` and ``SIGINT`` set a stop event.  Every loop task is then
cancelled, which interrupts whichever wait or upstream call it is in, and
the scheduler waits at most ``grace_period`` seconds for the loops to
finish.  Exceptions that are never retrieved from a background task are
logged at CRITICAL by a loop-level exception handler.

Typical usage::

    from buildstats.orchestrator.retry import RetryForever
    from buildstats.orchestrator.scheduler import run_continuous

    await run_continuous(jobs, retry_policy=RetryForever(30.0), grace_period=10.0)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import time
from collections.abc import Sequence
from typing import Any

from buildstats.core import events
from buildstats.core.exceptions import SchedulerError
from buildstats.core.logging_config import SCRAPER_CTX
from buildstats.orchestrator.retry import RetryForever
from buildstats.scrapers.base import ScrapeJob

__all__ = [
    "DEFAULT_GRACE_PERIOD",
    "run_job_loop",
    "run_once",
    "run_continuous",
]

logger = logging.getLogger(__name__)

#: Seconds shutdown waits for job loops after cancelling them.
DEFAULT_GRACE_PERIOD: float = 10.0

_SHUTDOWN_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGTERM, signal.SIGINT)


# ---------------------------------------------------------------------------
# Single job
# ---------------------------------------------------------------------------


async def _scrape_once(job: ScrapeJob, retry_policy: RetryForever) -> float:
    """Run one execution through the policy; return its duration in ms."""
    logger.debug("Beginning scrape for %s", job.name, extra={"event": events.SCRAPE_START})
    started = time.monotonic()
    await retry_policy.run(job.scrape, name=job.name)
    elapsed_ms = (time.monotonic() - started) * 1000.0
    logger.info(
        "Scrape complete, taking %.0f ms",
        elapsed_ms,
        extra={"event": events.SCRAPE_COMPLETE, "duration_ms": round(elapsed_ms)},
    )
    return elapsed_ms


async def run_job_loop(job: ScrapeJob, retry_policy: RetryForever) -> None:
    """Run *job* on its fixed interval until cancelled.

    The scraper name is bound to the logging context for every line this
    loop emits.

    If the retry harness itself raises (anything other than cancellation),
    the error is logged at CRITICAL and this loop ends.  Other loops are
    unaffected.

    Raises:
        asyncio.CancelledError: Re-raised after logging when the task is
            cancelled.
    """
    SCRAPER_CTX.set(job.name)
    logger.info(
        "%s background task is starting (interval %.0f s)",
        job.name,
        job.interval,
        extra={"event": events.LOOP_START},
    )
    try:
        while True:
            await _scrape_once(job, retry_policy)
            await asyncio.sleep(job.interval)
    except asyncio.CancelledError:
        logger.info(
            "Task cancellation detected in %s background task - shutting down",
            job.name,
            extra={"event": events.LOOP_STOP},
        )
        raise
    except Exception:
        logger.critical(
            "%s background task terminated by an error in its retry harness",
            job.name,
            exc_info=True,
            extra={"event": events.LOOP_CRASH},
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _check_jobs(jobs: Sequence[ScrapeJob]) -> None:
    if not jobs:
        raise SchedulerError("No scrape jobs to run.")
    names = [job.name for job in jobs]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise SchedulerError(f"Duplicate scrape job name(s): {', '.join(duplicates)}")


def _log_unhandled_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    exc = context.get("exception")
    logger.critical(
        "Unhandled exception in background task: %s",
        context.get("message", "unknown error"),
        exc_info=exc,
        extra={"event": events.UNHANDLED_TASK_EXCEPTION},
    )


async def _stop_tasks(tasks: Sequence[asyncio.Task[None]], grace_period: float) -> None:
    for task in tasks:
        task.cancel()
    done, pending = await asyncio.wait(tasks, timeout=grace_period)
    for task in done:
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Job loop %s ended with an error.",
                task.get_name(),
                exc_info=task.exception(),
            )
    if pending:
        logger.warning(
            "%d job loop(s) did not stop within the %.0f s grace period: %s",
            len(pending),
            grace_period,
            ", ".join(sorted(t.get_name() for t in pending)),
        )


# ---------------------------------------------------------------------------
# Public entry-points
# ---------------------------------------------------------------------------


async def run_once(jobs: Sequence[ScrapeJob], retry_policy: RetryForever) -> None:
    """Run every job exactly once, concurrently, each through *retry_policy*."""
    _check_jobs(jobs)

    async def _one(job: ScrapeJob) -> None:
        SCRAPER_CTX.set(job.name)
        await _scrape_once(job, retry_policy)

    await asyncio.gather(*(_one(job) for job in jobs))


async def run_continuous(
    jobs: Sequence[ScrapeJob],
    *,
    retry_policy: RetryForever,
    grace_period: float = DEFAULT_GRACE_PERIOD,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Run every job on its own loop until a shutdown is requested.

    Returns after SIGTERM/SIGINT (or *stop_event* being set) once every loop
    has stopped or *grace_period* has elapsed.  Also returns if every loop
    has ended on its own.

    Args:
        jobs: Jobs to schedule; names must be unique.
        retry_policy: Policy shared by every loop.  It holds no per-job
            state.
        grace_period: Seconds to wait for loops after cancelling them.
        stop_event: Externally controlled stop signal.  A private event is
            created when omitted.

    Raises:
        SchedulerError: If *jobs* is empty or contains duplicate names.
        asyncio.CancelledError: If the calling task itself is cancelled; the
            loops are stopped first.
    """
    _check_jobs(jobs)

    loop = asyncio.get_running_loop()
    stop = stop_event if stop_event is not None else asyncio.Event()
    previous_handler = loop.get_exception_handler()
    loop.set_exception_handler(_log_unhandled_exception)

    logger.info(
        "Scheduling %d scrape job(s): %s",
        len(jobs),
        ", ".join(f"{job.name}/{job.interval:.0f}s" for job in jobs),
    )
    tasks = [
        asyncio.create_task(run_job_loop(job, retry_policy), name=f"buildstats-{job.name}")
        for job in jobs
    ]

    def _on_task_done(_: asyncio.Task[None]) -> None:
        if not stop.is_set() and all(t.done() for t in tasks):
            logger.critical("Every job loop has exited; stopping.")
            stop.set()

    for task in tasks:
        task.add_done_callback(_on_task_done)

    shutdown_signal: list[str] = []

    def _request_shutdown(signame: str) -> None:
        if not shutdown_signal:
            shutdown_signal.append(signame)
            logger.info(
                "Received %s, graceful shutdown requested.",
                signame,
                extra={"event": events.SHUTDOWN_REQUESTED},
            )
        stop.set()

    installed: list[signal.Signals] = []
    for sig in _SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, _request_shutdown, sig.name)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handler for %s not supported here.", sig.name)

    try:
        await stop.wait()
    finally:
        await _stop_tasks(tasks, grace_period)
        for sig in installed:
            with contextlib.suppress(Exception):
                loop.remove_signal_handler(sig)
        loop.set_exception_handler(previous_handler)
        logger.info(
            "Graceful shutdown complete (signal: %s).",
            shutdown_signal[0] if shutdown_signal else "none",
            extra={"event": events.SHUTDOWN_COMPLETE},
        )
