"""Structured log event name constants for the scraper engine.

Every key transition in a job loop emits a log record with an ``event``
field (passed via ``extra={"event": events.X}``).  In ``LOG_FORMAT=json``
mode ``event`` appears under the ``extra`` key of each emitted JSON object,
and the Seq sink forwards it as a CLEF property, so dashboards can query
``event = 'SCRAPE_RETRY'`` without parsing message text.

Usage example::

    import logging
    from buildstats.core import events

    logger = logging.getLogger(__name__)

    logger.info("Scrape complete", extra={"event": events.SCRAPE_COMPLETE})
"""

from __future__ import annotations

__all__ = [
    # Job loop lifecycle
    "LOOP_START",
    "LOOP_STOP",
    "LOOP_CRASH",
    # Scrape lifecycle
    "SCRAPE_START",
    "SCRAPE_COMPLETE",
    "SCRAPE_RETRY",
    # Reconciliation
    "SERIES_CLEARED",
    # Optional collaborators
    "STORAGE_STATS_UNAVAILABLE",
    "WAIT_REASONS_UNAVAILABLE",
    # Process lifecycle
    "SHUTDOWN_REQUESTED",
    "SHUTDOWN_COMPLETE",
    "UNHANDLED_TASK_EXCEPTION",
]

#: A job loop has been started for the process lifetime.
LOOP_START: str = "LOOP_START"

#: A job loop exited after cancellation.
LOOP_STOP: str = "LOOP_STOP"

#: A job loop terminated because its retry harness itself raised.
LOOP_CRASH: str = "LOOP_CRASH"

#: One execution of a job is beginning.
SCRAPE_START: str = "SCRAPE_START"

#: One execution of a job finished successfully.
SCRAPE_COMPLETE: str = "SCRAPE_COMPLETE"

#: An execution failed and will be replayed after the fixed back-off.
SCRAPE_RETRY: str = "SCRAPE_RETRY"

#: A previously published series was zeroed or removed.
SERIES_CLEARED: str = "SERIES_CLEARED"

#: File-share capacity statistics could not be fetched; zeros published.
STORAGE_STATS_UNAVAILABLE: str = "STORAGE_STATS_UNAVAILABLE"

#: Per-build queued wait reasons could not be fetched; build skipped.
WAIT_REASONS_UNAVAILABLE: str = "WAIT_REASONS_UNAVAILABLE"

#: SIGTERM / SIGINT received.
SHUTDOWN_REQUESTED: str = "SHUTDOWN_REQUESTED"

#: All job loops joined (or the grace period elapsed).
SHUTDOWN_COMPLETE: str = "SHUTDOWN_COMPLETE"

#: An exception was never retrieved from a background task.
UNHANDLED_TASK_EXCEPTION: str = "UNHANDLED_TASK_EXCEPTION"
