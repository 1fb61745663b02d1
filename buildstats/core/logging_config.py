"""buildstats logging configuration.

Call ``configure_logging()`` once at process startup (e.g. in ``__main__``).
Every other module must define its own logger at module scope:

    import logging
    logger = logging.getLogger(__name__)

Supported environment variables (read at call time):
    LOG_LEVEL    DEBUG | INFO | WARNING | ERROR   (default: INFO)
    LOG_FORMAT   text | json                      (default: text)
    SEQ_URL      Seq server base URL              (default: unset, sink disabled)
    SEQ_API_KEY  Seq API key                      (default: unset)
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import queue
import sys
import traceback
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

import httpx

__all__ = [
    "configure_logging",
    "shutdown_logging",
    "JsonFormatter",
    "ClefFormatter",
    "SeqHandler",
    "SCRAPER_CTX",
    "ScraperContextFilter",
]

# ---------------------------------------------------------------------------
# Scraper-scoped context variable
# ---------------------------------------------------------------------------

#: Async-safe context variable that holds the name of the scrape job whose
#: loop is running.  Set once at the top of every job loop; each loop runs
#: in its own ``asyncio.Task`` and therefore its own context copy, so the
#: value never leaks between jobs.  Defaults to ``"-"`` outside any loop
#: (startup, teardown, tests).
SCRAPER_CTX: ContextVar[str] = ContextVar("scraper", default="-")

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

logger = logging.getLogger(__name__)

_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_FORMATS = {"text", "json"}

# ``%(scraper)s`` is injected by :class:`ScraperContextFilter`.
_TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(scraper)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

#: Application name attached to every event shipped to Seq.
_APPLICATION = "buildstats"

#: Background listener draining the Seq queue; ``None`` when the sink is off.
_seq_listener: logging.handlers.QueueListener | None = None


class ScraperContextFilter(logging.Filter):
    """Inject the current scraper name into every log record.

    Reads :data:`SCRAPER_CTX` and sets ``record.scraper`` before the record
    reaches any formatter.  Installed on every handler by
    :func:`configure_logging`.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.scraper = SCRAPER_CTX.get("-")
        return True


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    seq_url: str | None = None,
    seq_api_key: str | None = None,
    force: bool = False,
) -> None:
    """Configure the root logger for the entire process.

    Args:
        level: Logging level string (DEBUG/INFO/WARNING/ERROR/CRITICAL).
            Falls back to ``$LOG_LEVEL`` env var, then "INFO".
        fmt: Output format ("text" or "json").
            Falls back to ``$LOG_FORMAT`` env var, then "text".
        seq_url: Base URL of a Seq server.  Falls back to ``$SEQ_URL``.  When
            empty, no external sink is installed.
        seq_api_key: API key for the Seq server.  Falls back to
            ``$SEQ_API_KEY``.
        force: If True, reconfigure even if logging has already been set up.
            Useful in tests and CLI entry-points.

    Raises:
        ValueError: If *level* or *fmt* contain an unrecognised value.
    """
    global _seq_listener

    resolved_level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    resolved_fmt = (fmt or os.environ.get("LOG_FORMAT", "text")).lower()
    resolved_seq_url = seq_url if seq_url is not None else os.environ.get("SEQ_URL", "")
    resolved_seq_key = (
        seq_api_key if seq_api_key is not None else os.environ.get("SEQ_API_KEY", "")
    )

    if resolved_level not in _VALID_LEVELS:
        raise ValueError(
            f"Unknown LOG_LEVEL {resolved_level!r}. "
            f"Must be one of: {', '.join(sorted(_VALID_LEVELS))}"
        )
    if resolved_fmt not in _VALID_FORMATS:
        raise ValueError(
            f"Unknown LOG_FORMAT {resolved_fmt!r}. "
            f"Must be one of: {', '.join(sorted(_VALID_FORMATS))}"
        )

    root = logging.getLogger()

    if root.handlers and not force:
        # Logging was already configured (e.g. by pytest's log_cli).
        root.setLevel(resolved_level)
        return

    shutdown_logging()
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(resolved_level)
    handler.addFilter(ScraperContextFilter())

    if resolved_fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=_TEXT_FORMAT, datefmt=_DATE_FORMAT))

    root.setLevel(resolved_level)
    root.addHandler(handler)

    if resolved_seq_url:
        seq_handler = SeqHandler(resolved_seq_url, api_key=resolved_seq_key or None)
        seq_handler.setLevel(resolved_level)
        log_queue: queue.Queue[logging.LogRecord] = queue.Queue(-1)
        queue_handler = logging.handlers.QueueHandler(log_queue)
        # The filter must run on the producing side: the listener thread has
        # no access to the job loop's context variables.
        queue_handler.addFilter(ScraperContextFilter())
        root.addHandler(queue_handler)
        _seq_listener = logging.handlers.QueueListener(
            log_queue, seq_handler, respect_handler_level=True
        )
        _seq_listener.start()

    # Quieten noisy third-party libraries to WARNING unless DEBUG is active.
    if resolved_level != "DEBUG":
        for noisy in ("httpx", "httpcore", "asyncio", "azure"):
            logging.getLogger(noisy).setLevel(logging.WARNING)


def shutdown_logging() -> None:
    """Flush and stop the Seq sink, if one is running.  Safe to call repeatedly."""
    global _seq_listener

    if _seq_listener is None:
        return
    listener, _seq_listener = _seq_listener, None
    listener.stop()
    for h in listener.handlers:
        h.close()


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------

# Fields that belong to LogRecord but should NOT appear under "extra".
_RECORD_ATTRS: frozenset[str] = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)


def _record_extra(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


def _iso_timestamp(record: logging.LogRecord) -> str:
    return (
        datetime.fromtimestamp(record.created, tz=UTC).strftime("%Y-%m-%dT%H:%M:%S.")
        + f"{int(record.msecs):03d}Z"
    )


class JsonFormatter(logging.Formatter):
    """Emit one JSON object per log record.

    Output shape (all fields always present)::

        {
            "ts":      "2026-02-28T12:34:56.789Z",
            "level":   "INFO",
            "logger":  "buildstats.orchestrator.scheduler",
            "message": "Scrape complete in 412 ms",
            "extra":   {"scraper": "queue_length", "event": "SCRAPE_COMPLETE"}
        }

    Optional fields (present only when applicable)::

        "exc_info": "<traceback string>"
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        record.message = record.getMessage()
        ts = _iso_timestamp(record)

        payload: dict[str, Any] = {
            "ts": ts,
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "extra": _record_extra(record),
        }

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exc_info"] = record.exc_text

        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)

        try:
            return json.dumps(payload, default=str)
        except Exception:  # pragma: no cover
            return json.dumps(
                {
                    "ts": ts,
                    "level": "ERROR",
                    "logger": __name__,
                    "message": "JsonFormatter serialisation error",
                    "exc_info": traceback.format_exc(),
                    "extra": {},
                }
            )


#: Python level name → Seq / Serilog level name.
_CLEF_LEVELS: dict[str, str] = {
    "DEBUG": "Debug",
    "INFO": "Information",
    "WARNING": "Warning",
    "ERROR": "Error",
    "CRITICAL": "Fatal",
}


class ClefFormatter(logging.Formatter):
    """Render a record as a Compact Log Event Format (CLEF) line for Seq.

    ``extra`` fields become top-level event properties; ``Application`` and
    ``SourceContext`` are always attached so events from this process can be
    filtered in a shared Seq instance.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        event: dict[str, Any] = {
            "@t": _iso_timestamp(record),
            "@m": record.getMessage(),
            "@l": _CLEF_LEVELS.get(record.levelname, record.levelname),
            "Application": _APPLICATION,
            "SourceContext": record.name,
        }
        if record.exc_info:
            event["@x"] = self.formatException(record.exc_info)
        elif record.exc_text:
            event["@x"] = record.exc_text
        for key, value in _record_extra(record).items():
            event.setdefault(key, value)
        return json.dumps(event, default=str)


class SeqHandler(logging.Handler):
    """Ship log records to a Seq server over its raw CLEF ingestion endpoint.

    The handler performs blocking HTTP I/O and is therefore only ever driven
    by a :class:`logging.handlers.QueueListener` thread, never directly from
    the event loop.

    Args:
        server_url: Seq base URL, e.g. ``"http://seq:5341"``.
        api_key: Optional API key sent as ``X-Seq-ApiKey``.
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, server_url: str, *, api_key: str | None = None, timeout: float = 5.0) -> None:
        super().__init__()
        self.endpoint = f"{server_url.rstrip('/')}/api/events/raw?clef"
        headers = {"Content-Type": "application/vnd.serilog.clef"}
        if api_key:
            headers["X-Seq-ApiKey"] = api_key
        self._client = httpx.Client(headers=headers, timeout=timeout)
        self.setFormatter(ClefFormatter())

    def emit(self, record: logging.LogRecord) -> None:
        try:
            body = self.format(record)
            response = self._client.post(self.endpoint, content=body.encode("utf-8"))
            response.raise_for_status()
        except Exception:  # noqa: BLE001
            self.handleError(record)

    def close(self) -> None:
        self._client.close()
        super().close()
