"""buildstats process entry-point.

Usage:
    python -m buildstats [--log-level LEVEL] [--log-format FORMAT] [--once]

The scraping and scheduling logic lives in ``buildstats.orchestrator``.  This
module loads the settings, configures logging (including the optional Seq
sink) and hands off to :func:`~buildstats.orchestrator.runner.run`.

Default behaviour is continuous: every scrape job loops on its own interval
and ``/metrics`` is served until SIGTERM or SIGINT.  Pass ``--once`` to run
each job a single time and exit (useful for manual checks).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from buildstats.core import configure_logging, shutdown_logging
from buildstats.core.exceptions import ConfigError
from buildstats.core.settings import load_settings


def main() -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    parser = argparse.ArgumentParser(
        prog="buildstats",
        description="Publish build-server statistics as Prometheus metrics.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run every scrape job a single time and exit instead of looping.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )

    args = parser.parse_args()

    try:
        settings = load_settings()
    except ConfigError as exc:
        print(f"buildstats: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    try:
        configure_logging(
            level=args.log_level or settings.log_level,
            fmt=args.log_format or settings.log_format,
            seq_url=settings.seq_url,
            seq_api_key=settings.seq_api_key,
        )
    except ValueError as exc:
        print(f"buildstats: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)
    logger.info("buildstats starting up")
    if settings.seq_configured:
        logger.info("Shipping logs to Seq at %s", settings.seq_url)

    # Lazy import keeps startup fast when module is imported without running.
    from buildstats.orchestrator.runner import run  # noqa: PLC0415

    try:
        asyncio.run(run(settings, once=args.once))
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting.")
    except asyncio.CancelledError:
        logger.info("Shutdown complete, exiting.")
    finally:
        shutdown_logging()


if __name__ == "__main__":
    main()
