"""Smoke tests: verify the test harness itself is wired up correctly.

These tests assert nothing about scraping.  Their sole purpose is to
confirm:

1. pytest discovers and runs tests in this suite.
2. pytest-asyncio's ``asyncio_mode = "auto"`` setting works (async tests
   run without any decorator).
3. Core buildstats modules import without errors.
4. ``configure_logging()`` executes without raising.
5. The exception taxonomy is importable and the hierarchy is intact.
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from buildstats.core import (
    BuildStatsError,
    ConfigError,
    InconsistentDataError,
    JsonFormatter,
    SchedulerError,
    StorageMetricsError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamFetchError,
    UpstreamParseError,
    UpstreamRateLimitError,
    configure_logging,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Import & startup smoke
# ---------------------------------------------------------------------------


def test_core_imports_succeed() -> None:
    assert configure_logging is not None
    assert JsonFormatter is not None
    assert BuildStatsError is not None


def test_all_packages_import() -> None:
    import buildstats.metrics  # noqa: F401, PLC0415
    import buildstats.orchestrator  # noqa: F401, PLC0415
    import buildstats.scrapers  # noqa: F401, PLC0415
    import buildstats.upstream  # noqa: F401, PLC0415


def test_configure_logging_json() -> None:
    configure_logging(level="DEBUG", fmt="json", seq_url="", force=True)
    # Restore text mode so subsequent test output remains readable.
    configure_logging(level="DEBUG", fmt="text", seq_url="", force=True)


def test_configure_logging_invalid_level() -> None:
    with pytest.raises(ValueError, match="Unknown LOG_LEVEL"):
        configure_logging(level="VERBOSE", force=True)


def test_configure_logging_invalid_format() -> None:
    with pytest.raises(ValueError, match="Unknown LOG_FORMAT"):
        configure_logging(fmt="xml", force=True)


# ---------------------------------------------------------------------------
# Exception taxonomy
# ---------------------------------------------------------------------------


def test_exception_hierarchy_base() -> None:
    for exc_class in (
        ConfigError,
        UpstreamError,
        UpstreamFetchError,
        UpstreamAuthError,
        UpstreamRateLimitError,
        UpstreamParseError,
        InconsistentDataError,
        StorageMetricsError,
        SchedulerError,
    ):
        assert issubclass(exc_class, BuildStatsError), (
            f"{exc_class.__name__} is not a subclass of BuildStatsError"
        )


def test_exception_hierarchy_layers() -> None:
    assert issubclass(UpstreamFetchError, UpstreamError)
    assert issubclass(UpstreamAuthError, UpstreamError)
    assert issubclass(UpstreamRateLimitError, UpstreamError)
    assert issubclass(UpstreamParseError, UpstreamError)
    assert not issubclass(InconsistentDataError, UpstreamError)


def test_upstream_error_formats_message() -> None:
    exc = UpstreamFetchError("https://tc.example.com", "Connection refused")
    assert str(exc) == "[https://tc.example.com] Connection refused"
    assert exc.source == "https://tc.example.com"


def test_rate_limit_carries_retry_after() -> None:
    exc = UpstreamRateLimitError("tc", retry_after=45.0)
    assert exc.retry_after == 45.0
    assert UpstreamRateLimitError("tc").retry_after is None


def test_inconsistent_data_carries_build_identity() -> None:
    exc = InconsistentDataError("Server_Build", "123", "No dependency list")
    assert exc.build_type_id == "Server_Build"
    assert exc.build_id == "123"
    assert "Server_Build" in str(exc)
    assert "123" in str(exc)


# ---------------------------------------------------------------------------
# Async harness
# ---------------------------------------------------------------------------


async def test_async_test_runs() -> None:
    await asyncio.sleep(0)
    assert True


async def test_async_exception_is_catchable() -> None:
    async def _failing_coro() -> None:
        raise UpstreamFetchError("tc", "simulated failure")

    with pytest.raises(UpstreamFetchError, match="simulated failure"):
        await _failing_coro()
