"""buildstats exception taxonomy.

Every custom exception inherits from :class:`BuildStatsError`.  Exceptions
are organised by architectural layer so callers can catch at the right
granularity:

    Layer hierarchy
    ---------------
    BuildStatsError
    ├── ConfigError
    ├── UpstreamError
    │   ├── UpstreamFetchError
    │   ├── UpstreamAuthError
    │   ├── UpstreamRateLimitError
    │   └── UpstreamParseError
    ├── InconsistentDataError
    ├── StorageMetricsError
    └── SchedulerError

Every ``UpstreamError`` and ``InconsistentDataError`` that escapes a scrape
job is handled identically: the job's retry policy logs it and replays the
whole execution after the fixed back-off.

Usage:

    from buildstats.core.exceptions import UpstreamFetchError

    raise UpstreamFetchError("teamcity", "Connection refused") from exc
"""

from __future__ import annotations

import logging

__all__ = [
    "BuildStatsError",
    # Config
    "ConfigError",
    # Upstream
    "UpstreamError",
    "UpstreamFetchError",
    "UpstreamAuthError",
    "UpstreamRateLimitError",
    "UpstreamParseError",
    # Data
    "InconsistentDataError",
    # Storage statistics
    "StorageMetricsError",
    # Scheduler
    "SchedulerError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class BuildStatsError(Exception):
    """Root exception for all buildstats errors."""


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(BuildStatsError):
    """Raised when the application configuration is invalid or incomplete.

    Examples:
        - ``BUILD_SERVER_URL`` or ``TEAMCITY_TOKEN`` is missing.
        - A numeric variable contains an out-of-range value.
    """


# ---------------------------------------------------------------------------
# Upstream (build server) layer
# ---------------------------------------------------------------------------


class UpstreamError(BuildStatsError):
    """Base class for all build-server API errors.

    Args:
        source: Short label of the upstream endpoint (usually the base URL).
        message: Human-readable error description.
    """

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(f"[{source}] {message}")


class UpstreamFetchError(UpstreamError):
    """Raised when the build server cannot be reached or answers with an error.

    Covers network errors, unexpected HTTP status codes, and timeouts.
    """


class UpstreamAuthError(UpstreamError):
    """Raised when the build server rejects the access token (HTTP 401/403)."""


class UpstreamRateLimitError(UpstreamError):
    """Raised when the build server answers HTTP 429.

    Args:
        source: Short label of the upstream endpoint.
        retry_after: Recommended back-off interval in seconds, if known.
    """

    def __init__(self, source: str, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        detail = f"retry after {retry_after}s" if retry_after is not None else "no retry hint"
        super().__init__(source, f"Rate limited: {detail}")


class UpstreamParseError(UpstreamError):
    """Raised when a response body cannot be decoded or mapped to a record."""


# ---------------------------------------------------------------------------
# Data consistency
# ---------------------------------------------------------------------------


class InconsistentDataError(BuildStatsError):
    """Raised when upstream records contradict themselves.

    The canonical case is a queued build reporting snapshot dependencies
    while returning no dependency list.  The execution fails and enters the
    retry path instead of treating the build as having no dependencies.

    Args:
        build_type_id: Build configuration of the offending record.
        build_id: Identifier of the offending record.
        message: Human-readable error description.
    """

    def __init__(self, build_type_id: str, build_id: str, message: str) -> None:
        self.build_type_id = build_type_id
        self.build_id = build_id
        super().__init__(f"{message} (buildTypeId={build_type_id}, buildId={build_id})")


# ---------------------------------------------------------------------------
# Cloud storage statistics
# ---------------------------------------------------------------------------


class StorageMetricsError(BuildStatsError):
    """Raised when file-share capacity statistics cannot be retrieved.

    Caught inside the disk-space job, which publishes zeros for that run.
    """


# ---------------------------------------------------------------------------
# Scheduler layer
# ---------------------------------------------------------------------------


class SchedulerError(BuildStatsError):
    """Raised for errors originating in the scheduling layer.

    Examples:
        - No scrape jobs were registered.
        - Two jobs were registered under the same name.
    """
