"""Core records, settings, logging configuration, and the exception taxonomy."""

from buildstats.core.exceptions import (
    BuildStatsError,
    ConfigError,
    InconsistentDataError,
    SchedulerError,
    StorageMetricsError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamFetchError,
    UpstreamParseError,
    UpstreamRateLimitError,
)
from buildstats.core.logging_config import JsonFormatter, configure_logging, shutdown_logging
from buildstats.core.models import (
    Build,
    DependencyList,
    LabelTuple,
    Property,
    StorageStatistics,
)
from buildstats.core.settings import Settings, load_settings

__all__ = [
    # Logging
    "configure_logging",
    "shutdown_logging",
    "JsonFormatter",
    # Records
    "Build",
    "DependencyList",
    "LabelTuple",
    "Property",
    "StorageStatistics",
    # Settings
    "Settings",
    "load_settings",
    # Exceptions: base
    "BuildStatsError",
    # Exceptions: config
    "ConfigError",
    # Exceptions: upstream
    "UpstreamError",
    "UpstreamFetchError",
    "UpstreamAuthError",
    "UpstreamRateLimitError",
    "UpstreamParseError",
    # Exceptions: data / storage / scheduler
    "InconsistentDataError",
    "StorageMetricsError",
    "SchedulerError",
]
