"""Shared pytest fixtures and configuration for the buildstats test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across the unit tests.
"""

from __future__ import annotations

import logging
import os
from unittest.mock import AsyncMock, MagicMock

import pytest
from prometheus_client import CollectorRegistry
from pydantic_settings import SettingsConfigDict

from buildstats.core import configure_logging
from buildstats.core.settings import Settings
from buildstats.metrics.registry import MetricRegistry
from buildstats.upstream.client import TeamCityClient

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test.

    ``seq_url=""`` keeps a developer's ``SEQ_URL`` from shipping test logs.
    """
    configure_logging(level="DEBUG", fmt="text", seq_url="", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove every buildstats env var for the duration of a test.

    Also disables pydantic-settings ``.env`` file loading so that values
    present in a local ``.env`` file do not leak into Settings tests.
    """
    prefixes = (
        "BUILD_SERVER_URL",
        "TEAMCITY_TOKEN",
        "USE_SSL",
        "AZURE_",
        "SEQ_",
        "METRICS_",
        "MUTED_",
        "RETRY_",
        "SHUTDOWN_",
        "LOG_LEVEL",
        "LOG_FORMAT",
    )
    for key in list(os.environ):
        if any(key.startswith(prefix) for prefix in prefixes):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


# ---------------------------------------------------------------------------
# Metrics and upstream doubles
# ---------------------------------------------------------------------------


@pytest.fixture()
def collector_registry() -> CollectorRegistry:
    """A private prometheus_client registry, isolated per test."""
    return CollectorRegistry()


@pytest.fixture()
def registry(collector_registry: CollectorRegistry) -> MetricRegistry:
    return MetricRegistry(collector_registry)


@pytest.fixture()
def client() -> MagicMock:
    """A :class:`TeamCityClient` double with async query helpers."""
    mock = MagicMock(spec=TeamCityClient)
    mock.builds = AsyncMock(return_value=[])
    mock.queued_builds = AsyncMock(return_value=[])
    mock.queued_wait_reasons = AsyncMock(return_value=[])
    mock.muted_test_count = AsyncMock(return_value=0)
    return mock


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to the running test."""
    return logging.getLogger("tests")
