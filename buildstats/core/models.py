"""Typed records returned by the build server's REST API.

The TeamCity REST API returns camelCase JSON with some hyphenated keys
(``snapshot-dependencies``) and compact timestamps (``20240115T103000+0000``).
The models below map just the fields the scrape jobs select; unknown keys are
ignored so widening a field selector never breaks parsing.

All models are **frozen**: a record is fetched, consumed within a single job
execution, and discarded.

Typical usage::

    from buildstats.core.models import Build

    build = Build.model_validate(
        {"id": 42, "buildTypeId": "Server_Build", "queuedDate": "20240115T103000+0000"}
    )
    build.queued_date            # datetime(2024, 1, 15, 10, 30, tzinfo=UTC)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "LabelTuple",
    "TEAMCITY_DATE_FORMAT",
    "parse_teamcity_date",
    "format_teamcity_date",
    "Property",
    "DependencyList",
    "Build",
    "StorageStatistics",
]

logger = logging.getLogger(__name__)

#: Ordered label values identifying one emitted metric series.
LabelTuple = tuple[str, ...]

#: Timestamp layout used by the TeamCity REST API in both directions.
TEAMCITY_DATE_FORMAT: str = "%Y%m%dT%H%M%S%z"


def parse_teamcity_date(value: str) -> datetime:
    """Parse a TeamCity timestamp into an aware :class:`datetime`.

    Raises:
        ValueError: If *value* does not match :data:`TEAMCITY_DATE_FORMAT`.
    """
    return datetime.strptime(value, TEAMCITY_DATE_FORMAT)


def format_teamcity_date(value: datetime) -> str:
    """Format *value* for use inside a locator (``sinceDate:...``).

    The timestamp is converted to UTC first; the build server accepts any
    offset, but a ``+0000`` suffix avoids sign-mangling in some proxies.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(TEAMCITY_DATE_FORMAT)


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class Property(_Record):
    """A ``{"name": ..., "value": ...}`` pair (build statistics, wait reasons)."""

    name: str
    value: str | None = None


def _unwrap_properties(v: Any) -> Any:
    # {"property": [...]} or {"count": 0} → plain list
    if isinstance(v, dict):
        return v.get("property") or []
    return v


class DependencyList(_Record):
    """The ``snapshot-dependencies`` block of a queued build.

    ``build`` is ``None`` when the server omitted the list entirely, which is
    distinct from an empty list and meaningful to the queue-wait job.
    """

    count: int = 0
    build: list[Build] | None = None


class Build(_Record):
    """A build or queued-build record.

    Attributes:
        id: Server-side build id, normalised to ``str``.
        build_type_id: Human-readable build configuration id.
        state: ``queued`` / ``running`` / ``finished``.
        status: ``SUCCESS`` / ``FAILURE`` / ``UNKNOWN``.
        probably_hanging: Set by the server on running builds that look hung.
        wait_reason: Why a queued build has not started; ``None`` for builds
            that are about to start.
        statistics: Build statistic values (artifact sizes and timings).
        snapshot_dependencies: Dependency block, ``None`` when absent.
    """

    id: str
    build_type_id: str = Field(default="", alias="buildTypeId")
    state: str | None = None
    status: str | None = None
    probably_hanging: bool = Field(default=False, alias="probablyHanging")
    queued_date: datetime | None = Field(default=None, alias="queuedDate")
    start_date: datetime | None = Field(default=None, alias="startDate")
    finish_date: datetime | None = Field(default=None, alias="finishDate")
    wait_reason: str | None = Field(default=None, alias="waitReason")
    statistics: list[Property] = Field(default_factory=list)
    snapshot_dependencies: DependencyList | None = Field(
        default=None, alias="snapshot-dependencies"
    )

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, v: object) -> object:
        if isinstance(v, int):
            return str(v)
        return v

    @field_validator("queued_date", "start_date", "finish_date", mode="before")
    @classmethod
    def _parse_dates(cls, v: object) -> object:
        if isinstance(v, str):
            if not v.strip():
                return None
            return parse_teamcity_date(v)
        return v

    @field_validator("statistics", mode="before")
    @classmethod
    def _flatten_statistics(cls, v: object) -> object:
        return _unwrap_properties(v)

    def statistic(self, fragment: str, *, exact: bool = False) -> str | None:
        """Return the value of the first statistic whose name matches *fragment*.

        Args:
            fragment: Substring (or the full name when *exact*) to look for.
            exact: Require an exact name match instead of a substring match.
        """
        for prop in self.statistics:
            if (prop.name == fragment) if exact else (fragment in prop.name):
                return prop.value
        return None


DependencyList.model_rebuild()
Build.model_rebuild()


@dataclass(frozen=True)
class StorageStatistics:
    """Capacity of the shared build-storage file share, in bytes."""

    total_capacity: int
    used_capacity: int

    @property
    def available_capacity(self) -> int:
        return self.total_capacity - self.used_capacity
