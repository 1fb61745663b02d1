"""Locator strings and field selectors for the TeamCity REST API.

A *locator* is the comma-separated ``dimension:value`` filter the REST API
accepts in the ``locator`` query parameter (``running:true,count:1000``).
A *field selector* is the ``fields`` parameter that limits the response to
the attributes a job needs, keeping payloads small on busy servers.

Every selector for a collection includes ``nextHref`` so
:meth:`~buildstats.upstream.client.TeamCityClient.query` can follow
pagination.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from buildstats.core.models import format_teamcity_date

__all__ = [
    "build_locator",
    "ARTIFACT_BUILD_FIELDS",
    "HUNG_BUILD_FIELDS",
    "QUEUED_REASON_FIELDS",
    "QUEUED_WAIT_FIELDS",
    "QUEUED_WAIT_REASONS_FIELDS",
]

#: Finished builds with their statistic values (artifact push/pull).
ARTIFACT_BUILD_FIELDS: str = (
    "count,nextHref,"
    "build(id,finishDate,startDate,buildTypeId,queuedDate,statistics(property(name,value)))"
)

#: Running builds with the server's hang heuristic.
HUNG_BUILD_FIELDS: str = "count,nextHref,build(id,probablyHanging,buildTypeId)"

#: Queued builds with their current wait reason.
QUEUED_REASON_FIELDS: str = "count,nextHref,build(id,waitReason,buildTypeId,queuedDate)"

#: Queued builds with the state of their snapshot dependencies.
QUEUED_WAIT_FIELDS: str = (
    "count,nextHref,"
    "build(id,waitReason,buildTypeId,queuedDate,"
    "snapshot-dependencies(count,build(id,state,status,finishDate)))"
)

#: Per-build breakdown of how long each wait reason has applied (ms).
QUEUED_WAIT_REASONS_FIELDS: str = "queuedWaitReasons(property(name,value))"


def build_locator(
    *,
    running: bool | None = None,
    since_date: datetime | None = None,
    count: int | None = None,
    extra: Iterable[str] = (),
) -> str:
    """Assemble a build locator from the common dimensions.

    Args:
        running: ``True`` for running builds only, ``False`` for finished
            builds only, ``None`` to leave the dimension out.
        since_date: Only builds started after this instant.
        count: Page size / result cap.
        extra: Raw ``dimension:value`` strings appended verbatim (e.g.
            ``"hanging:true"``).

    Returns:
        The locator, e.g. ``"running:false,sinceDate:20240115T073000+0000,count:1000"``.
    """
    dims: list[str] = []
    if running is not None:
        dims.append(f"running:{str(running).lower()}")
    if since_date is not None:
        dims.append(f"sinceDate:{format_teamcity_date(since_date)}")
    if count is not None:
        dims.append(f"count:{count}")
    dims.extend(extra)
    return ",".join(dims)
