"""Queue wait job: how long queued builds have been waiting to start.

Every execution observes, for each eligible queued build, the time since it
became startable into a sliding-window summary
``queued_builds_wait_times_by_type{buildTypeId, waitReason}`` (milliseconds,
P50/P90/P99 over ten minutes).

A build is eligible when it has a wait reason and that reason is not one of
the "blocked on something else" reasons below.  A build whose snapshot
dependencies are still running is skipped too.  The clock starts at the
later of the queue time and the latest dependency finish time, so time
spent waiting on upstream builds is not counted.

Summaries age their own observations out, so this job keeps no seen-set.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from buildstats.core.exceptions import InconsistentDataError
from buildstats.core.models import Build
from buildstats.metrics.registry import MetricRegistry
from buildstats.metrics.summary import DEFAULT_MAX_AGE_SECONDS
from buildstats.scrapers.base import ScrapeJob, utc_now
from buildstats.scrapers.queue_length import normalise_wait_reason
from buildstats.upstream.client import TeamCityClient
from buildstats.upstream.locators import QUEUED_WAIT_FIELDS

__all__ = [
    "EXCLUDED_WAIT_REASONS",
    "is_excluded_wait_reason",
    "dependencies_complete",
    "wait_basis",
    "QueueWaitJob",
]

logger = logging.getLogger(__name__)

#: Substrings of wait reasons under which the build is blocked by something
#: other than agent capacity.
EXCLUDED_WAIT_REASONS: tuple[str, ...] = (
    "Build dependencies have not been built yet",
    "The maximum number of running builds for this configuration is reached",
    "The maximum number of running builds for this branch is reached",
    "Build is waiting for the following resource to become available",
)


def is_excluded_wait_reason(reason: str) -> bool:
    return any(fragment in reason for fragment in EXCLUDED_WAIT_REASONS)


def dependencies_complete(build: Build) -> bool:
    """Return ``True`` if every snapshot dependency of *build* has finished.

    A build without a dependency block, or whose block has a zero count, is
    complete.

    Raises:
        InconsistentDataError: The block reports dependencies but carries
            no dependency builds.
    """
    deps = build.snapshot_dependencies
    if deps is None or (deps.count == 0 and not deps.build):
        return True
    if not deps.build:
        raise InconsistentDataError(
            build.build_type_id,
            build.id,
            f"Build reports {deps.count} snapshot dependencies but lists none",
        )
    return all(dep.state == "finished" for dep in deps.build)


def wait_basis(build: Build) -> datetime:
    """Instant from which *build* counts as waiting.

    The latest of the queue time and every dependency finish time.

    Raises:
        InconsistentDataError: The queued build has no queue time.
    """
    if build.queued_date is None:
        raise InconsistentDataError(build.build_type_id, build.id, "Queued build has no queuedDate")
    candidates = [build.queued_date]
    if build.snapshot_dependencies is not None and build.snapshot_dependencies.build:
        candidates.extend(
            dep.finish_date
            for dep in build.snapshot_dependencies.build
            if dep.finish_date is not None
        )
    return max(candidates)


def _eligible(queued: Iterable[Build]) -> list[Build]:
    return [
        b
        for b in queued
        if b.wait_reason is not None
        and not is_excluded_wait_reason(b.wait_reason)
        and dependencies_complete(b)
    ]


class QueueWaitJob(ScrapeJob):
    """Observe queue wait times into a windowed quantile summary.

    Args:
        client: Upstream client.
        registry: Metric registry the summary is created in.
        clock: Current-time source (injectable for tests).
        max_age_seconds: Retention of summary observations.
        interval: Override of the default fifteen-second interval.
    """

    name = "queue_wait"
    interval = 15.0

    def __init__(
        self,
        client: TeamCityClient,
        registry: MetricRegistry,
        *,
        clock: Callable[[], datetime] = utc_now,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        interval: float | None = None,
    ) -> None:
        super().__init__(interval=interval)
        self._client = client
        self._clock = clock
        self._summary = registry.summary(
            "queued_builds_wait_times_by_type",
            "How long each build type has been waiting to start",
            "buildTypeId",
            "waitReason",
            max_age_seconds=max_age_seconds,
        )

    async def scrape(self) -> None:
        queued = await self._client.queued_builds(QUEUED_WAIT_FIELDS)
        eligible = _eligible(queued)
        now = self._clock()

        # Nothing is observed until every build has been measured, so a
        # failed execution leaves the summary untouched.
        observations: list[tuple[tuple[str, str], float]] = []
        for build in eligible:
            basis = wait_basis(build)
            waited_ms = (now - basis).total_seconds() * 1000.0
            labels = (build.build_type_id, normalise_wait_reason(build.wait_reason or ""))
            observations.append((labels, waited_ms))
            logger.debug(
                "Build %s (%s) waiting %.0f ms since %s (queued %s).",
                build.id,
                build.build_type_id,
                waited_ms,
                basis.isoformat(),
                build.queued_date.isoformat() if build.queued_date else "?",
            )

        for labels, waited_ms in observations:
            self._summary.observe(labels, waited_ms)
        logger.debug("Observed %d of %d queued build(s).", len(eligible), len(queued))
