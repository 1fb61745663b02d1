"""Artifact movement job: mean artifact push/pull size and time per build type.

Looks at builds that finished within a rolling three-hour window and that
report all four artifact statistics.  Builds missing any of them are left
out entirely, since counting them as zero would drag the means down.

Published gauges, labelled by ``buildTypeId``:

* ``build_artifact_push_size``  (bytes, statistic ``ArtifactsSize``)
* ``build_artifact_push_time``  (ms, statistic containing ``artifactsPublishing``)
* ``build_artifact_pull_size``  (bytes, statistic containing ``artifactResolving:totalDownloaded``)
* ``build_artifact_pull_time``  (ms, statistic containing ``dependenciesResolving``)
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta
from statistics import fmean
from typing import NamedTuple

from buildstats.core.models import Build, LabelTuple
from buildstats.metrics.registry import MetricRegistry
from buildstats.scrapers.base import ReconcilingScrapeJob, utc_now
from buildstats.upstream.client import TeamCityClient
from buildstats.upstream.locators import ARTIFACT_BUILD_FIELDS, build_locator

__all__ = ["ArtifactSample", "ArtifactMovementJob", "artifact_sample"]

logger = logging.getLogger(__name__)

_PUSH_TIME = "artifactsPublishing"
_PUSH_SIZE = "ArtifactsSize"
_PULL_TIME = "dependenciesResolving"
_PULL_SIZE = "artifactResolving:totalDownloaded"


class ArtifactSample(NamedTuple):
    """Artifact statistics of one build, in gauge order."""

    push_size: float
    push_time: float
    pull_size: float
    pull_time: float


def artifact_sample(build: Build) -> ArtifactSample | None:
    """Extract the four artifact statistics of *build*.

    Returns ``None`` when any statistic is missing or not numeric.
    """
    raw = (
        build.statistic(_PUSH_SIZE, exact=True),
        build.statistic(_PUSH_TIME),
        build.statistic(_PULL_SIZE),
        build.statistic(_PULL_TIME),
    )
    if any(v is None for v in raw):
        return None
    try:
        return ArtifactSample(*(float(v) for v in raw))  # type: ignore[arg-type]
    except ValueError:
        logger.debug("Build %s has non-numeric artifact statistics %r; skipped.", build.id, raw)
        return None


class ArtifactMovementJob(ReconcilingScrapeJob):
    """Mean artifact push/pull statistics per build type.

    Args:
        client: Upstream client.
        registry: Metric registry the gauges are created in.
        window: How far back finished builds are considered.
        max_results: Result cap passed to the build locator.
        clock: Current-time source (injectable for tests).
        interval: Override of the default five-minute interval.
    """

    name = "artifact_movement"
    interval = 300.0

    def __init__(
        self,
        client: TeamCityClient,
        registry: MetricRegistry,
        *,
        window: timedelta = timedelta(minutes=180),
        max_results: int = 1000,
        clock: Callable[[], datetime] = utc_now,
        interval: float | None = None,
    ) -> None:
        super().__init__(
            [
                registry.gauge(
                    "build_artifact_push_size", "Size of artifacts pushed by a build", "buildTypeId"
                ),
                registry.gauge(
                    "build_artifact_push_time",
                    "Time in ms for artifacts to be pushed by a build",
                    "buildTypeId",
                ),
                registry.gauge(
                    "build_artifact_pull_size", "Size of artifacts pulled into a build", "buildTypeId"
                ),
                registry.gauge(
                    "build_artifact_pull_time",
                    "Time in ms for artifacts to be pulled into a build",
                    "buildTypeId",
                ),
            ],
            interval=interval,
        )
        self._client = client
        self._window = window
        self._max_results = max_results
        self._clock = clock

    async def aggregate(self) -> dict[LabelTuple, ArtifactSample]:
        locator = build_locator(
            running=False,
            since_date=self._clock() - self._window,
            count=self._max_results,
        )
        builds = await self._client.builds(locator, ARTIFACT_BUILD_FIELDS)

        grouped: dict[str, list[ArtifactSample]] = defaultdict(list)
        for build in builds:
            sample = artifact_sample(build)
            if sample is not None:
                grouped[build.build_type_id].append(sample)

        means = {
            (build_type_id,): ArtifactSample(*(fmean(column) for column in zip(*samples)))
            for build_type_id, samples in grouped.items()
        }
        for (build_type_id,), mean in sorted(means.items()):
            logger.debug(
                "Build type %s: push %.0f B / %.0f ms, pull %.0f B / %.0f ms",
                build_type_id,
                *mean,
            )
        logger.debug(
            "%d of %d recent build(s) carried artifact statistics.",
            sum(len(s) for s in grouped.values()),
            len(builds),
        )
        return means
