"""Hung builds job: running builds the server flags as probably hanging."""

from __future__ import annotations

import logging
from collections import Counter

from buildstats.core.models import LabelTuple
from buildstats.metrics.registry import MetricRegistry
from buildstats.scrapers.base import ReconcilingScrapeJob
from buildstats.upstream.client import TeamCityClient
from buildstats.upstream.locators import HUNG_BUILD_FIELDS, build_locator

__all__ = ["HungBuildsJob"]

logger = logging.getLogger(__name__)


class HungBuildsJob(ReconcilingScrapeJob):
    """Count of probably-hanging running builds per build type.

    Publishes ``probably_hanging_builds{buildTypeId}``; a build type whose
    builds recover is reset to zero.
    """

    name = "hung_builds"
    interval = 60.0

    def __init__(
        self,
        client: TeamCityClient,
        registry: MetricRegistry,
        *,
        interval: float | None = None,
    ) -> None:
        super().__init__(
            [
                registry.gauge(
                    "probably_hanging_builds",
                    "Count of running builds that appear to be hung",
                    "buildTypeId",
                )
            ],
            interval=interval,
        )
        self._client = client

    async def aggregate(self) -> dict[LabelTuple, float]:
        builds = await self._client.builds(
            build_locator(running=True, extra=["hanging:true"]), HUNG_BUILD_FIELDS
        )
        counts = Counter(b.build_type_id for b in builds)
        for build_type_id, count in counts.items():
            logger.debug("Build type %s has %d hung build(s).", build_type_id, count)
        return {(build_type_id,): float(count) for build_type_id, count in counts.items()}
