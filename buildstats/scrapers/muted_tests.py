"""Muted tests job: number of currently muted tests in one project."""

from __future__ import annotations

import logging

from buildstats.core.models import LabelTuple
from buildstats.metrics.registry import MetricRegistry
from buildstats.scrapers.base import ReconcilingScrapeJob
from buildstats.upstream.client import TeamCityClient

__all__ = ["MutedTestsJob"]

logger = logging.getLogger(__name__)


class MutedTestsJob(ReconcilingScrapeJob):
    """Publishes ``muted_tests{projectId}`` for the configured project."""

    name = "muted_tests"
    interval = 900.0

    def __init__(
        self,
        client: TeamCityClient,
        registry: MetricRegistry,
        project_id: str,
        *,
        interval: float | None = None,
    ) -> None:
        super().__init__(
            [registry.gauge("muted_tests", "Count of muted tests", "projectId")],
            interval=interval,
        )
        self._client = client
        self.project_id = project_id

    async def aggregate(self) -> dict[LabelTuple, float]:
        count = await self._client.muted_test_count(self.project_id)
        logger.debug("Project %s has %d muted test(s).", self.project_id, count)
        return {(self.project_id,): float(count)}
