"""Queue length job: queued builds per build type and wait reason.

Builds without a wait reason are about to start and are not counted.  Wait
reasons naming a specific shared resource are folded into one canonical
string so every lock name does not become its own series.
"""

from __future__ import annotations

import logging
from collections import Counter

from buildstats.core.models import LabelTuple
from buildstats.metrics.registry import MetricRegistry
from buildstats.scrapers.base import ReconcilingScrapeJob
from buildstats.upstream.client import TeamCityClient
from buildstats.upstream.locators import QUEUED_REASON_FIELDS

__all__ = ["SHARED_RESOURCE_REASON", "normalise_wait_reason", "QueueLengthJob"]

logger = logging.getLogger(__name__)

_SHARED_RESOURCE_PREFIX = "Build is waiting for the following resource to become available"

#: Canonical wait reason for every shared-resource wait.
SHARED_RESOURCE_REASON = "Build is waiting for a shared resource"


def normalise_wait_reason(reason: str) -> str:
    """Collapse the verbose shared-resource wait reason into a fixed string.

    >>> normalise_wait_reason(
    ...     "Build is waiting for the following resource to become available: Lock X"
    ... )
    'Build is waiting for a shared resource'
    >>> normalise_wait_reason("Waiting for agents")
    'Waiting for agents'
    """
    if reason.startswith(_SHARED_RESOURCE_PREFIX):
        return SHARED_RESOURCE_REASON
    return reason


class QueueLengthJob(ReconcilingScrapeJob):
    """Publishes ``queued_builds_with_reason{buildTypeId, waitReason}``."""

    name = "queue_length"
    interval = 15.0

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
                    "queued_builds_with_reason",
                    "Count of builds in the queue for each queue reason",
                    "buildTypeId",
                    "waitReason",
                )
            ],
            interval=interval,
        )
        self._client = client

    async def aggregate(self) -> dict[LabelTuple, float]:
        queued = await self._client.queued_builds(QUEUED_REASON_FIELDS)
        counts = Counter(
            (b.build_type_id, normalise_wait_reason(b.wait_reason))
            for b in queued
            if b.wait_reason is not None
        )
        for (build_type_id, reason), count in counts.items():
            logger.debug("Build type %s, wait reason %r: %d", build_type_id, reason, count)
        return {labels: float(count) for labels, count in counts.items()}
