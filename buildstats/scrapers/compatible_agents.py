"""No-compatible-agents job: builds stuck in the queue for lack of an agent.

Candidates are queued builds with a wait reason that were queued at least
:data:`WAIT_THRESHOLD` ago.  For each candidate the per-reason wait
breakdown is fetched, and the build is flagged when the time spent under
:data:`NO_COMPATIBLE_AGENTS_REASON` rounds to more than thirty minutes.

Each flagged build gets its own series
``queued_builds_no_compatible_agents{buildTypeId, buildId, queuedDateTime} = 1``.
The labels carry a build id, so a build that stops qualifying has its
series removed rather than zeroed.

Failing to fetch one build's wait reasons is logged as a warning and the
build is treated as not flagged for that execution; the other builds are
still evaluated.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from buildstats.core import events
from buildstats.core.exceptions import UpstreamError
from buildstats.core.models import Build, LabelTuple, Property
from buildstats.metrics.registry import MetricRegistry
from buildstats.scrapers.base import ClearMode, ReconcilingScrapeJob, utc_now
from buildstats.upstream.client import TeamCityClient
from buildstats.upstream.locators import QUEUED_REASON_FIELDS

__all__ = [
    "NO_COMPATIBLE_AGENTS_REASON",
    "WAIT_THRESHOLD",
    "queued_timestamp_label",
    "no_agents_wait_minutes",
    "CompatibleAgentsJob",
]

logger = logging.getLogger(__name__)

NO_COMPATIBLE_AGENTS_REASON = "There are no idle compatible agents which can run this build"

WAIT_THRESHOLD = timedelta(minutes=30)


def queued_timestamp_label(queued: datetime) -> str:
    """Render a queue time as the ``queuedDateTime`` label value (UTC)."""
    return queued.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def no_agents_wait_minutes(reasons: list[Property]) -> float | None:
    """Whole minutes spent waiting for a compatible agent, or ``None``.

    ``None`` means the reason is absent or its value is not a number.
    """
    for prop in reasons:
        if prop.name != NO_COMPATIBLE_AGENTS_REASON or not prop.value:
            continue
        try:
            milliseconds = int(prop.value)
        except ValueError:
            logger.debug("Unparseable wait time %r for %r.", prop.value, prop.name)
            return None
        return float(round(milliseconds / 60_000))
    return None


class CompatibleAgentsJob(ReconcilingScrapeJob):
    """Flags builds waiting more than thirty minutes for a compatible agent."""

    name = "compatible_agents"
    interval = 60.0
    clear_mode = ClearMode.REMOVE

    def __init__(
        self,
        client: TeamCityClient,
        registry: MetricRegistry,
        *,
        clock: Callable[[], datetime] = utc_now,
        interval: float | None = None,
    ) -> None:
        super().__init__(
            [
                registry.gauge(
                    "queued_builds_no_compatible_agents",
                    "Queued builds waiting with no compatible agents available",
                    "buildTypeId",
                    "buildId",
                    "queuedDateTime",
                )
            ],
            interval=interval,
        )
        self._client = client
        self._clock = clock

    async def aggregate(self) -> dict[LabelTuple, float]:
        cutoff = self._clock() - WAIT_THRESHOLD
        queued = await self._client.queued_builds(QUEUED_REASON_FIELDS)
        candidates = [
            b
            for b in queued
            if b.wait_reason is not None and b.queued_date is not None and b.queued_date <= cutoff
        ]

        flagged: dict[LabelTuple, float] = {}
        for build in candidates:
            minutes = await self._no_agents_minutes(build)
            if minutes is None or minutes <= WAIT_THRESHOLD.total_seconds() / 60:
                continue
            if build.queued_date is None:
                continue
            labels = (build.build_type_id, build.id, queued_timestamp_label(build.queued_date))
            flagged[labels] = 1.0
            logger.info(
                "Build %s (%s) has waited %.0f minutes with no compatible agents.",
                build.id,
                build.build_type_id,
                minutes,
            )

        resolved = self.tracker.seen.difference(flagged)
        for build_type_id, build_id, queued_at in sorted(resolved):
            logger.info(
                "Build %s (%s) queued at %s is no longer waiting for a compatible agent.",
                build_id,
                build_type_id,
                queued_at,
            )
        logger.debug(
            "%d of %d long-queued build(s) have no compatible agents.",
            len(flagged),
            len(candidates),
        )
        return flagged

    async def _no_agents_minutes(self, build: Build) -> float | None:
        try:
            reasons = await self._client.queued_wait_reasons(build.id)
        except UpstreamError as exc:
            logger.warning(
                "Failed to fetch queued wait reasons for build %s: %s",
                build.id,
                exc,
                extra={"event": events.WAIT_REASONS_UNAVAILABLE},
            )
            return None
        return no_agents_wait_minutes(reasons)
