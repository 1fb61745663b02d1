"""Scrape job interface contract.

Every statistic family is a subclass of :class:`ScrapeJob` and implements
:meth:`ScrapeJob.scrape`.  The scheduler only knows this contract: a
``name`` for logging, an ``interval`` between successful executions, and an
awaitable ``scrape()`` that raises on failure.

Most families share the same shape (query, aggregate into label tuples,
publish, clear what disappeared), which :class:`ReconcilingScrapeJob`
implements once.  A subclass supplies only its gauges and an
:meth:`~ReconcilingScrapeJob.aggregate` coroutine.

Typical usage::

    class HungBuildsJob(ReconcilingScrapeJob):
        name = "hung_builds"
        interval = 60.0

        async def aggregate(self) -> dict[LabelTuple, float]:
            ...
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from enum import StrEnum
from types import TracebackType
from typing import ClassVar

from buildstats.core import events
from buildstats.core.models import LabelTuple
from buildstats.metrics.registry import GaugeHandle
from buildstats.scrapers.reconcile import SeriesTracker

__all__ = ["ClearMode", "ScrapeJob", "ReconcilingScrapeJob", "utc_now"]

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Default clock of the time-dependent jobs."""
    return datetime.now(UTC)


class ClearMode(StrEnum):
    """How a disappeared series is cleared.

    ``RESET`` keeps the series at zero; ``REMOVE`` deletes it.  Removal is
    used when the labels include a unique identifier (a build id) and would
    otherwise accumulate without bound.
    """

    RESET = "reset"
    REMOVE = "remove"


class ScrapeJob(ABC):
    """Abstract base for all scrape jobs.

    Attributes:
        name: Short identifier used in log lines and task names.
        interval: Seconds to wait after a successful execution before the
            next one.  Subclasses declare a default; the constructor can
            override it.
    """

    name: ClassVar[str]
    interval: float

    def __init__(self, *, interval: float | None = None) -> None:
        if interval is not None:
            if interval <= 0:
                raise ValueError(f"interval must be > 0, got {interval!r}.")
            self.interval = interval

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:  # noqa: B027
        """Release resources held by the job.  The default is a no-op."""

    async def __aenter__(self) -> ScrapeJob:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Core contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def scrape(self) -> None:
        """Run one execution: query, aggregate and publish.

        Implementations raise on any failure that should be retried.  They
        must be safe to replay: every publish is idempotent.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, interval={self.interval!r})"


class ReconcilingScrapeJob(ScrapeJob):
    """A job whose series set is reconciled against the previous execution.

    :meth:`scrape` aggregates, publishes every current label tuple, then
    clears every tuple that was published before but is now absent, using
    :attr:`clear_mode`.  An empty aggregation still reconciles, clearing
    everything previously published.

    Each label tuple maps either to one value (jobs with a single gauge) or
    to a sequence of values aligned with :attr:`gauges`.
    """

    clear_mode: ClassVar[ClearMode] = ClearMode.RESET

    def __init__(self, gauges: Sequence[GaugeHandle], *, interval: float | None = None) -> None:
        super().__init__(interval=interval)
        if not gauges:
            raise ValueError(f"{type(self).__name__} needs at least one gauge.")
        self.gauges: tuple[GaugeHandle, ...] = tuple(gauges)
        self.tracker = SeriesTracker()

    @abstractmethod
    async def aggregate(self) -> Mapping[LabelTuple, float | Sequence[float]]:
        """Query upstream and return the values of this execution by label tuple."""

    async def scrape(self) -> None:
        current = await self.aggregate()

        for labels, value in current.items():
            self.publish(labels, value)

        absent = self.tracker.reconcile(current.keys())
        for labels in absent:
            self.clear(labels)

        logger.debug("%s published %d series.", self.name, len(current))
        if absent:
            logger.info(
                "%s cleared %d series no longer reported upstream.",
                self.name,
                len(absent),
                extra={"event": events.SERIES_CLEARED},
            )

    def publish(self, labels: LabelTuple, value: float | Sequence[float]) -> None:
        values = (value,) if isinstance(value, int | float) else tuple(value)
        if len(values) != len(self.gauges):
            raise ValueError(
                f"{self.name}: {len(values)} value(s) for {len(self.gauges)} gauge(s) at {labels!r}."
            )
        for gauge, v in zip(self.gauges, values):
            gauge.set(labels, v)

    def clear(self, labels: LabelTuple) -> None:
        for gauge in self.gauges:
            if self.clear_mode is ClearMode.REMOVE:
                gauge.remove(labels)
            else:
                gauge.reset(labels)
        logger.debug("%s cleared %r (%s).", self.name, labels, self.clear_mode)
