"""Sliding-window quantile summary for prometheus_client.

The stock :class:`prometheus_client.Summary` exports only ``_count`` and
``_sum``.  The queue-wait job needs P50/P90/P99 over the last ten minutes,
so :class:`WindowedSummary` keeps the raw observations per label set and
computes quantiles on every collection.

Observations older than ``max_age_seconds`` are discarded.  A label set whose
window becomes empty is dropped from the exposition together with its
``_count`` and ``_sum``, which is how stale series age out without explicit
reconciliation.

Collection happens on the exposition server's thread while observations
arrive from the event loop, so all state is guarded by a lock.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from prometheus_client.core import Metric
from prometheus_client.registry import Collector

from buildstats.core.models import LabelTuple

__all__ = ["DEFAULT_QUANTILES", "DEFAULT_MAX_AGE_SECONDS", "WindowedSummary"]

logger = logging.getLogger(__name__)

DEFAULT_QUANTILES: tuple[float, ...] = (0.5, 0.9, 0.99)
DEFAULT_MAX_AGE_SECONDS: float = 600.0


@dataclass
class _Series:
    samples: deque[tuple[float, float]] = field(default_factory=deque)
    count: int = 0
    total: float = 0.0


def _quantile(sorted_values: Sequence[float], q: float) -> float:
    """Nearest-rank quantile of an already sorted, non-empty sequence."""
    rank = max(math.ceil(q * len(sorted_values)), 1)
    return sorted_values[rank - 1]


class WindowedSummary(Collector):
    """Summary metric with client-side quantiles over a sliding time window.

    Args:
        name: Metric name.
        documentation: Help text.
        labelnames: Label names, in the order label tuples are given.
        quantiles: Quantiles to export, each in ``[0, 1]``.
        max_age_seconds: Observation lifetime.
        clock: Monotonic time source (injectable for tests).

    Raises:
        ValueError: If a quantile is outside ``[0, 1]`` or the window is not
            positive.
    """

    def __init__(
        self,
        name: str,
        documentation: str,
        labelnames: Iterable[str] = (),
        *,
        quantiles: Iterable[float] = DEFAULT_QUANTILES,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.documentation = documentation
        self.labelnames: tuple[str, ...] = tuple(labelnames)
        self.quantiles: tuple[float, ...] = tuple(sorted(quantiles))
        if any(not 0.0 <= q <= 1.0 for q in self.quantiles):
            raise ValueError(f"Quantiles must lie in [0, 1], got {self.quantiles!r}.")
        if max_age_seconds <= 0:
            raise ValueError(f"max_age_seconds must be > 0, got {max_age_seconds!r}.")
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._series: dict[LabelTuple, _Series] = {}
        self._lock = threading.Lock()

    def observe(self, labels: LabelTuple, value: float) -> None:
        """Record *value* for the series identified by *labels*."""
        labels = tuple(str(v) for v in labels)
        if len(labels) != len(self.labelnames):
            raise ValueError(
                f"{self.name} expects {len(self.labelnames)} label value(s), got {len(labels)}."
            )
        now = self._clock()
        with self._lock:
            series = self._series.setdefault(labels, _Series())
            series.samples.append((now, value))
            series.count += 1
            series.total += value
            self._expire(now)

    def describe(self) -> Iterable[Metric]:
        yield Metric(self.name, self.documentation, "summary")

    def collect(self) -> Iterable[Metric]:
        metric = Metric(self.name, self.documentation, "summary")
        with self._lock:
            self._expire(self._clock())
            for labels, series in self._series.items():
                label_map = dict(zip(self.labelnames, labels))
                values = sorted(v for _, v in series.samples)
                for q in self.quantiles:
                    metric.add_sample(
                        self.name,
                        {**label_map, "quantile": repr(q)},
                        _quantile(values, q),
                    )
                metric.add_sample(f"{self.name}_count", label_map, float(series.count))
                metric.add_sample(f"{self.name}_sum", label_map, series.total)
        yield metric

    def series(self) -> frozenset[LabelTuple]:
        """Label tuples that currently hold at least one live observation."""
        with self._lock:
            self._expire(self._clock())
            return frozenset(self._series)

    def _expire(self, now: float) -> None:
        cutoff = now - self.max_age_seconds
        for labels in list(self._series):
            samples = self._series[labels].samples
            while samples and samples[0][0] <= cutoff:
                samples.popleft()
            if not samples:
                del self._series[labels]
                logger.debug("%s series %r aged out of the window.", self.name, labels)
