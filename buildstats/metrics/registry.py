"""Metric Registry contract exposed to the scrape jobs.

:class:`MetricRegistry` wraps a :class:`prometheus_client.CollectorRegistry`
and hands out small handles keyed by label tuples:

* :meth:`MetricRegistry.gauge` → :class:`GaugeHandle` with ``set``,
  ``reset`` (set to zero) and ``remove`` (drop the labelled series).
* :meth:`MetricRegistry.summary` → :class:`SummaryHandle` with ``observe``,
  backed by :class:`~buildstats.metrics.summary.WindowedSummary`.

Both factories are get-or-create: asking twice for the same name returns a
handle on the same underlying metric, so jobs may declare their metrics in
``__init__`` without coordinating.  Asking for an existing name with a
different kind or label set raises :class:`ValueError`.

prometheus_client metrics are internally locked, so handles may be used
from every job loop at once.

Typical usage::

    from buildstats.metrics.registry import MetricRegistry

    registry = MetricRegistry()
    hung = registry.gauge("probably_hanging_builds", "Hung builds", "buildTypeId")
    hung.set(("Server_Build",), 2)
    registry.serve("0.0.0.0", 9090)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from prometheus_client import CollectorRegistry, Gauge, start_http_server

from buildstats.core.models import LabelTuple
from buildstats.metrics.summary import (
    DEFAULT_MAX_AGE_SECONDS,
    DEFAULT_QUANTILES,
    WindowedSummary,
)

__all__ = ["GaugeHandle", "SummaryHandle", "MetricRegistry"]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Handles
# ---------------------------------------------------------------------------


class GaugeHandle:
    """Label-tuple oriented view of one :class:`prometheus_client.Gauge`."""

    def __init__(self, gauge: Gauge, name: str, labelnames: tuple[str, ...]) -> None:
        self._gauge = gauge
        self.name = name
        self.labelnames = labelnames

    def set(self, labels: LabelTuple, value: float) -> None:  # noqa: A003
        self._child(labels).set(value)

    def reset(self, labels: LabelTuple) -> None:
        """Set the series to zero, keeping it in the exposition."""
        self._child(labels).set(0)

    def remove(self, labels: LabelTuple) -> None:
        """Drop the labelled series.  Removing an absent series is a no-op."""
        self._check(labels)
        try:
            self._gauge.remove(*labels)
        except KeyError:
            logger.debug("%s%r was not present; nothing to remove.", self.name, labels)

    def _child(self, labels: LabelTuple) -> Gauge:
        self._check(labels)
        return self._gauge.labels(*labels) if self.labelnames else self._gauge

    def _check(self, labels: LabelTuple) -> None:
        if len(labels) != len(self.labelnames):
            raise ValueError(
                f"{self.name} expects labels {self.labelnames!r}, got {labels!r}."
            )


class SummaryHandle:
    """Label-tuple oriented view of one :class:`WindowedSummary`."""

    def __init__(self, summary: WindowedSummary) -> None:
        self._summary = summary
        self.name = summary.name
        self.labelnames = summary.labelnames

    def observe(self, labels: LabelTuple, value: float) -> None:
        self._summary.observe(labels, value)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class MetricRegistry:
    """Get-or-create factory for the exported metrics.

    Args:
        registry: The prometheus_client registry to register into.  A fresh,
            private registry is created when omitted, so the process-global
            default registry (and its platform collectors) is left untouched.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry if registry is not None else CollectorRegistry()
        self._gauges: dict[str, GaugeHandle] = {}
        self._summaries: dict[str, SummaryHandle] = {}

    @property
    def collector_registry(self) -> CollectorRegistry:
        return self._registry

    def gauge(self, name: str, documentation: str, *labelnames: str) -> GaugeHandle:
        """Return the gauge *name*, creating it on first use."""
        existing = self._gauges.get(name)
        if existing is not None:
            self._check_labels(name, existing.labelnames, labelnames)
            return existing
        if name in self._summaries:
            raise ValueError(f"Metric {name!r} is already registered as a summary.")

        gauge = Gauge(name, documentation, labelnames, registry=self._registry)
        handle = GaugeHandle(gauge, name, tuple(labelnames))
        self._gauges[name] = handle
        logger.debug("Registered gauge %s%r.", name, tuple(labelnames))
        return handle

    def summary(
        self,
        name: str,
        documentation: str,
        *labelnames: str,
        quantiles: Iterable[float] = DEFAULT_QUANTILES,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
    ) -> SummaryHandle:
        """Return the windowed summary *name*, creating it on first use."""
        existing = self._summaries.get(name)
        if existing is not None:
            self._check_labels(name, existing.labelnames, labelnames)
            return existing
        if name in self._gauges:
            raise ValueError(f"Metric {name!r} is already registered as a gauge.")

        summary = WindowedSummary(
            name,
            documentation,
            labelnames,
            quantiles=quantiles,
            max_age_seconds=max_age_seconds,
        )
        self._registry.register(summary)
        handle = SummaryHandle(summary)
        self._summaries[name] = handle
        logger.debug("Registered summary %s%r.", name, tuple(labelnames))
        return handle

    def serve(self, host: str, port: int) -> None:
        """Start the HTTP exposition endpoint on a daemon thread."""
        start_http_server(port, addr=host, registry=self._registry)
        logger.info("Metrics endpoint listening on http://%s:%d/metrics", host, port)

    @staticmethod
    def _check_labels(name: str, have: tuple[str, ...], want: tuple[str, ...]) -> None:
        if tuple(want) != have:
            raise ValueError(
                f"Metric {name!r} already registered with labels {have!r}, not {tuple(want)!r}."
            )
