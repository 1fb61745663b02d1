"""Prometheus-facing metric registry and the windowed quantile summary."""

from buildstats.metrics.registry import GaugeHandle, MetricRegistry, SummaryHandle
from buildstats.metrics.summary import WindowedSummary

__all__ = ["GaugeHandle", "MetricRegistry", "SummaryHandle", "WindowedSummary"]
