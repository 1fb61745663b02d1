"""Build-server statistics exporter: polls the TeamCity REST API and publishes Prometheus metrics."""

__version__ = "1.0.0"
