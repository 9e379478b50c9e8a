"""Monitoring and observability package."""
from .health import HealthCheck, HealthCheckError
from .logging import setup_logging
from .metrics import MetricsCollector, metrics

__all__ = ["metrics", "MetricsCollector", "setup_logging", "HealthCheck", "HealthCheckError"]
