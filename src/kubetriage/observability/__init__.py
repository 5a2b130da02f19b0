"""
Observability module for kubetriage

OpenTelemetry tracing, Prometheus metrics and structured logging.
"""

from .config import TelemetryConfig
from .init import (
    configure_logging,
    initialize_observability,
    is_observability_initialized,
    shutdown_observability,
)
from .metrics import MetricsCollector, get_metrics
from .tracer import add_event, get_tracer, set_attribute, trace_async, trace_operation

__all__ = [
    "TelemetryConfig",
    "MetricsCollector",
    "add_event",
    "configure_logging",
    "get_metrics",
    "get_tracer",
    "initialize_observability",
    "is_observability_initialized",
    "set_attribute",
    "shutdown_observability",
    "trace_async",
    "trace_operation",
]
