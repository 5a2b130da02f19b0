"""
Observability lifecycle

``initialize_observability`` runs once per process, from the server
lifespan or the CLI; ``shutdown_observability`` flushes spans and drops
the metrics collector so a later start begins clean.
"""

import logging
import logging.config
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider

from .config import TelemetryConfig
from .metrics import initialize_metrics, reset_metrics
from .tracer import initialize_tracing

logger = logging.getLogger(__name__)

_initialized = False


class TraceContextFilter(logging.Filter):
    """Stamp records with the active trace and span ids, empty outside a span"""

    def filter(self, record: logging.LogRecord) -> bool:
        context = trace.get_current_span().get_span_context()
        if context.is_valid:
            record.trace_id = format(context.trace_id, "032x")
            record.span_id = format(context.span_id, "016x")
        else:
            record.trace_id = ""
            record.span_id = ""
        return True


def _logging_dict(config: TelemetryConfig) -> dict[str, Any]:
    level = config.logging.level.upper()
    fields = "%(asctime)s %(levelname)s %(name)s %(message)s"
    if config.logging.include_trace_id:
        fields += " %(trace_id)s %(span_id)s"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"trace_context": {"()": TraceContextFilter}},
        "formatters": {
            "json": {
                "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                "fmt": fields,
                "rename_fields": {"levelname": "level", "name": "logger"},
            },
            "text": {"format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"},
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": config.logging.format,
                "filters": ["trace_context"] if config.logging.include_trace_id else [],
            }
        },
        # uvicorn access lines duplicate the webhook logs
        "loggers": {"uvicorn.access": {"level": "WARNING"}},
        "root": {"level": level, "handlers": ["stdout"]},
    }


def configure_logging(config: TelemetryConfig) -> None:
    logging.config.dictConfig(_logging_dict(config))


def initialize_observability(config: TelemetryConfig) -> None:
    global _initialized

    if _initialized:
        logger.warning("Observability already initialized")
        return

    if config.logging.enabled:
        configure_logging(config)

    if config.enabled:
        initialize_tracing(config)
        if config.metrics.enabled:
            initialize_metrics(config)
        logger.info(
            f"Telemetry enabled (environment={config.environment}, "
            f"tracing={config.tracing.enabled}, metrics={config.metrics.enabled})"
        )
    else:
        logger.info("Telemetry is disabled")

    _initialized = True


def is_observability_initialized() -> bool:
    return _initialized


def shutdown_observability() -> None:
    global _initialized

    if not _initialized:
        return

    provider = trace.get_tracer_provider()
    if isinstance(provider, TracerProvider):
        provider.shutdown()

    reset_metrics()
    _initialized = False
    logger.info("Observability shut down")
