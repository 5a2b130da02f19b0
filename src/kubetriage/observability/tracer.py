"""
OpenTelemetry tracing helpers

Spans wrap each alert's pipeline stages so a slow or failing classifier,
collector or knowledge base lookup can be located per alert. Before
``initialize_tracing`` runs every helper works against a no-op tracer.
"""

import functools
import logging
import time
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, Optional, ParamSpec, TypeVar

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode

from .config import TelemetryConfig

logger = logging.getLogger(__name__)

_tracer: Optional[trace.Tracer] = None

P = ParamSpec("P")
T = TypeVar("T")


def initialize_tracing(config: TelemetryConfig) -> None:
    global _tracer

    if not (config.enabled and config.tracing.enabled):
        logger.info("Tracing is disabled")
        return

    provider = TracerProvider(
        resource=Resource.create(config.get_resource_attributes()),
        sampler=ParentBased(TraceIdRatioBased(config.tracing.sample_rate)),
    )
    if config.should_export_traces():
        provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(
                    endpoint=config.tracing.otlp_endpoint,
                    headers=config.tracing.otlp_headers,
                    insecure=config.tracing.otlp_insecure,
                )
            )
        )
        logger.info(f"Exporting spans to {config.tracing.otlp_endpoint}")
    else:
        logger.info("No OTLP endpoint configured, spans stay in process")

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer("kubetriage", config.tracing.service_version)


def get_tracer() -> trace.Tracer:
    return _tracer if _tracer is not None else trace.NoOpTracer()


@contextmanager
def trace_operation(
    operation_name: str, attributes: Optional[dict[str, Any]] = None
) -> Iterator[Span]:
    """
    Run a block inside a span

    Exceptions mark the span as failed and propagate unchanged.
    """
    with get_tracer().start_as_current_span(
        operation_name, attributes=attributes, record_exception=False
    ) as span:
        started = time.monotonic()
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, f"{type(e).__name__}: {e}"))
            raise
        finally:
            span.set_attribute("duration_ms", (time.monotonic() - started) * 1000)


def trace_async(
    operation_name: Optional[str] = None,
    attributes: Optional[dict[str, Any]] = None,
):
    """Decorator running a coroutine function inside ``trace_operation``"""

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        name = operation_name or func.__qualname__

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            with trace_operation(name, attributes):
                return await func(*args, **kwargs)

        return wrapper

    return decorator


def add_event(name: str, attributes: Optional[dict[str, Any]] = None) -> None:
    span = trace.get_current_span()
    if span.is_recording():
        span.add_event(name, attributes or {})


def set_attribute(key: str, value: Any) -> None:
    span = trace.get_current_span()
    if span.is_recording():
        span.set_attribute(key, value)
