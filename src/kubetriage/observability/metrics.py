"""
Prometheus metrics for kubetriage

One collector per process, owning its own registry so tests can build
independent instances.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    start_http_server,
)

from .config import TelemetryConfig

logger = logging.getLogger(__name__)


@dataclass
class MetricsCollector:
    """
    Central metrics collector

    Tracks webhook intake, per-alert processing, LLM calls, chat API calls,
    feedback verdicts and knowledge base operations.
    """

    config: TelemetryConfig
    registry: CollectorRegistry = field(default_factory=CollectorRegistry)

    webhooks_total: Counter = field(init=False)
    alerts_total: Counter = field(init=False)
    alert_duration: Histogram = field(init=False)
    stage_errors_total: Counter = field(init=False)

    llm_requests_total: Counter = field(init=False)
    llm_duration: Histogram = field(init=False)
    llm_errors_total: Counter = field(init=False)
    stream_chunks_total: Counter = field(init=False)

    chat_requests_total: Counter = field(init=False)
    feedback_total: Counter = field(init=False)
    knowledge_operations_total: Counter = field(init=False)
    similar_cases: Histogram = field(init=False)

    active_alerts: Gauge = field(init=False)
    pending_analyses: Gauge = field(init=False)
    system_info: Info = field(init=False)

    def __post_init__(self):
        if not self.config.enabled or not self.config.metrics.enabled:
            logger.info("Metrics collection is disabled")
            return

        self._initialize_metrics()

        if self.config.should_start_metrics_server():
            start_http_server(
                port=self.config.metrics.standalone_port, registry=self.registry
            )
            logger.info(
                f"Metrics server started on port {self.config.metrics.standalone_port}"
            )

    def _initialize_metrics(self):
        labels = list(self.config.metrics.default_labels.keys())
        buckets = self.config.metrics.duration_buckets

        self.webhooks_total = Counter(
            "kubetriage_webhooks_total",
            "Webhook requests by detected source and outcome",
            labelnames=["source", "outcome"] + labels,
            registry=self.registry,
        )
        self.alerts_total = Counter(
            "kubetriage_alerts_total",
            "Alerts processed by category and outcome",
            labelnames=["category", "outcome"] + labels,
            registry=self.registry,
        )
        self.alert_duration = Histogram(
            "kubetriage_alert_duration_seconds",
            "End to end processing time of one alert",
            labelnames=["category"] + labels,
            buckets=buckets,
            registry=self.registry,
        )
        self.stage_errors_total = Counter(
            "kubetriage_stage_errors_total",
            "Degraded pipeline stages",
            labelnames=["stage"] + labels,
            registry=self.registry,
        )

        self.llm_requests_total = Counter(
            "kubetriage_llm_requests_total",
            "LLM requests",
            labelnames=["provider", "model", "operation"] + labels,
            registry=self.registry,
        )
        self.llm_duration = Histogram(
            "kubetriage_llm_duration_seconds",
            "LLM request duration",
            labelnames=["provider", "operation"] + labels,
            buckets=buckets,
            registry=self.registry,
        )
        self.llm_errors_total = Counter(
            "kubetriage_llm_errors_total",
            "LLM errors",
            labelnames=["provider", "operation", "error_type"] + labels,
            registry=self.registry,
        )
        self.stream_chunks_total = Counter(
            "kubetriage_stream_chunks_total",
            "Analysis chunks received from the LLM stream",
            labelnames=labels,
            registry=self.registry,
        )

        self.chat_requests_total = Counter(
            "kubetriage_chat_requests_total",
            "Chat API calls",
            labelnames=["method", "outcome"] + labels,
            registry=self.registry,
        )
        self.feedback_total = Counter(
            "kubetriage_feedback_total",
            "Feedback records by verdict and origin",
            labelnames=["verdict", "origin"] + labels,
            registry=self.registry,
        )
        self.knowledge_operations_total = Counter(
            "kubetriage_knowledge_operations_total",
            "Knowledge base operations",
            labelnames=["operation", "outcome"] + labels,
            registry=self.registry,
        )
        self.similar_cases = Histogram(
            "kubetriage_similar_cases",
            "Similar cases returned per search",
            labelnames=labels,
            buckets=[0, 1, 2, 3, 5, 10],
            registry=self.registry,
        )

        self.active_alerts = Gauge(
            "kubetriage_active_alerts",
            "Alerts currently being processed",
            labelnames=labels,
            registry=self.registry,
        )
        self.pending_analyses = Gauge(
            "kubetriage_pending_analyses",
            "Analyses awaiting a reaction",
            labelnames=labels,
            registry=self.registry,
        )
        self.system_info = Info(
            "kubetriage_system", "System information", registry=self.registry
        )
        self.system_info.info(
            {
                "version": self.config.tracing.service_version,
                "environment": self.config.environment,
                "cluster": self.config.cluster_name,
            }
        )

    def _child(self, metric, **labels: str):
        """Labelled child of a metric; unlabelled metrics are used directly"""
        labels = {**self.config.metrics.default_labels, **labels}
        return metric.labels(**labels) if labels else metric

    @contextmanager
    def time_alert(self, category: str):
        start_time = time.monotonic()
        self._child(self.active_alerts).inc()
        try:
            yield
        finally:
            self._child(self.active_alerts).dec()
            self._child(self.alert_duration, category=category).observe(
                time.monotonic() - start_time
            )

    @contextmanager
    def time_llm(self, provider: str, operation: str):
        start_time = time.monotonic()
        try:
            yield
        finally:
            self._child(
                self.llm_duration, provider=provider, operation=operation
            ).observe(time.monotonic() - start_time)

    def record_webhook(self, source: str, outcome: str):
        self._child(self.webhooks_total, source=source, outcome=outcome).inc()

    def record_alert(self, category: str, outcome: str):
        self._child(self.alerts_total, category=category, outcome=outcome).inc()

    def record_stage_error(self, stage: str):
        self._child(self.stage_errors_total, stage=stage).inc()

    def record_llm_request(self, provider: str, model: str, operation: str):
        self._child(
            self.llm_requests_total, provider=provider, model=model, operation=operation
        ).inc()

    def record_llm_error(self, provider: str, operation: str, error_type: str):
        self._child(
            self.llm_errors_total,
            provider=provider,
            operation=operation,
            error_type=error_type,
        ).inc()

    def record_stream_chunk(self):
        self._child(self.stream_chunks_total).inc()

    def record_chat_request(self, method: str, outcome: str):
        self._child(self.chat_requests_total, method=method, outcome=outcome).inc()

    def record_feedback(self, is_correct: bool, origin: str):
        verdict = "correct" if is_correct else "incorrect"
        self._child(self.feedback_total, verdict=verdict, origin=origin).inc()

    def record_knowledge_operation(self, operation: str, outcome: str):
        self._child(
            self.knowledge_operations_total, operation=operation, outcome=outcome
        ).inc()

    def record_similar_cases(self, count: int):
        self._child(self.similar_cases).observe(count)

    def set_pending_analyses(self, count: int):
        self._child(self.pending_analyses).set(count)

    def get_metrics_text(self) -> str:
        """Metrics in Prometheus text exposition format"""
        return generate_latest(self.registry).decode("utf-8")


_metrics: Optional[MetricsCollector] = None


def initialize_metrics(config: TelemetryConfig) -> None:
    global _metrics
    if not config.enabled or not config.metrics.enabled:
        _metrics = None
        return
    _metrics = MetricsCollector(config)


def get_metrics() -> Optional[MetricsCollector]:
    """Global metrics collector, None when metrics are disabled"""
    return _metrics


def reset_metrics() -> None:
    global _metrics
    _metrics = None
