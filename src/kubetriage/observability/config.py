"""
Telemetry settings

Nested under ``TriageConfig.telemetry`` so every field can be set from
YAML or ``KUBETRIAGE_TELEMETRY__*`` variables.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field

# Alert processing is dominated by the LLM stream, so buckets reach minutes
DEFAULT_DURATION_BUCKETS = [0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0, 300.0]


class TracingConfig(BaseModel):
    """OpenTelemetry tracing"""

    enabled: bool = True
    service_name: str = "kubetriage"
    service_version: str = "0.1.0"
    # e.g. http://otel-collector:4317; spans are only exported when set
    otlp_endpoint: Optional[str] = None
    otlp_headers: dict[str, str] = Field(default_factory=dict)
    otlp_insecure: bool = True
    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)


class MetricsConfig(BaseModel):
    """Prometheus metrics, served on the API's /metrics route"""

    enabled: bool = True
    # Extra listener for scrapers that cannot reach the API port
    standalone_port: Optional[int] = Field(default=None, ge=1024, le=65535)
    default_labels: dict[str, str] = Field(default_factory=dict)
    duration_buckets: list[float] = Field(
        default_factory=lambda: list(DEFAULT_DURATION_BUCKETS)
    )


class LoggingConfig(BaseModel):
    """Process-wide logging setup"""

    enabled: bool = True
    level: str = "INFO"
    format: Literal["json", "text"] = "json"
    include_trace_id: bool = True


class TelemetryConfig(BaseModel):
    """Tracing, metrics and logging for the triage service"""

    enabled: bool = True
    environment: str = "production"
    # Cluster the triage service watches; attached to traces and build info
    cluster_name: str = ""

    tracing: TracingConfig = Field(default_factory=TracingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def get_resource_attributes(self) -> dict[str, str]:
        attributes = {
            "service.name": self.tracing.service_name,
            "service.version": self.tracing.service_version,
            "deployment.environment": self.environment,
        }
        if self.cluster_name:
            attributes["k8s.cluster.name"] = self.cluster_name
        return attributes

    def should_export_traces(self) -> bool:
        return self.enabled and self.tracing.enabled and bool(self.tracing.otlp_endpoint)

    def should_start_metrics_server(self) -> bool:
        return (
            self.enabled
            and self.metrics.enabled
            and self.metrics.standalone_port is not None
        )
