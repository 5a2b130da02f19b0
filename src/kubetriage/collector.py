"""
Diagnostics collection from the Kubernetes API

Namespace events are always gathered; the rest depends on the alert
category. Each section degrades to an inline error message so one failed
API call never loses the rest of the report.
"""

import asyncio
import logging
from typing import Optional, Protocol

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config

from .config import KubernetesConfig
from .errors import CollectorError
from .models import Alert, Category
from .observability import set_attribute, trace_async

logger = logging.getLogger(__name__)

# name -> (section title, action used in error lines)
_SECTIONS = {
    "events": ("Recent Events", "fetching events"),
    "logs": ("Pod Logs", "fetching logs"),
    "pod": ("Pod Details", "describing pod"),
    "resources": ("Resource Metrics", "checking resources"),
    "node_resources": ("Node Resource Metrics", "checking node resources"),
    "node_status": ("Node Status", "checking node status"),
    "service": ("Service Check", "checking service"),
    "network": ("Network Check", "checking network"),
}

_POD_FETCHERS = {
    "logs": "pod_logs",
    "pod": "describe_pod",
    "resources": "pod_resources",
    "node_resources": "node_resources",
    "node_status": "node_status",
    "network": "pod_network",
}


class DiagnosticsCollector(Protocol):
    async def gather_context(self, alert: Alert, category: Category) -> str: ...


def format_header(alert: Alert) -> str:
    lines = [
        "=== AI-Powered Debug Analysis ===",
        f"Alert: {alert.name}",
        f"Severity: {alert.severity}",
        f"Namespace: {alert.namespace}",
        f"Time: {alert.starts_at.isoformat() if alert.starts_at else 'unknown'}",
        "",
    ]
    if alert.summary:
        lines.append(f"Summary: {alert.summary}")
    if alert.description:
        lines.append(f"Description: {alert.description}")
        lines.append("")
    return "\n".join(lines) + "\n"


class AlertOnlyCollector:
    """Collector used when cluster access is disabled: alert metadata only"""

    async def gather_context(self, alert: Alert, category: Category) -> str:
        return format_header(alert)


class KubernetesCollector:
    """
    Category-driven diagnostics through the Kubernetes Python client

    The client is blocking; collection runs in a worker thread.
    """

    def __init__(
        self,
        core_api: k8s_client.CoreV1Api,
        networking_api: Optional[k8s_client.NetworkingV1Api] = None,
        log_tail_lines: int = 50,
        events_limit: int = 20,
    ):
        self.core = core_api
        self.networking = networking_api
        self.log_tail_lines = log_tail_lines
        self.events_limit = events_limit

    @classmethod
    def from_config(cls, config: KubernetesConfig) -> "KubernetesCollector":
        """
        Load cluster credentials and verify the API answers

        Raises:
            CollectorError: Credentials cannot be loaded or the API is unreachable
        """
        try:
            if config.in_cluster is True:
                k8s_config.load_incluster_config()
            elif config.in_cluster is False:
                k8s_config.load_kube_config(config_file=config.kubeconfig)
            else:
                try:
                    k8s_config.load_incluster_config()
                    logger.info("Loaded in-cluster Kubernetes config")
                except k8s_config.ConfigException:
                    k8s_config.load_kube_config(config_file=config.kubeconfig)
                    logger.info("Loaded Kubernetes config from kubeconfig")

            k8s_client.VersionApi().get_code()
        except Exception as e:
            raise CollectorError(f"Cannot reach the Kubernetes API: {e}") from e

        return cls(
            k8s_client.CoreV1Api(),
            k8s_client.NetworkingV1Api(),
            log_tail_lines=config.log_tail_lines,
            events_limit=config.events_limit,
        )

    @trace_async("collector.gather_context")
    async def gather_context(self, alert: Alert, category: Category) -> str:
        set_attribute("alert.category", Category.coerce(category).value)
        return await asyncio.to_thread(self._gather_sync, alert, Category.coerce(category))

    def _gather_sync(self, alert: Alert, category: Category) -> str:
        namespace = alert.namespace
        pod = alert.labels.get("pod", "")
        service = alert.labels.get("service", "")

        logger.info(f"Gathering debug info for category: {category.value}")
        sections = [format_header(alert), self._run("events", namespace, pod, service)]
        for name in self._plan(category, pod, service):
            sections.append(self._run(name, namespace, pod, service))
        return "".join(sections)

    @staticmethod
    def _plan(category: Category, pod: str, service: str) -> list[str]:
        """Sections gathered for a category, after namespace events"""
        if category in (Category.POD_CRASH, Category.POD_RESTART):
            return ["logs", "pod", "resources"]
        if category in (Category.MEMORY, Category.CPU, Category.DISK):
            return ["pod", "resources", "node_resources"]
        if category is Category.NETWORK:
            return ["service", "network"] + (["pod"] if pod else [])
        if category is Category.SERVICE:
            return ["service"] + (["pod"] if pod else [])
        if category in (Category.HPA, Category.DEPLOYMENT):
            return ["resources"] + (["pod"] if pod else [])
        if category is Category.NODE:
            return ["pod", "node_status", "node_resources"] if pod else []
        plan = ["logs", "pod"] if pod else []
        return plan + (["service"] if service else [])

    def _run(self, name: str, namespace: str, pod: str, service: str) -> str:
        title, action = _SECTIONS[name]
        if name == "logs":
            title = f"{title} (last {self.log_tail_lines} lines)"
        try:
            if name == "events":
                body = self.namespace_events(namespace)
            elif name == "service":
                body = self.check_service(namespace, service)
            else:
                body = getattr(self, _POD_FETCHERS[name])(namespace, pod)
        except Exception as e:
            logger.warning(f"Error {action}: {e}")
            return f"=== {title} ===\nError {action}: {e}\n\n"
        return f"=== {title} ===\n{body}\n\n"

    def namespace_events(self, namespace: str) -> str:
        events = self.core.list_namespaced_event(namespace, limit=self.events_limit)
        if not events.items:
            return "No recent events found"

        lines = []
        for event in events.items:
            when = event.last_timestamp or event.event_time or event.first_timestamp
            stamp = when.strftime("%H:%M:%S") if when else "--:--:--"
            obj = event.involved_object
            lines.append(
                f"[{stamp}] {event.type} {obj.kind}/{obj.name}: {event.reason} - {event.message}"
            )
        return "\n".join(lines)

    def pod_logs(self, namespace: str, pod: str) -> str:
        if not pod:
            raise CollectorError("alert has no pod label")
        return self.core.read_namespaced_pod_log(
            name=pod, namespace=namespace, tail_lines=self.log_tail_lines
        )

    def _read_pod(self, namespace: str, pod: str):
        if not pod:
            raise CollectorError("alert has no pod label")
        return self.core.read_namespaced_pod(name=pod, namespace=namespace)

    def describe_pod(self, namespace: str, pod: str) -> str:
        p = self._read_pod(namespace, pod)
        lines = [
            f"Name: {p.metadata.name}",
            f"Namespace: {p.metadata.namespace}",
            f"Phase: {p.status.phase}",
            f"Node: {p.spec.node_name}",
            f"IP: {p.status.pod_ip}",
            f"Start Time: {p.status.start_time}",
            "",
            "Container Statuses:",
        ]
        for cs in p.status.container_statuses or []:
            lines.append(f"  - {cs.name}: Ready={cs.ready}, RestartCount={cs.restart_count}")
            state = cs.state
            if state and state.waiting:
                lines.append(f"    Waiting: {state.waiting.reason} - {state.waiting.message}")
            if state and state.terminated:
                t = state.terminated
                lines.append(
                    f"    Terminated: {t.reason} - {t.message} (Exit Code: {t.exit_code})"
                )

        lines.append("")
        lines.append("Conditions:")
        for cond in p.status.conditions or []:
            lines.append(f"  - {cond.type}: {cond.status} ({cond.reason})")
            if cond.message:
                lines.append(f"    Message: {cond.message}")
        return "\n".join(lines)

    def pod_resources(self, namespace: str, pod: str) -> str:
        p = self._read_pod(namespace, pod)
        lines = ["Container Resources:"]
        for container in p.spec.containers:
            lines.append(f"\nContainer: {container.name}")
            resources = container.resources
            if resources and resources.requests:
                lines.append("  Requests:")
                lines.extend(f"    {k}: {v}" for k, v in resources.requests.items())
            if resources and resources.limits:
                lines.append("  Limits:")
                lines.extend(f"    {k}: {v}" for k, v in resources.limits.items())
            if container.liveness_probe:
                lines.append("  Liveness Probe: Configured")
            if container.readiness_probe:
                lines.append("  Readiness Probe: Configured")
        return "\n".join(lines)

    def _pod_node(self, namespace: str, pod: str):
        p = self._read_pod(namespace, pod)
        if not p.spec.node_name:
            return None
        return self.core.read_node(name=p.spec.node_name)

    def node_resources(self, namespace: str, pod: str) -> str:
        node = self._pod_node(namespace, pod)
        if node is None:
            return "Pod is not scheduled to any node yet"
        lines = [f"Node: {node.metadata.name}", "Capacity:"]
        lines.extend(f"  {k}: {v}" for k, v in (node.status.capacity or {}).items())
        lines.append("Allocatable:")
        lines.extend(f"  {k}: {v}" for k, v in (node.status.allocatable or {}).items())
        return "\n".join(lines)

    def node_status(self, namespace: str, pod: str) -> str:
        node = self._pod_node(namespace, pod)
        if node is None:
            return "Pod is not scheduled to any node yet"
        lines = [f"Node: {node.metadata.name}", "Conditions:"]
        for cond in node.status.conditions or []:
            lines.append(f"  - {cond.type}: {cond.status} ({cond.reason})")
            if cond.message:
                lines.append(f"    Message: {cond.message}")
        return "\n".join(lines)

    def check_service(self, namespace: str, service: str) -> str:
        if not service:
            raise CollectorError("alert has no service label")
        svc = self.core.read_namespaced_service(name=service, namespace=namespace)
        lines = [
            f"Service: {svc.metadata.name}",
            f"Type: {svc.spec.type}",
            f"ClusterIP: {svc.spec.cluster_ip}",
            "Ports:",
        ]
        for port in svc.spec.ports or []:
            lines.append(
                f"  - {port.name}: {port.port}/{port.protocol} -> {port.target_port}"
            )
        lines.append("Selector:")
        lines.extend(f"  {k}: {v}" for k, v in (svc.spec.selector or {}).items())

        try:
            endpoints = self.core.read_namespaced_endpoints(name=service, namespace=namespace)
        except Exception as e:
            lines.append(f"Failed to get endpoints: {e}")
            return "\n".join(lines)

        lines.append("")
        lines.append("Endpoints:")
        addresses = [
            addr for subset in endpoints.subsets or [] for addr in subset.addresses or []
        ]
        if not addresses:
            lines.append("  WARNING: No endpoints available!")
        for addr in addresses:
            target = f" (Pod: {addr.target_ref.name})" if addr.target_ref else ""
            lines.append(f"  - {addr.ip}{target}")
        return "\n".join(lines)

    def pod_network(self, namespace: str, pod: str) -> str:
        p = self._read_pod(namespace, pod)
        lines = [f"Pod IP: {p.status.pod_ip}", f"Host IP: {p.status.host_ip}"]
        if self.networking is None:
            return "\n".join(lines)
        try:
            policies = self.networking.list_namespaced_network_policy(namespace)
        except Exception as e:
            lines.append(f"Failed to get network policies: {e}")
            return "\n".join(lines)

        lines.append("")
        lines.append(f"Network Policies: {len(policies.items)}")
        lines.extend(f"  - {np.metadata.name}" for np in policies.items)
        return "\n".join(lines)


def create_collector(config: KubernetesConfig) -> DiagnosticsCollector:
    """Cluster collector, or alert-only diagnostics when cluster access is off"""
    if not config.enabled:
        logger.warning("Kubernetes access disabled, diagnostics limited to alert metadata")
        return AlertOnlyCollector()
    return KubernetesCollector.from_config(config)
