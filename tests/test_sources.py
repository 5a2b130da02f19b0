"""
Test suite for webhook source adapters

Tests detection order and conversion of Alertmanager, Grafana and
PagerDuty payloads into normalized alerts.
"""

import json

import pytest

from kubetriage.errors import WebhookParseError
from kubetriage.sources import AdapterRegistry, available_sources

ALERTMANAGER_PAYLOAD = {
    "version": "4",
    "groupKey": "{}:{alertname=\"KubePodCrashLooping\"}",
    "status": "firing",
    "receiver": "kubetriage",
    "alerts": [
        {
            "status": "firing",
            "labels": {
                "alertname": "KubePodCrashLooping",
                "namespace": "payments",
                "pod": "api-0",
                "severity": "critical",
            },
            "annotations": {"summary": "Pod is crash looping"},
            "startsAt": "2024-05-01T12:00:00Z",
            "endsAt": "0001-01-01T00:00:00Z",
            "generatorURL": "http://prometheus/graph",
            "fingerprint": "abc",
        },
        {
            "status": "resolved",
            "labels": {"alertname": "KubeCPUHigh", "namespace": "payments"},
            "annotations": {},
            "startsAt": "2024-05-01T11:00:00Z",
        },
    ],
}

GRAFANA_PAYLOAD = {
    "title": "[FIRING:1] HighLatency",
    "state": "alerting",
    "message": "Latency above 2s",
    "alerts": [
        {
            "status": "firing",
            "labels": {"alertname": "HighLatency", "namespace": "web"},
            "annotations": {"summary": "p99 latency above 2s"},
            "dashboardURL": "http://grafana/d/abc",
            "valueString": "[ var='A' value=2.4 ]",
        }
    ],
}

PAGERDUTY_PAYLOAD = {
    "messages": [
        {
            "id": "msg-1",
            "event": "incident.trigger",
            "incident": {
                "id": "PD123",
                "title": "Database connections exhausted",
                "description": "Pool at 100%",
                "created_at": "2024-05-01T12:00:00Z",
                "status": "triggered",
                "incident_key": "db-pool",
                "urgency": "high",
                "service": {"id": "S1", "name": "orders-db"},
                "custom_details": {
                    "k8s_namespace": "orders",
                    "pod_name": "orders-db-0",
                    "replicas": 3,
                },
            },
        },
        {
            "id": "msg-2",
            "event": "incident.acknowledge",
            "incident": {"id": "PD124", "title": "Ignored"},
        },
    ],
}


def body(payload) -> bytes:
    return json.dumps(payload).encode()


class TestRegistry:
    def test_builtin_sources_registered(self):
        assert {"alertmanager", "grafana", "pagerduty"} <= set(available_sources())

    def test_unknown_source_skipped(self):
        registry = AdapterRegistry(["alertmanager", "nagios"])
        assert registry.enabled == ["alertmanager"]

    def test_invalid_json_rejected(self):
        with pytest.raises(WebhookParseError, match="Invalid JSON"):
            AdapterRegistry().detect_and_convert(b"{not json")

    def test_non_object_rejected(self):
        with pytest.raises(WebhookParseError):
            AdapterRegistry().detect_and_convert(b"[1, 2]")

    def test_unrecognized_payload_lists_attempts(self):
        with pytest.raises(WebhookParseError) as exc_info:
            AdapterRegistry().detect_and_convert(body({"hello": "world"}))
        assert set(exc_info.value.attempts) == {"alertmanager", "grafana", "pagerduty"}

    def test_disabled_source_not_tried(self):
        registry = AdapterRegistry(["alertmanager", "grafana"])
        with pytest.raises(WebhookParseError):
            registry.detect_and_convert(body(PAGERDUTY_PAYLOAD))


class TestAlertmanager:
    def test_convert(self):
        alerts, source = AdapterRegistry().detect_and_convert(body(ALERTMANAGER_PAYLOAD))

        assert source == "alertmanager"
        assert len(alerts) == 2
        assert alerts[0].name == "KubePodCrashLooping"
        assert alerts[0].namespace == "payments"
        assert alerts[0].generator_url == "http://prometheus/graph"
        assert alerts[0].ends_at is None
        assert alerts[0].is_firing()
        assert not alerts[1].is_firing()

    def test_null_labels_tolerated(self):
        payload = {"groupKey": "g", "alerts": [{"status": "firing", "labels": None}]}
        alerts, _ = AdapterRegistry().detect_and_convert(body(payload))
        assert alerts[0].labels == {}


class TestGrafana:
    def test_detected_when_alertmanager_disabled(self):
        registry = AdapterRegistry(["grafana", "pagerduty"])
        alerts, source = registry.detect_and_convert(body(GRAFANA_PAYLOAD))

        assert source == "grafana"
        assert alerts[0].name == "HighLatency"
        assert alerts[0].summary == "p99 latency above 2s"

    def test_alertmanager_first_in_default_order(self):
        _, source = AdapterRegistry().detect_and_convert(body(GRAFANA_PAYLOAD))
        assert source == "alertmanager"


class TestPagerDuty:
    def test_convert_trigger_only(self):
        alerts, source = AdapterRegistry().detect_and_convert(body(PAGERDUTY_PAYLOAD))

        assert source == "pagerduty"
        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.namespace == "orders"
        assert alert.labels["pod"] == "orders-db-0"
        assert alert.labels["alertname"] == "Database connections exhausted"
        assert alert.labels["incident_id"] == "PD123"
        assert alert.labels["urgency"] == "high"
        assert alert.labels["service_name"] == "orders-db"
        assert "replicas" not in alert.labels
        assert alert.summary == "Database connections exhausted"
        assert alert.description == "Pool at 100%"
        assert alert.status == "firing"
        assert alert.starts_at.year == 2024

    def test_explicit_alertname_kept(self):
        payload = json.loads(json.dumps(PAGERDUTY_PAYLOAD))
        payload["messages"][0]["incident"]["custom_details"]["alertname"] = "DBPoolExhausted"

        alerts, _ = AdapterRegistry().detect_and_convert(body(payload))
        assert alerts[0].name == "DBPoolExhausted"
