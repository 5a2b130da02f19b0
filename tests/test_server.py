"""
Test suite for the HTTP surface

Uses the FastAPI TestClient; the lifespan runs, so background alert tasks
are awaited when the client closes.
"""

import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from kubetriage.analysis import AnalysisEngine
from kubetriage.classifier import CategoryClassifier
from kubetriage.collector import AlertOnlyCollector
from kubetriage.errors import FeedbackStoreError
from kubetriage.pipeline import AlertPipeline
from kubetriage.server import create_app

from conftest import FakeNotifier, FakeProvider
from test_sources import ALERTMANAGER_PAYLOAD, PAGERDUTY_PAYLOAD


@pytest.fixture
def notifier():
    notifier = FakeNotifier()
    notifier.supports_reactions = False
    return notifier


@pytest.fixture
def pipeline(notifier, feedback_store):
    provider = FakeProvider(chunks=["Root ", "cause"])
    return AlertPipeline(
        classifier=CategoryClassifier(provider),
        collector=AlertOnlyCollector(),
        analysis_engine=AnalysisEngine(provider),
        notifier=notifier,
        feedback_store=feedback_store,
    )


@pytest.fixture
def app(test_config, pipeline):
    return create_app(test_config, pipeline)


class TestWebhook:
    """Test POST /webhook"""

    def test_alertmanager_accepted(self, app, pipeline, notifier):
        with TestClient(app) as client:
            response = client.post("/webhook", content=json.dumps(ALERTMANAGER_PAYLOAD))

            assert response.status_code == 202
            assert response.json() == {
                "status": "accepted",
                "source": "alertmanager",
                "alerts": 2,
            }

        # only the firing alert is processed
        assert [a.name for a in notifier.posted_alerts] == ["KubePodCrashLooping"]
        assert len(pipeline.registry) == 1

    def test_pagerduty_accepted(self, app):
        with TestClient(app) as client:
            response = client.post("/webhook", content=json.dumps(PAGERDUTY_PAYLOAD))
        assert response.status_code == 202
        assert response.json()["source"] == "pagerduty"

    def test_unrecognized_body(self, app):
        with TestClient(app) as client:
            response = client.post("/webhook", content=b'{"unexpected": true}')
        assert response.status_code == 400

    def test_invalid_json(self, app):
        with TestClient(app) as client:
            response = client.post("/webhook", content=b"not json")
        assert response.status_code == 400


class TestAuthentication:
    """Test the optional bearer token"""

    @pytest.fixture
    def secured_app(self, test_config, pipeline):
        test_config.server.webhook_auth_token = "s3cret"
        return create_app(test_config, pipeline)

    @pytest.mark.parametrize(
        "headers,detail",
        [
            ({}, "Missing Authorization header"),
            ({"Authorization": "Token s3cret"}, "Invalid Authorization header format"),
            ({"Authorization": "Bearer"}, "Invalid Authorization header format"),
            ({"Authorization": "Bearer wrong"}, "Invalid token"),
        ],
    )
    def test_rejected(self, secured_app, headers, detail):
        with TestClient(secured_app) as client:
            response = client.post(
                "/webhook", content=json.dumps(ALERTMANAGER_PAYLOAD), headers=headers
            )
        assert response.status_code == 401
        assert response.json()["detail"] == detail

    def test_accepted_with_token(self, secured_app):
        with TestClient(secured_app) as client:
            response = client.post(
                "/webhook",
                content=json.dumps(ALERTMANAGER_PAYLOAD),
                headers={"Authorization": "Bearer s3cret"},
            )
        assert response.status_code == 202

    def test_health_is_open(self, secured_app):
        with TestClient(secured_app) as client:
            assert client.get("/health").status_code == 200


class TestFeedbackEndpoints:
    """Test POST /feedback and GET /feedback/stats"""

    def test_record_feedback(self, app, feedback_store):
        with TestClient(app) as client:
            response = client.post(
                "/feedback",
                json={
                    "alertName": "KubePodCrashLooping",
                    "category": "pod-crash",
                    "analysis": "Bad image tag",
                    "isCorrect": True,
                    "slackThread": "1700000000.000100",
                    "namespace": "payments",
                },
            )
            stats = client.get("/feedback/stats").json()

        assert response.status_code == 201
        assert response.json() == {"status": "recorded"}
        assert stats == {"total": 1, "correct": 1, "incorrect": 0}

        record = feedback_store.get_relevant_feedback("pod-crash", "KubePodCrashLooping")[0]
        assert record.namespace == "payments"
        assert record.slack_thread == "1700000000.000100"

    def test_validation_error(self, app):
        with TestClient(app) as client:
            response = client.post("/feedback", json={"category": "memory"})
        assert response.status_code == 422

    def test_free_form_category_recorded_verbatim(self, app, feedback_store):
        with TestClient(app) as client:
            response = client.post(
                "/feedback",
                json={
                    "alertName": "CoreDNSErrors",
                    "category": "net",
                    "analysis": "Upstream resolver timing out",
                    "isCorrect": True,
                },
            )

        assert response.status_code == 201
        record = feedback_store.get_relevant_feedback("net", "CoreDNSErrors")[0]
        assert record.category == "net"

    def test_store_failure(self, app, pipeline):
        pipeline.feedback_store = MagicMock()
        pipeline.feedback_store.record.side_effect = FeedbackStoreError("disk full")

        with TestClient(app) as client:
            response = client.post(
                "/feedback",
                json={
                    "alertName": "A",
                    "category": "memory",
                    "analysis": "x",
                    "isCorrect": False,
                },
            )
        assert response.status_code == 500


class TestOperationalEndpoints:
    def test_health(self, app):
        with TestClient(app) as client:
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_metrics_disabled(self, app):
        with TestClient(app) as client:
            assert client.get("/metrics").status_code == 404

    def test_metrics_enabled(self, test_config, pipeline):
        test_config.telemetry.enabled = True
        test_config.telemetry.tracing.enabled = False
        test_config.telemetry.metrics.standalone_port = None

        with TestClient(create_app(test_config, pipeline)) as client:
            client.post("/webhook", content=json.dumps(ALERTMANAGER_PAYLOAD))
            response = client.get("/metrics")

        assert response.status_code == 200
        assert "kubetriage_webhooks_total" in response.text
        assert 'source="alertmanager"' in response.text

    def test_reconciler_started_when_reactions_supported(self, test_config, pipeline, notifier):
        notifier.supports_reactions = True
        app = create_app(test_config, pipeline)

        with TestClient(app):
            assert app.state.reconciler is not None
            assert app.state.reconciler.running
