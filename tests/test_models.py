"""
Test suite for core data models

Tests Alert accessors, category coercion and the record constructors.
"""

from datetime import timedelta

from kubetriage.models import (
    Alert,
    Category,
    FeedbackRecord,
    KnowledgeCase,
    PendingAnalysis,
    utcnow,
)


class TestAlert:
    """Test Alert model"""

    def test_accessors(self, sample_alert):
        assert sample_alert.name == "KubePodCrashLooping"
        assert sample_alert.namespace == "payments"
        assert sample_alert.severity == "critical"
        assert sample_alert.summary.startswith("Pod payments/")
        assert sample_alert.starts_at.year == 2024

    def test_wire_aliases(self):
        alert = Alert.model_validate(
            {
                "status": "firing",
                "labels": {"alertname": "X"},
                "startsAt": "2024-01-01T00:00:00Z",
                "generatorURL": "http://prometheus/graph",
            }
        )
        assert alert.generator_url == "http://prometheus/graph"
        assert alert.starts_at is not None

    def test_missing_labels_are_empty(self):
        alert = Alert()
        assert alert.name == ""
        assert alert.namespace == ""
        assert alert.summary == ""

    def test_is_firing(self):
        assert Alert(status="firing").is_firing()
        assert Alert(status="").is_firing()
        assert not Alert(status="resolved").is_firing()


class TestCategory:
    """Test category coercion"""

    def test_known_values(self):
        assert Category.coerce("memory") is Category.MEMORY
        assert Category.coerce(" Pod-Crash ") is Category.POD_CRASH

    def test_unknown_values(self):
        assert Category.coerce("database") is Category.UNKNOWN
        assert Category.coerce(None) is Category.UNKNOWN
        assert Category.coerce("") is Category.UNKNOWN

    def test_category_passthrough(self):
        assert Category.coerce(Category.HPA) is Category.HPA


class TestFeedbackRecord:
    """Test FeedbackRecord construction"""

    def test_from_alert(self, sample_alert):
        record = FeedbackRecord.from_alert(
            sample_alert, "pod-crash", "OOM in init container", True, slack_thread="1.2"
        )
        assert record.alert_name == "KubePodCrashLooping"
        assert record.namespace == "payments"
        assert record.category == "pod-crash"
        assert record.is_correct is True
        assert record.slack_thread == "1.2"
        assert record.labels["pod"] == "api-7d9f8b-x2x4q"

    def test_category_stored_as_given(self, sample_alert):
        record = FeedbackRecord.from_alert(sample_alert, "net", "text", False)
        assert record.category == "net"

    def test_json_roundtrip(self, sample_alert):
        record = FeedbackRecord.from_alert(sample_alert, "memory", "text", False)
        restored = FeedbackRecord.model_validate_json(record.model_dump_json())
        assert restored == record


class TestKnowledgeCase:
    """Test KnowledgeCase construction"""

    def test_from_alert_assigns_id(self, sample_alert):
        a = KnowledgeCase.from_alert(sample_alert, "pod-crash", "analysis")
        b = KnowledgeCase.from_alert(sample_alert, "pod-crash", "analysis")
        assert a.id and b.id and a.id != b.id
        assert a.pod_name == "api-7d9f8b-x2x4q"
        assert a.validated is True

    def test_search_text(self, sample_alert):
        case = KnowledgeCase.from_alert(sample_alert, "pod-crash", "bad config")
        text = case.search_text()
        assert "KubePodCrashLooping" in text
        assert "critical" in text
        assert "bad config" in text


class TestPendingAnalysis:
    """Test PendingAnalysis age"""

    def test_age_seconds(self, sample_alert):
        now = utcnow()
        pending = PendingAnalysis(
            alert=sample_alert,
            category="pod-crash",
            analysis="text",
            thread_ts="1.0",
            message_ts="2.0",
            created_at=now - timedelta(hours=2),
        )
        assert 7199 < pending.age_seconds(now) <= 7200
