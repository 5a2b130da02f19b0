"""
Core data models for kubetriage

Defines the normalized Alert, the fixed Category vocabulary, human
feedback records, knowledge base cases and in-flight analyses using
Pydantic for validation and serialization.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Category(str, Enum):
    """Closed set of alert categories produced by the classifier"""

    POD_CRASH = "pod-crash"
    POD_RESTART = "pod-restart"
    MEMORY = "memory"
    CPU = "cpu"
    DISK = "disk"
    NETWORK = "network"
    SERVICE = "service"
    HPA = "hpa"
    NODE = "node"
    DEPLOYMENT = "deployment"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: Optional[str]) -> "Category":
        """Map any string onto the closed set, falling back to UNKNOWN"""
        if isinstance(value, Category):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


class Alert(BaseModel):
    """Normalized alert, immutable once received"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    status: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    starts_at: Optional[datetime] = Field(default=None, alias="startsAt")
    ends_at: Optional[datetime] = Field(default=None, alias="endsAt")
    generator_url: str = Field(default="", alias="generatorURL")

    @property
    def name(self) -> str:
        return self.labels.get("alertname", "")

    @property
    def namespace(self) -> str:
        return self.labels.get("namespace", "")

    @property
    def severity(self) -> str:
        return self.labels.get("severity", "")

    @property
    def summary(self) -> str:
        return self.annotations.get("summary", "")

    @property
    def description(self) -> str:
        return self.annotations.get("description", "")

    def is_firing(self) -> bool:
        """Alerts without a status are treated as firing"""
        return self.status in ("firing", "")


class FeedbackRecord(BaseModel):
    """A durable human judgment on a past analysis"""

    timestamp: datetime = Field(default_factory=utcnow)
    alert_name: str = ""
    category: str = Category.UNKNOWN.value
    namespace: str = ""
    summary: str = ""
    analysis: str = ""
    is_correct: bool
    slack_thread: str = ""
    labels: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_alert(
        cls,
        alert: Alert,
        category: str,
        analysis: str,
        is_correct: bool,
        slack_thread: str = "",
    ) -> "FeedbackRecord":
        """Snapshot an alert with a verdict; ``category`` is stored as given"""
        return cls(
            alert_name=alert.name,
            category=category,
            namespace=alert.namespace,
            summary=alert.summary,
            analysis=analysis,
            is_correct=is_correct,
            slack_thread=slack_thread,
            labels=dict(alert.labels),
        )


class FeedbackStats(BaseModel):
    total: int = 0
    correct: int = 0
    incorrect: int = 0


class KnowledgeCase(BaseModel):
    """A validated past analysis stored with a vector embedding"""

    id: str = ""
    alert_name: str
    severity: str = ""
    category: str
    summary: str = ""
    namespace: str = ""
    pod_name: str = ""
    container_name: str = ""
    analysis: str
    debug_info: str = ""
    validated: bool = True
    embedding: Optional[list[float]] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_alert(
        cls, alert: Alert, category: str, analysis: str, debug_info: str = ""
    ) -> "KnowledgeCase":
        now = utcnow()
        return cls(
            id=str(uuid.uuid4()),
            alert_name=alert.name,
            severity=alert.severity,
            category=str(Category.coerce(category).value),
            summary=alert.summary,
            namespace=alert.namespace,
            pod_name=alert.labels.get("pod", ""),
            container_name=alert.labels.get("container", ""),
            analysis=analysis,
            debug_info=debug_info,
            validated=True,
            created_at=now,
            updated_at=now,
        )

    def search_text(self) -> str:
        """Text representation used to generate the case embedding"""
        return " ".join(
            [self.alert_name, self.severity, self.summary, self.namespace, self.analysis]
        )


class SimilarCase(BaseModel):
    """Knowledge case returned by a similarity search"""

    case: KnowledgeCase
    similarity: float


class PendingAnalysis(BaseModel):
    """An analysis posted to chat that is waiting for a reaction"""

    alert: Alert
    category: str
    analysis: str
    thread_ts: str
    message_ts: str
    created_at: datetime = Field(default_factory=utcnow)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or utcnow()) - self.created_at).total_seconds()
