"""Prometheus Alertmanager webhook (version 4)"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from ..models import Alert
from .base import SourceAdapter, register_source


# Zero timestamp Alertmanager sends for alerts that have not ended
ZERO_TIME_PREFIX = "0001-01-01"


def _timestamp(value: Optional[str]) -> Optional[str]:
    if not value or value.startswith(ZERO_TIME_PREFIX):
        return None
    return value


class AlertmanagerAlert(BaseModel):
    status: str = ""
    labels: Optional[dict[str, str]] = None
    annotations: Optional[dict[str, str]] = None
    startsAt: Optional[str] = None
    endsAt: Optional[str] = None
    generatorURL: str = ""
    fingerprint: str = ""

    def to_alert(self) -> Alert:
        return Alert.model_validate(
            {
                "status": self.status,
                "labels": self.labels or {},
                "annotations": self.annotations or {},
                "startsAt": _timestamp(self.startsAt),
                "endsAt": _timestamp(self.endsAt),
                "generatorURL": self.generatorURL,
            }
        )


class AlertmanagerWebhook(BaseModel):
    version: str = ""
    groupKey: str = ""
    status: str = ""
    receiver: str = ""
    alerts: list[AlertmanagerAlert] = Field(default_factory=list)


@register_source
class AlertmanagerAdapter(SourceAdapter):
    name = "alertmanager"

    def detect(self, payload: dict[str, Any]) -> bool:
        return bool(payload.get("groupKey")) or bool(payload.get("alerts"))

    def to_alerts(self, payload: dict[str, Any]) -> list[Alert]:
        webhook = AlertmanagerWebhook.model_validate(payload)
        return [alert.to_alert() for alert in webhook.alerts]
