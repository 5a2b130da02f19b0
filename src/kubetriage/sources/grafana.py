"""Grafana unified alerting webhook"""

from typing import Any

from pydantic import BaseModel, Field

from ..models import Alert
from .alertmanager import AlertmanagerAlert
from .base import SourceAdapter, register_source


class GrafanaAlert(AlertmanagerAlert):
    dashboardURL: str = ""
    panelURL: str = ""
    valueString: str = ""


class GrafanaWebhook(BaseModel):
    title: str = ""
    state: str = ""
    message: str = ""
    status: str = ""
    alerts: list[GrafanaAlert] = Field(default_factory=list)


@register_source
class GrafanaAdapter(SourceAdapter):
    name = "grafana"

    def detect(self, payload: dict[str, Any]) -> bool:
        return bool(payload.get("title")) or bool(payload.get("message"))

    def to_alerts(self, payload: dict[str, Any]) -> list[Alert]:
        webhook = GrafanaWebhook.model_validate(payload)
        return [alert.to_alert() for alert in webhook.alerts]
