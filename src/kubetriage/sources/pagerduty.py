"""
PagerDuty v2 webhook

Only ``incident.trigger`` messages become alerts. Kubernetes coordinates
are read from the incident's custom details.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from ..models import Alert
from .base import SourceAdapter, register_source

# custom_details keys mapped onto the standard alert labels
_LABEL_ALIASES = {
    "namespace": "namespace",
    "k8s_namespace": "namespace",
    "kubernetes_namespace": "namespace",
    "pod": "pod",
    "pod_name": "pod",
    "k8s_pod": "pod",
    "service": "service",
    "service_name": "service",
    "k8s_service": "service",
    "node": "node",
    "node_name": "node",
    "k8s_node": "node",
}


class PagerDutyService(BaseModel):
    id: str = ""
    name: str = ""


class PagerDutyIncident(BaseModel):
    id: str = ""
    title: str = ""
    description: str = ""
    created_at: Optional[str] = None
    status: str = ""
    incident_key: str = ""
    urgency: str = ""
    service: PagerDutyService = Field(default_factory=PagerDutyService)
    custom_details: Optional[dict[str, Any]] = None


class PagerDutyMessage(BaseModel):
    id: str = ""
    event: str = ""
    incident: PagerDutyIncident = Field(default_factory=PagerDutyIncident)


class PagerDutyWebhook(BaseModel):
    messages: list[PagerDutyMessage] = Field(default_factory=list)


def incident_to_alert(incident: PagerDutyIncident) -> Alert:
    labels: dict[str, str] = {}
    for key, value in (incident.custom_details or {}).items():
        if isinstance(value, str):
            labels[_LABEL_ALIASES.get(key.lower(), key)] = value

    labels.setdefault("alertname", incident.title)
    labels["incident_id"] = incident.id
    labels["incident_key"] = incident.incident_key
    labels["urgency"] = incident.urgency
    labels["service_name"] = incident.service.name

    return Alert.model_validate(
        {
            "status": "resolved" if incident.status == "resolved" else "firing",
            "labels": labels,
            "annotations": {
                "summary": incident.title,
                "description": incident.description,
            },
            "startsAt": incident.created_at,
        }
    )


@register_source
class PagerDutyAdapter(SourceAdapter):
    name = "pagerduty"

    def detect(self, payload: dict[str, Any]) -> bool:
        return bool(payload.get("messages"))

    def to_alerts(self, payload: dict[str, Any]) -> list[Alert]:
        webhook = PagerDutyWebhook.model_validate(payload)
        return [
            incident_to_alert(message.incident)
            for message in webhook.messages
            if message.event == "incident.trigger"
        ]
