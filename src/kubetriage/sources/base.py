"""
Webhook source adapters

Each adapter recognizes one alerting system's payload and converts it to
normalized alerts. ``AdapterRegistry.detect_and_convert`` tries the
enabled adapters in order; the first one that accepts the body wins.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import ValidationError

from ..errors import WebhookParseError
from ..models import Alert

logger = logging.getLogger(__name__)


class NotThisSource(ValueError):
    """Raised by an adapter when a payload is not in its format"""


class SourceAdapter(ABC):
    """Converts one vendor's webhook payload into alerts"""

    name: str = ""

    @abstractmethod
    def detect(self, payload: dict[str, Any]) -> bool:
        """Cheap structural check that the payload is this source's format"""

    @abstractmethod
    def to_alerts(self, payload: dict[str, Any]) -> list[Alert]:
        """Convert a detected payload"""

    def convert(self, payload: dict[str, Any]) -> list[Alert]:
        if not self.detect(payload):
            raise NotThisSource(f"not a {self.name} webhook")
        return self.to_alerts(payload)


_adapter_classes: dict[str, type[SourceAdapter]] = {}


def register_source(adapter_class: type[SourceAdapter]) -> type[SourceAdapter]:
    """Decorator for registering source adapter classes"""
    name = getattr(adapter_class, "name", "")
    if not name:
        raise ValueError(
            f"Source adapter {adapter_class.__name__} must have a 'name' attribute"
        )
    _adapter_classes[name] = adapter_class
    logger.debug(f"Registered source adapter: {name}")
    return adapter_class


def available_sources() -> list[str]:
    return list(_adapter_classes)


class AdapterRegistry:
    """
    Enabled source adapters, in detection order

    Args:
        enabled: Adapter names to try; all registered adapters when None
    """

    def __init__(self, enabled: Optional[list[str]] = None):
        names = enabled if enabled is not None else available_sources()
        self.adapters: list[SourceAdapter] = []
        for name in names:
            adapter_class = _adapter_classes.get(name)
            if adapter_class is None:
                logger.warning(f"Unknown webhook source '{name}', skipping")
                continue
            self.adapters.append(adapter_class())

    @property
    def enabled(self) -> list[str]:
        return [adapter.name for adapter in self.adapters]

    def detect_and_convert(self, raw: bytes) -> tuple[list[Alert], str]:
        """
        Parse a webhook body with the first adapter that accepts it

        Returns:
            The converted alerts and the name of the detected source

        Raises:
            WebhookParseError: The body is not JSON, or no enabled adapter
                accepted it
        """
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise WebhookParseError(f"Invalid JSON body: {e}") from e
        if not isinstance(payload, dict):
            raise WebhookParseError("Webhook body must be a JSON object")

        attempts: dict[str, str] = {}
        for adapter in self.adapters:
            try:
                alerts = adapter.convert(payload)
            except (NotThisSource, ValidationError) as e:
                attempts[adapter.name] = str(e)
                continue
            logger.info(f"Parsed {len(alerts)} alerts from {adapter.name} webhook")
            return alerts, adapter.name

        raise WebhookParseError(
            f"Failed to parse webhook from any enabled source: {attempts}", attempts
        )
