"""
Webhook source adapters

Importing this package registers the built-in adapters.
"""

from . import alertmanager, grafana, pagerduty  # noqa: F401
from .base import (
    AdapterRegistry,
    NotThisSource,
    SourceAdapter,
    available_sources,
    register_source,
)

__all__ = [
    "AdapterRegistry",
    "NotThisSource",
    "SourceAdapter",
    "available_sources",
    "register_source",
]
