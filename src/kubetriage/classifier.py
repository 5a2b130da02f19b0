"""
Alert categorization

One LLM call per alert, normalized onto the closed Category set.
"""

import logging
from typing import Optional, Protocol

from .models import Alert, Category
from .observability import get_metrics, set_attribute, trace_async

logger = logging.getLogger(__name__)

_STRIP_CHARS = " \t\r\n\"'`*.,;!()[]{}<>"


class CategorizingProvider(Protocol):
    async def categorize(self, alert: Alert) -> str: ...


def normalize_category(raw: Optional[str]) -> Category:
    """
    Map a free-form model reply onto the closed category set

    Keeps the first line, drops anything after a colon and surrounding
    punctuation, then validates. Anything unrecognized becomes UNKNOWN.
    """
    text = (raw or "").strip().lower()
    text = text.split("\n", 1)[0]
    text = text.split(":", 1)[0]
    text = text.strip(_STRIP_CHARS)

    try:
        return Category(text)
    except ValueError:
        logger.warning(f"Model returned invalid category {raw!r}, using 'unknown'")
        return Category.UNKNOWN


class CategoryClassifier:
    """Classifies alerts through the configured LLM provider"""

    def __init__(self, provider: CategorizingProvider):
        self.provider = provider

    @trace_async("classifier.categorize")
    async def categorize(self, alert: Alert) -> Category:
        """Provider errors propagate; the caller decides the fallback"""
        raw = await self.provider.categorize(alert)
        category = normalize_category(raw)

        set_attribute("alert.category", category.value)
        metrics = get_metrics()
        if metrics:
            metrics.record_alert(category.value, "categorized")

        logger.info(f"Alert {alert.name} categorized as: {category.value}")
        return category
