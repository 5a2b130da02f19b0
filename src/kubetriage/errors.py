"""
Exception hierarchy for kubetriage

Library code raises these; the pipeline and the reconciler catch them at
stage boundaries and degrade instead of aborting.
"""

from typing import Optional


class TriageError(Exception):
    """Base class for all kubetriage errors"""


class ConfigurationError(TriageError):
    """Invalid or inconsistent configuration detected at startup"""


class WebhookParseError(TriageError):
    """No enabled source adapter accepted the webhook body"""

    def __init__(self, message: str, attempts: Optional[dict[str, str]] = None):
        super().__init__(message)
        self.attempts = attempts or {}


class FeedbackStoreError(TriageError):
    """Feedback log could not be opened or written"""


class KnowledgeBaseError(TriageError):
    """Knowledge base storage or search failed"""


class NotifierError(TriageError):
    """Chat backend rejected a request"""


class CollectorError(TriageError):
    """Diagnostics could not be gathered from the cluster"""


class AnalysisStreamError(TriageError):
    """LLM stream failed after delivering ``partial_text``"""

    def __init__(self, message: str, partial_text: str = ""):
        super().__init__(message)
        self.partial_text = partial_text
