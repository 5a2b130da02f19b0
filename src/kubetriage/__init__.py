"""
kubetriage - AI triage agent for Kubernetes alerts

Receives alert webhooks, classifies each alert, gathers cluster
diagnostics and streams a root cause analysis into a Slack thread.
Reactions on the analysis are recorded as feedback that shapes future
prompts and fills a vector knowledge base of validated cases.
"""

__version__ = "0.1.0"

from .config import TriageConfig
from .models import Alert, Category, FeedbackRecord, KnowledgeCase
from .pipeline import AlertPipeline, build_pipeline

__all__ = [
    "Alert",
    "AlertPipeline",
    "Category",
    "FeedbackRecord",
    "KnowledgeCase",
    "TriageConfig",
    "build_pipeline",
    "__version__",
]
