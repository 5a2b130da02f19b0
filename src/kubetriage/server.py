"""
HTTP surface

FastAPI application accepting alert webhooks and manual feedback. Alerts
are acknowledged with 202 and processed in background tasks.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from . import __version__
from .config import TriageConfig, get_config
from .errors import FeedbackStoreError, WebhookParseError
from .models import Alert
from .observability import (
    get_metrics,
    initialize_observability,
    is_observability_initialized,
    shutdown_observability,
)
from .pipeline import AlertPipeline, build_pipeline
from .reconciler import FeedbackReconciler
from .sources import AdapterRegistry

logger = logging.getLogger(__name__)


class FeedbackRequest(BaseModel):
    """Body of POST /feedback"""

    model_config = ConfigDict(populate_by_name=True)

    alert_name: str = Field(alias="alertName", min_length=1)
    category: str
    analysis: str
    is_correct: bool = Field(alias="isCorrect")
    slack_thread: str = Field(default="", alias="slackThread")
    namespace: str = ""
    summary: str = ""
    labels: dict[str, str] = Field(default_factory=dict)

    def to_alert(self) -> Alert:
        labels = {**self.labels, "alertname": self.alert_name}
        if self.namespace:
            labels["namespace"] = self.namespace
        annotations = {"summary": self.summary} if self.summary else {}
        return Alert(labels=labels, annotations=annotations)


def _bearer_token(request: Request) -> None:
    """Reject the request unless it carries the configured bearer token"""
    expected = request.app.state.config.server.webhook_auth_token
    if not expected:
        return

    header = request.headers.get("Authorization")
    if not header:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    scheme, _, token = header.partition(" ")
    if scheme != "Bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid Authorization header format")
    if token != expected:
        raise HTTPException(status_code=401, detail="Invalid token")


def _schedule(app: FastAPI, pipeline: AlertPipeline, alert: Alert) -> None:
    tasks: set[asyncio.Task] = app.state.tasks
    task = asyncio.create_task(pipeline.submit(alert), name=f"alert-{alert.name}")
    tasks.add(task)
    task.add_done_callback(_task_done(tasks))


def _task_done(tasks: set[asyncio.Task]):
    def callback(task: asyncio.Task) -> None:
        tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Alert task {task.get_name()} failed: {task.exception()}")

    return callback


def create_app(
    config: Optional[TriageConfig] = None,
    pipeline: Optional[AlertPipeline] = None,
) -> FastAPI:
    """
    Build the FastAPI application

    Args:
        config: Configuration, the global one when omitted
        pipeline: Prebuilt pipeline; built from ``config`` at startup when omitted
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not is_observability_initialized():
            initialize_observability(config.telemetry)

        if app.state.pipeline is None:
            app.state.pipeline = await build_pipeline(config)
        notifier = app.state.pipeline.notifier

        reconciler: Optional[FeedbackReconciler] = None
        if getattr(notifier, "supports_reactions", False):
            reconciler = FeedbackReconciler(
                app.state.pipeline.registry,
                notifier,
                app.state.pipeline.feedback_store,
                app.state.pipeline.knowledge_base,
                interval=config.feedback.poll_interval,
                max_age=config.feedback.pending_ttl_hours * 3600,
            )
            reconciler.start()
        else:
            logger.warning("Chat reactions unavailable, feedback loop not started")
        app.state.reconciler = reconciler

        logger.info(
            f"kubetriage {__version__} listening for webhooks "
            f"(sources: {', '.join(app.state.sources.enabled)})"
        )
        yield

        logger.info("Shutting down")
        if reconciler is not None:
            await reconciler.stop()
        if app.state.tasks:
            await asyncio.gather(*app.state.tasks, return_exceptions=True)
        await app.state.pipeline.close()
        shutdown_observability()

    app = FastAPI(
        title="kubetriage",
        version=__version__,
        description="Kubernetes alert triage with streamed root cause analysis",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.sources = AdapterRegistry(config.sources.enabled)
    app.state.tasks = set()
    app.state.pipeline = pipeline

    @app.post("/webhook", status_code=202, dependencies=[Depends(_bearer_token)])
    async def webhook(request: Request) -> dict[str, Any]:
        """Accept an alert webhook from any enabled source"""
        metrics = get_metrics()
        body = await request.body()
        try:
            alerts, source = app.state.sources.detect_and_convert(body)
        except WebhookParseError as e:
            logger.warning(f"Rejected webhook: {e}")
            if metrics:
                metrics.record_webhook("unknown", "rejected")
            raise HTTPException(status_code=400, detail=str(e)) from e

        if metrics:
            metrics.record_webhook(source, "accepted")

        firing = [alert for alert in alerts if alert.is_firing()]
        for alert in firing:
            _schedule(app, app.state.pipeline, alert)

        logger.info(
            f"Accepted {source} webhook: {len(alerts)} alerts, {len(firing)} firing"
        )
        return {"status": "accepted", "source": source, "alerts": len(alerts)}

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.post("/feedback", status_code=201, dependencies=[Depends(_bearer_token)])
    async def feedback(body: FeedbackRequest) -> dict[str, str]:
        """Record feedback submitted outside of chat reactions"""
        try:
            await app.state.pipeline.record_manual_feedback(
                body.to_alert(),
                body.category,
                body.analysis,
                body.slack_thread,
                body.is_correct,
            )
        except FeedbackStoreError as e:
            logger.error(f"Failed to record manual feedback: {e}")
            raise HTTPException(status_code=500, detail=str(e)) from e
        return {"status": "recorded"}

    @app.get("/feedback/stats")
    async def feedback_stats() -> dict[str, int]:
        return app.state.pipeline.feedback_store.get_stats().model_dump()

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics() -> str:
        collector = get_metrics()
        if collector is None:
            raise HTTPException(status_code=404, detail="Metrics are disabled")
        return collector.get_metrics_text()

    return app
