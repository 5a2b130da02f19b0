"""
Alert pipeline

Orchestrates the handling of one alert: announce, classify, recall
similar cases, collect diagnostics, stream the analysis into the alert
thread and register the result for reaction feedback. Every external
call degrades on failure; an alert is dropped only when it has no
namespace or waits past the configured queue timeout.
"""

import asyncio
import logging
from contextlib import nullcontext
from typing import Optional, Protocol

from .analysis import AnalysisEngine
from .classifier import CategoryClassifier
from .collector import DiagnosticsCollector, create_collector
from .concurrency import AsyncSemaphore
from .config import TriageConfig, get_config
from .errors import AnalysisStreamError
from .feedback import FeedbackStore
from .knowledge import KnowledgeBase, create_knowledge_base, similarity_block
from .llm_client import LLMProvider, LLMRouter
from .models import (
    Alert,
    Category,
    FeedbackRecord,
    KnowledgeCase,
    PendingAnalysis,
    SimilarCase,
)
from .notifier import SlackNotifier
from .observability import (
    add_event,
    get_metrics,
    set_attribute,
    trace_async,
    trace_operation,
)
from .prompts import PromptManager
from .registry import PendingRegistry
from .streamer import NotificationStreamer

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def post_alert(self, alert: Alert) -> Optional[str]: ...

    async def post_or_update(
        self, thread_ts: Optional[str], text: str, message_ts: Optional[str] = None
    ) -> Optional[str]: ...

    def permalink(self, thread_ts: str) -> Optional[str]: ...


class AlertPipeline:
    """
    Main alert pipeline orchestrator

    Args:
        classifier: Category classifier
        collector: Diagnostics collector
        analysis_engine: Streaming analysis engine
        notifier: Chat notifier
        feedback_store: Durable feedback log
        registry: Analyses waiting for a reaction
        knowledge_base: Optional vector memory of validated cases
        feedback_limit: Past feedback records injected into the prompt
        update_every: Chunks between streamed message updates
        semaphore: Bound on concurrently processed alerts
        queue_timeout: Seconds an alert waits for a permit before it is
            dropped, None to wait indefinitely
    """

    def __init__(
        self,
        classifier: CategoryClassifier,
        collector: DiagnosticsCollector,
        analysis_engine: AnalysisEngine,
        notifier: Notifier,
        feedback_store: FeedbackStore,
        registry: Optional[PendingRegistry] = None,
        knowledge_base: Optional[KnowledgeBase] = None,
        feedback_limit: int = 1,
        update_every: int = 10,
        semaphore: Optional[AsyncSemaphore] = None,
        queue_timeout: Optional[float] = None,
    ):
        self.classifier = classifier
        self.collector = collector
        self.analysis_engine = analysis_engine
        self.notifier = notifier
        self.feedback_store = feedback_store
        self.registry = registry if registry is not None else PendingRegistry()
        self.knowledge_base = knowledge_base
        self.feedback_limit = feedback_limit
        self.update_every = update_every
        self.semaphore = semaphore or AsyncSemaphore(0, name="alert_processing")
        self.queue_timeout = queue_timeout

    async def submit(self, alert: Alert) -> None:
        """Process an alert once a concurrency permit is available"""
        try:
            async with self.semaphore.acquire(timeout=self.queue_timeout):
                await self.process_alert(alert)
        except asyncio.TimeoutError:
            logger.warning(
                f"Dropping alert {alert.name or '<unnamed>'}: no processing slot "
                f"within {self.queue_timeout}s"
            )
            self._stage_error("queue")
            metrics = get_metrics()
            if metrics:
                metrics.record_alert("none", "dropped")

    @trace_async("pipeline.process_alert")
    async def process_alert(self, alert: Alert) -> Optional[PendingAnalysis]:
        """
        Run one alert through the pipeline

        Returns:
            The registered pending analysis, None when the alert was
            dropped or no chat message exists to collect reactions on
        """
        metrics = get_metrics()
        if not alert.namespace:
            logger.warning(f"Dropping alert {alert.name or '<unnamed>'}: no namespace label")
            if metrics:
                metrics.record_alert("none", "dropped")
            return None

        set_attribute("alert.name", alert.name)
        set_attribute("alert.namespace", alert.namespace)
        logger.info(f"Processing alert {alert.name} in namespace {alert.namespace}")

        thread_ts = await self._announce(alert)
        category = await self._categorize(alert)
        set_attribute("alert.category", category.value)

        timer = metrics.time_alert(category.value) if metrics else nullcontext()
        with timer:
            similar = await self._find_similar(alert)
            debug_info = await self._collect(alert, category)
            past_feedback = self._relevant_feedback(alert, category)

            if similar:
                debug_info += similarity_block(similar)

            streamer = NotificationStreamer(self.notifier, thread_ts, self.update_every)
            analysis, outcome = await self._analyze(debug_info, past_feedback, streamer)
            message_ts = await streamer.finalize(analysis)

        if metrics:
            metrics.record_alert(category.value, outcome)

        if not (thread_ts and message_ts):
            logger.info(f"Analysis for {alert.name} not posted, skipping feedback tracking")
            return None

        pending = PendingAnalysis(
            alert=alert,
            category=category.value,
            analysis=analysis,
            thread_ts=thread_ts,
            message_ts=message_ts,
        )
        self.registry.insert(pending)
        if metrics:
            metrics.set_pending_analyses(len(self.registry))
        add_event("analysis_registered", {"message_ts": message_ts})
        logger.info(f"Analysis for {alert.name} awaiting feedback on {message_ts}")
        return pending

    async def _announce(self, alert: Alert) -> Optional[str]:
        try:
            return await self.notifier.post_alert(alert)
        except Exception as e:
            logger.error(f"Failed to post alert {alert.name} to chat: {e}")
            self._stage_error("notify")
            return None

    async def _categorize(self, alert: Alert) -> Category:
        try:
            return Category.coerce(await self.classifier.categorize(alert))
        except Exception as e:
            logger.error(f"Categorization failed for {alert.name}: {e}")
            self._stage_error("categorize")
            return Category.UNKNOWN

    async def _find_similar(self, alert: Alert) -> list[SimilarCase]:
        if self.knowledge_base is None:
            return []

        search_text = f"{alert.name} {alert.severity} {alert.summary}"
        try:
            cases = await self.knowledge_base.find_similar(search_text)
        except Exception as e:
            logger.error(f"Knowledge base search failed: {e}")
            self._stage_error("knowledge_search")
            return []

        if cases:
            logger.info(
                f"Found {len(cases)} similar cases for {alert.name} "
                f"(top similarity {cases[0].similarity:.2f})"
            )
        return cases

    async def _collect(self, alert: Alert, category: Category) -> str:
        with trace_operation("pipeline.collect", {"alert.category": category.value}):
            try:
                return await self.collector.gather_context(alert, category)
            except Exception as e:
                logger.error(f"Diagnostics collection failed for {alert.name}: {e}")
                self._stage_error("collect")
                return ""

    def _relevant_feedback(self, alert: Alert, category: Category) -> list[FeedbackRecord]:
        records = self.feedback_store.get_relevant_feedback(
            category.value, alert.name, self.feedback_limit
        )
        linked = []
        for record in records:
            link = self.notifier.permalink(record.slack_thread) if record.slack_thread else None
            if link:
                record = record.model_copy(
                    update={"summary": f"{record.summary} (See: {link})"}
                )
            linked.append(record)
        return linked

    async def _analyze(
        self,
        debug_info: str,
        past_feedback: list[FeedbackRecord],
        streamer: NotificationStreamer,
    ) -> tuple[str, str]:
        try:
            text = await self.analysis_engine.stream_analyze(
                debug_info, past_feedback, streamer.on_chunk
            )
            return text, "analyzed"
        except AnalysisStreamError as e:
            if e.partial_text:
                return e.partial_text, "partial"
            return f"Error: {e}", "failed"

    def _stage_error(self, stage: str) -> None:
        metrics = get_metrics()
        if metrics:
            metrics.record_stage_error(stage)

    @trace_async("pipeline.record_manual_feedback")
    async def record_manual_feedback(
        self,
        alert: Alert,
        category: str,
        analysis: str,
        slack_thread: str,
        is_correct: bool,
    ) -> FeedbackRecord:
        """
        Record feedback submitted over HTTP

        Raises:
            FeedbackStoreError: The record could not be persisted
        """
        record = FeedbackRecord.from_alert(
            alert, category, analysis, is_correct, slack_thread=slack_thread
        )
        await asyncio.to_thread(self.feedback_store.record, record)

        metrics = get_metrics()
        if metrics:
            metrics.record_feedback(is_correct, "manual")

        if is_correct and self.knowledge_base is not None:
            try:
                await self.knowledge_base.store(
                    KnowledgeCase.from_alert(alert, category, analysis)
                )
            except Exception as e:
                logger.warning(f"Failed to store manual feedback case: {e}")

        return record

    async def close(self) -> None:
        if self.knowledge_base is not None:
            await self.knowledge_base.close()


async def build_pipeline(config: Optional[TriageConfig] = None) -> AlertPipeline:
    """
    Assemble a pipeline from configuration

    Raises:
        FeedbackStoreError: The feedback log cannot be opened
        CollectorError: The cluster API is unreachable
        ConfigurationError: Embedding and storage dimensions differ
    """
    config = config or get_config()

    feedback_store = FeedbackStore(config.feedback.path)
    collector = create_collector(config.kubernetes)

    prompt_manager = PromptManager(config.prompts.prompts_dir)
    provider = LLMProvider(LLMRouter(config).get_client(), config.prompts, prompt_manager)
    engine = AnalysisEngine(
        provider,
        custom_template=config.prompts.analysis_template,
        template_key=config.prompts.analysis_template_key,
        prompt_manager=prompt_manager,
    )

    notifier = SlackNotifier(
        bot_token=config.slack.bot_token,
        channel_id=config.slack.channel_id,
        workspace_id=config.slack.workspace_id,
    )
    await notifier.validate()

    knowledge_base = await create_knowledge_base(config.knowledge_base)

    logger.info(
        f"Pipeline ready: llm={provider.name}, "
        f"knowledge_base={'on' if knowledge_base else 'off'}, "
        f"feedback_records={len(feedback_store)}"
    )
    return AlertPipeline(
        classifier=CategoryClassifier(provider),
        collector=collector,
        analysis_engine=engine,
        notifier=notifier,
        feedback_store=feedback_store,
        knowledge_base=knowledge_base,
        feedback_limit=config.feedback.relevant_limit,
        update_every=config.slack.update_every_chunks,
        semaphore=AsyncSemaphore(
            config.performance.max_concurrent_alerts, name="alert_processing"
        ),
        queue_timeout=config.performance.alert_queue_timeout,
    )
