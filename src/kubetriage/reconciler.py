"""
Feedback reconciliation loop

Polls reactions on pending analyses, turns ✅/❌ into feedback records and
feeds correct analyses into the knowledge base.
"""

import asyncio
import logging
from typing import Iterable, Optional, Protocol

from .feedback import FeedbackStore
from .knowledge import KnowledgeBase
from .models import FeedbackRecord, KnowledgeCase, PendingAnalysis
from .observability import get_metrics, trace_operation
from .registry import PendingRegistry

logger = logging.getLogger(__name__)

POSITIVE_REACTIONS = frozenset({"white_check_mark", "coche_blanche", "heavy_check_mark"})
NEGATIVE_REACTIONS = frozenset({"x", "cross", "negative_squared_cross_mark"})

THANK_YOU_TEMPLATE = (
    "_Thank you! Your feedback ({mark}) has been recorded and will help "
    "improve future analyses._"
)


class ReactionSource(Protocol):
    async def get_reactions(self, message_ts: str) -> list[str]: ...

    async def reply_to_thread(self, thread_ts: str, text: str) -> None: ...


def resolve_reaction(names: Iterable[str]) -> Optional[bool]:
    """First recognized reaction wins; None while no verdict is present"""
    for name in names:
        if name in POSITIVE_REACTIONS:
            return True
        if name in NEGATIVE_REACTIONS:
            return False
    return None


class FeedbackReconciler:
    """
    Background task resolving pending analyses from chat reactions

    Args:
        registry: Pending analyses awaiting a reaction
        notifier: Source of reactions and thread replies
        feedback_store: Destination of resolved feedback
        knowledge_base: Optional destination of correct analyses
        interval: Seconds between ticks
        max_age: Seconds before a pending analysis is dropped unresolved
    """

    def __init__(
        self,
        registry: PendingRegistry,
        notifier: ReactionSource,
        feedback_store: FeedbackStore,
        knowledge_base: Optional[KnowledgeBase] = None,
        interval: float = 30.0,
        max_age: float = 24 * 3600,
    ):
        self.registry = registry
        self.notifier = notifier
        self.feedback_store = feedback_store
        self.knowledge_base = knowledge_base
        self.interval = interval
        self.max_age = max_age
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="feedback-reconciler")
        logger.info(f"Feedback reconciler started (interval={self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Feedback reconciler stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Feedback reconciliation tick failed: {e}")

    async def run_once(self) -> int:
        """
        One reconciliation pass

        Returns:
            Number of analyses resolved in this pass
        """
        pending = self.registry.snapshot_and_expire(self.max_age)
        metrics = get_metrics()
        if metrics:
            metrics.set_pending_analyses(len(pending))

        resolved = 0
        for entry in pending:
            try:
                names = await self.notifier.get_reactions(entry.message_ts)
            except Exception as e:
                logger.warning(f"Failed to read reactions on {entry.message_ts}: {e}")
                continue

            verdict = resolve_reaction(names)
            if verdict is None:
                continue

            if await self._resolve(entry, verdict):
                resolved += 1

        return resolved

    async def _resolve(self, entry: PendingAnalysis, is_correct: bool) -> bool:
        with trace_operation(
            "reconciler.resolve",
            {"alert.name": entry.alert.name, "feedback.correct": is_correct},
        ):
            record = FeedbackRecord.from_alert(
                entry.alert,
                entry.category,
                entry.analysis,
                is_correct,
                slack_thread=entry.thread_ts,
            )
            try:
                await asyncio.to_thread(self.feedback_store.record, record)
            except Exception as e:
                # Kept pending so the next tick retries
                logger.error(f"Failed to record feedback for {entry.alert.name}: {e}")
                return False

            metrics = get_metrics()
            if metrics:
                metrics.record_feedback(is_correct, "reaction")

            if is_correct and self.knowledge_base is not None:
                case = KnowledgeCase.from_alert(entry.alert, entry.category, entry.analysis)
                try:
                    await self.knowledge_base.store(case)
                except Exception as e:
                    logger.warning(f"Failed to store case in knowledge base: {e}")

            mark = "✅" if is_correct else "❌"
            try:
                await self.notifier.reply_to_thread(
                    entry.thread_ts, THANK_YOU_TEMPLATE.format(mark=mark)
                )
            except Exception as e:
                logger.warning(f"Failed to send feedback confirmation: {e}")

            self.registry.remove(entry.message_ts)
            logger.info(
                f"Feedback recorded for {entry.alert.name}: "
                f"{'correct' if is_correct else 'incorrect'}"
            )
            return True
