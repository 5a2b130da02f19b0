"""
Streaming root cause analysis

The engine pulls chunks from the provider one at a time and awaits the
chunk callback before pulling the next, so a slow chat backend slows the
stream instead of queueing updates.
"""

import inspect
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol, Sequence, Union

from .errors import AnalysisStreamError
from .models import FeedbackRecord
from .observability import add_event, get_metrics, set_attribute, trace_async
from .prompts import PromptManager, build_analysis_prompt

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Union[None, Awaitable[None]]]


class StreamingProvider(Protocol):
    name: str

    def stream_analyze(self, prompt: str) -> AsyncIterator[str]: ...


class AnalysisEngine:
    """Builds the analysis prompt and relays the streamed answer"""

    def __init__(
        self,
        provider: StreamingProvider,
        custom_template: Optional[str] = None,
        template_key: str = "analysis:v1",
        prompt_manager: Optional[PromptManager] = None,
    ):
        self.provider = provider
        self.custom_template = custom_template
        self.template_key = template_key
        self.prompt_manager = prompt_manager

    def build_prompt(
        self, debug_info: str, past_feedback: Sequence[FeedbackRecord] = ()
    ) -> str:
        return build_analysis_prompt(
            debug_info,
            past_feedback,
            custom_template=self.custom_template,
            template_key=self.template_key,
            prompt_manager=self.prompt_manager,
        )

    @trace_async("analysis.stream")
    async def stream_analyze(
        self,
        debug_info: str,
        past_feedback: Sequence[FeedbackRecord],
        on_chunk: ChunkCallback,
    ) -> str:
        """
        Stream an analysis, forwarding each chunk to ``on_chunk``

        Returns:
            The full analysis text

        Raises:
            AnalysisStreamError: The stream failed; ``partial_text`` holds
                whatever arrived before the failure
        """
        prompt = self.build_prompt(debug_info, past_feedback)
        set_attribute("prompt.length", len(prompt))
        set_attribute("feedback.count", len(past_feedback))

        metrics = get_metrics()
        parts: list[str] = []
        try:
            async for chunk in self.provider.stream_analyze(prompt):
                parts.append(chunk)
                if metrics:
                    metrics.record_stream_chunk()
                result = on_chunk(chunk)
                if inspect.isawaitable(result):
                    await result
        except Exception as e:
            partial = "".join(parts)
            logger.error(
                f"Analysis stream from {self.provider.name} failed after "
                f"{len(parts)} chunks: {e}"
            )
            if metrics:
                metrics.record_stage_error("analysis")
            raise AnalysisStreamError(str(e), partial_text=partial) from e

        set_attribute("analysis.chunks", len(parts))
        add_event("analysis_complete")
        return "".join(parts)
