"""
Incremental posting of a streamed analysis

NO_MESSAGE -> STREAMING -> FINALIZED. The first update boundary creates
the threaded message, later boundaries edit it, ``finalize`` writes the
completed analysis, unthreaded when the alert post itself failed.
"""

import logging
from enum import Enum
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

PROGRESS_PREFIX = "🔄 *Analysis in progress...*\n\n"
COMPLETE_PREFIX = "✅ *Analysis Complete*\n\n"
FEEDBACK_SUFFIX = (
    "\n\n_💡 Rate this analysis: React with ✅ if correct or ❌ if incorrect "
    "to help improve future debugging_"
)


def format_final_message(analysis: str) -> str:
    return COMPLETE_PREFIX + analysis + FEEDBACK_SUFFIX


class MessagePoster(Protocol):
    async def post_or_update(
        self, thread_ts: Optional[str], text: str, message_ts: Optional[str] = None
    ) -> Optional[str]: ...


class StreamState(str, Enum):
    NO_MESSAGE = "no_message"
    STREAMING = "streaming"
    FINALIZED = "finalized"


class NotificationStreamer:
    """
    Relays analysis chunks into one chat message

    Args:
        notifier: Chat backend
        thread_ts: Thread of the alert post; None skips progress updates
        update_every: Chunk interval between message updates
    """

    def __init__(
        self,
        notifier: MessagePoster,
        thread_ts: Optional[str],
        update_every: int = 10,
    ):
        self.notifier = notifier
        self.thread_ts = thread_ts
        self.update_every = update_every
        self.state = StreamState.NO_MESSAGE
        self.message_ts: Optional[str] = None
        self.chunk_count = 0
        self._parts: list[str] = []

    @property
    def text(self) -> str:
        return "".join(self._parts)

    async def on_chunk(self, chunk: str) -> None:
        if self.state is StreamState.FINALIZED:
            raise RuntimeError("Streamer already finalized")

        self._parts.append(chunk)
        self.chunk_count += 1
        if not self.thread_ts or self.chunk_count % self.update_every != 0:
            return

        try:
            message_ts = await self.notifier.post_or_update(
                self.thread_ts, PROGRESS_PREFIX + self.text, self.message_ts
            )
        except Exception as e:
            # Left in NO_MESSAGE on a failed create so the next boundary retries
            logger.warning(f"Streaming update at chunk {self.chunk_count} failed: {e}")
            return

        if message_ts:
            self.message_ts = message_ts
            self.state = StreamState.STREAMING

    async def finalize(self, analysis: str) -> Optional[str]:
        """
        Write the completed analysis

        Without an alert thread the analysis is posted as a standalone
        channel message.

        Returns:
            Handle of the final message, None when nothing was posted
        """
        self.state = StreamState.FINALIZED

        try:
            message_ts = await self.notifier.post_or_update(
                self.thread_ts, format_final_message(analysis), self.message_ts
            )
        except Exception as e:
            logger.error(f"Failed to post final analysis: {e}")
            return self.message_ts

        if message_ts:
            self.message_ts = message_ts
        return self.message_ts
