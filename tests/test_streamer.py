"""
Test suite for the notification streamer state machine
"""

import pytest

from kubetriage.streamer import (
    COMPLETE_PREFIX,
    FEEDBACK_SUFFIX,
    PROGRESS_PREFIX,
    NotificationStreamer,
    StreamState,
    format_final_message,
)

from conftest import MESSAGE_TS, THREAD_TS, FakeNotifier


async def feed(streamer, count):
    for i in range(count):
        await streamer.on_chunk(f"c{i} ")


class TestNotificationStreamer:
    @pytest.mark.asyncio
    async def test_create_then_update(self):
        notifier = FakeNotifier()
        streamer = NotificationStreamer(notifier, THREAD_TS, update_every=10)

        await feed(streamer, 9)
        assert streamer.state is StreamState.NO_MESSAGE
        assert notifier.creates == []

        await feed(streamer, 1)
        assert streamer.state is StreamState.STREAMING
        assert len(notifier.creates) == 1
        assert notifier.creates[0][1].startswith(PROGRESS_PREFIX)

        await feed(streamer, 10)
        assert len(notifier.updates) == 1
        assert notifier.updates[0][0] == MESSAGE_TS

    @pytest.mark.asyncio
    async def test_finalize_updates_streamed_message(self):
        notifier = FakeNotifier()
        streamer = NotificationStreamer(notifier, THREAD_TS, update_every=2)
        await feed(streamer, 2)

        message_ts = await streamer.finalize("full analysis")

        assert message_ts == MESSAGE_TS
        assert streamer.state is StreamState.FINALIZED
        assert notifier.updates[-1] == (MESSAGE_TS, format_final_message("full analysis"))

    @pytest.mark.asyncio
    async def test_finalize_creates_when_nothing_streamed(self):
        notifier = FakeNotifier()
        streamer = NotificationStreamer(notifier, THREAD_TS, update_every=10)
        await feed(streamer, 3)

        assert await streamer.finalize("short") == MESSAGE_TS
        assert len(notifier.creates) == 1
        assert notifier.updates == []

    @pytest.mark.asyncio
    async def test_no_thread_posts_only_final_message(self):
        notifier = FakeNotifier()
        streamer = NotificationStreamer(notifier, None, update_every=1)
        await feed(streamer, 5)

        assert await streamer.finalize("text") == MESSAGE_TS
        assert notifier.creates == [(None, format_final_message("text"))]
        assert notifier.updates == []

    @pytest.mark.asyncio
    async def test_no_thread_final_post_failure(self):
        notifier = FakeNotifier()

        async def unavailable(thread_ts, text, message_ts=None):
            raise RuntimeError("chat unavailable")

        notifier.post_or_update = unavailable
        streamer = NotificationStreamer(notifier, None)

        assert await streamer.finalize("text") is None
        assert streamer.state is StreamState.FINALIZED

    @pytest.mark.asyncio
    async def test_failed_create_retried_at_next_boundary(self):
        notifier = FakeNotifier()
        attempts = []
        original = notifier.post_or_update

        async def flaky(thread_ts, text, message_ts=None):
            attempts.append(message_ts)
            if len(attempts) == 1:
                raise RuntimeError("rate limited")
            return await original(thread_ts, text, message_ts)

        notifier.post_or_update = flaky
        streamer = NotificationStreamer(notifier, THREAD_TS, update_every=5)

        await feed(streamer, 5)
        assert streamer.state is StreamState.NO_MESSAGE

        await feed(streamer, 5)
        assert streamer.state is StreamState.STREAMING
        assert attempts == [None, None]

    @pytest.mark.asyncio
    async def test_chunk_after_finalize_rejected(self):
        streamer = NotificationStreamer(FakeNotifier(), THREAD_TS)
        await streamer.finalize("done")
        with pytest.raises(RuntimeError):
            await streamer.on_chunk("late")

    def test_final_message_format(self):
        message = format_final_message("body")
        assert message == COMPLETE_PREFIX + "body" + FEEDBACK_SUFFIX
        assert message.startswith("✅ *Analysis Complete*\n\n")
        assert "React with ✅ if correct or ❌ if incorrect" in message
