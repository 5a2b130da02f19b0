"""
Tests for the Slack notifier
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from slack_sdk.errors import SlackApiError

from kubetriage.errors import NotifierError
from kubetriage.notifier import (
    MAX_MESSAGE_LENGTH,
    SlackNotifier,
    build_alert_blocks,
    to_slack_markdown,
    truncate_for_slack,
)


def _slack_error(error: str) -> SlackApiError:
    return SlackApiError("request failed", {"ok": False, "error": error})


@pytest.fixture
def client():
    client = MagicMock()
    client.chat_postMessage = AsyncMock(return_value={"ok": True, "ts": "1700000000.000100"})
    client.chat_update = AsyncMock(return_value={"ok": True})
    client.reactions_get = AsyncMock(
        return_value={
            "ok": True,
            "message": {"reactions": [{"name": "eyes"}, {"name": "white_check_mark"}]},
        }
    )
    client.auth_test = AsyncMock(return_value={"ok": True})
    return client


@pytest.fixture
def slack(client):
    return SlackNotifier(
        bot_token="xoxb-test", channel_id="C123", workspace_id="acme", client=client
    )


class TestFormatting:
    """Test message text helpers"""

    def test_markdown_bold(self):
        assert to_slack_markdown("**Root Cause**: OOM") == "*Root Cause*: OOM"

    def test_truncate_short_text_unchanged(self):
        assert truncate_for_slack("short") == "short"

    def test_truncate_long_text(self):
        text = "x" * (MAX_MESSAGE_LENGTH + 10)

        result = truncate_for_slack(text)

        assert result == "x" * MAX_MESSAGE_LENGTH + "\n... (truncated)"

    def test_alert_blocks(self, sample_alert):
        blocks = build_alert_blocks(sample_alert)

        assert blocks[0]["text"]["text"] == "🚨 KubePodCrashLooping"
        texts = str(blocks)
        assert "`api-7d9f8b-x2x4q`" in texts
        assert "*Summary:*" in texts
        assert blocks[-1]["text"]["text"] == "🤖 _AI debugging in progress..._"


class TestSlackNotifier:
    """Test Slack API interaction through a mocked client"""

    def test_permalink(self, slack):
        assert (
            slack.permalink("1700000000.000100")
            == "https://acme.slack.com/archives/C123/p1700000000000100"
        )
        assert slack.permalink("") is None

    def test_permalink_without_workspace(self, client):
        notifier = SlackNotifier(bot_token="xoxb-test", channel_id="C123", client=client)

        assert notifier.permalink("1700000000.000100") is None

    @pytest.mark.asyncio
    async def test_unconfigured_is_noop(self, sample_alert):
        notifier = SlackNotifier()

        assert notifier.supports_reactions is False
        assert await notifier.post_alert(sample_alert) is None
        assert await notifier.post_or_update("1.0", "text") is None
        await notifier.reply_to_thread("1.0", "thanks")
        with pytest.raises(NotifierError):
            await notifier.get_reactions("1.0")

    @pytest.mark.asyncio
    async def test_post_alert_returns_thread(self, slack, client, sample_alert):
        ts = await slack.post_alert(sample_alert)

        assert ts == "1700000000.000100"
        kwargs = client.chat_postMessage.call_args.kwargs
        assert kwargs["channel"] == "C123"
        assert kwargs["blocks"][0]["type"] == "header"

    @pytest.mark.asyncio
    async def test_post_then_update(self, slack, client):
        ts = await slack.post_or_update("1.0", "**partial**")
        assert ts == "1700000000.000100"
        assert client.chat_postMessage.call_args.kwargs["thread_ts"] == "1.0"
        assert client.chat_postMessage.call_args.kwargs["text"] == "*partial*"

        updated = await slack.post_or_update("1.0", "final", message_ts=ts)

        assert updated == ts
        client.chat_update.assert_awaited_once_with(channel="C123", ts=ts, text="final")

    @pytest.mark.asyncio
    async def test_post_without_thread_goes_to_channel(self, slack, client):
        ts = await slack.post_or_update(None, "final")

        assert ts == "1700000000.000100"
        kwargs = client.chat_postMessage.call_args.kwargs
        assert kwargs["channel"] == "C123"
        assert "thread_ts" not in kwargs

    @pytest.mark.asyncio
    async def test_api_error_raises_notifier_error(self, slack, client):
        client.chat_postMessage.side_effect = _slack_error("channel_not_found")

        with pytest.raises(NotifierError, match="channel_not_found"):
            await slack.post_or_update("1.0", "text")

    @pytest.mark.asyncio
    async def test_reactions_in_order(self, slack):
        assert await slack.get_reactions("2.0") == ["eyes", "white_check_mark"]

    @pytest.mark.asyncio
    async def test_reactions_empty_message(self, slack, client):
        client.reactions_get.return_value = {"ok": True, "message": {}}

        assert await slack.get_reactions("2.0") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", ["message_not_found", "no_reaction"])
    async def test_reactions_benign_errors(self, slack, client, error):
        client.reactions_get.side_effect = _slack_error(error)

        assert await slack.get_reactions("2.0") == []

    @pytest.mark.asyncio
    async def test_reactions_not_in_channel(self, slack, client):
        client.reactions_get.side_effect = _slack_error("not_in_channel")

        with pytest.raises(NotifierError, match="/invite"):
            await slack.get_reactions("2.0")

    @pytest.mark.asyncio
    async def test_validate_tolerates_bad_token(self, slack, client):
        client.auth_test.side_effect = _slack_error("invalid_auth")

        await slack.validate()

        client.auth_test.assert_awaited_once()
