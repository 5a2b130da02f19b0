"""
Slack notifier

Posts alerts, streams analysis updates into the alert thread and reads
reactions back, using the async Slack Web API client.
"""

import logging
from typing import Any, Optional

from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from .errors import NotifierError
from .models import Alert
from .observability import get_metrics

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 3000

# reactions.get errors that just mean "nothing to read yet"
_EMPTY_REACTION_ERRORS = {"message_not_found", "no_reaction"}


def to_slack_markdown(text: str) -> str:
    """Slack bold is a single asterisk"""
    return text.replace("**", "*")


def truncate_for_slack(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + "\n... (truncated)"


def build_alert_blocks(alert: Alert) -> list[dict[str, Any]]:
    """Block Kit layout announcing a new alert"""
    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"🚨 {alert.name or 'Alert'}"},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Severity:*\n{alert.severity or 'n/a'}"},
                {"type": "mrkdwn", "text": f"*Namespace:*\n{alert.namespace}"},
            ],
        },
    ]

    pod = alert.labels.get("pod")
    if pod:
        blocks.append(
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Pod:*\n`{pod}`"},
                    {
                        "type": "mrkdwn",
                        "text": f"*Service:*\n{alert.labels.get('service', 'n/a')}",
                    },
                ],
            }
        )
    if alert.summary:
        blocks.append(
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*Summary:*\n{alert.summary}"}}
        )
    if alert.description:
        blocks.append(
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Description:*\n{alert.description}"},
            }
        )
    if alert.starts_at:
        started = alert.starts_at.strftime("%Y-%m-%d %H:%M:%S %Z").strip()
        blocks.append(
            {"type": "context", "elements": [{"type": "mrkdwn", "text": f"Started: {started}"}]}
        )

    blocks.append({"type": "divider"})
    blocks.append(
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": "🤖 _AI debugging in progress..._"},
        }
    )
    return blocks


class SlackNotifier:
    """
    Chat notifier backed by a Slack bot token

    Without a bot token and channel every call is a no-op and reactions
    are unsupported.
    """

    def __init__(
        self,
        bot_token: Optional[str] = None,
        channel_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        client: Optional[AsyncWebClient] = None,
    ):
        self.channel_id = channel_id
        self.workspace_id = workspace_id
        self._configured = bool(bot_token and channel_id)
        self.client = client or (AsyncWebClient(token=bot_token) if bot_token else None)

    @property
    def supports_reactions(self) -> bool:
        return self._configured

    @property
    def can_link(self) -> bool:
        return self._configured and bool(self.workspace_id)

    def permalink(self, thread_ts: str) -> Optional[str]:
        """Deep link to a thread, None when links cannot be built"""
        if not self.can_link or not thread_ts:
            return None
        return (
            f"https://{self.workspace_id}.slack.com/archives/"
            f"{self.channel_id}/p{thread_ts.replace('.', '')}"
        )

    async def _call(self, method: str, **kwargs) -> Any:
        metrics = get_metrics()
        try:
            response = await getattr(self.client, method)(**kwargs)
        except SlackApiError as e:
            if metrics:
                metrics.record_chat_request(method, "error")
            raise NotifierError(
                f"Slack {method} failed: {e.response.get('error', e)}"
            ) from e
        if metrics:
            metrics.record_chat_request(method, "ok")
        return response

    async def post_alert(self, alert: Alert) -> Optional[str]:
        """Announce an alert; returns the thread handle"""
        if not self._configured:
            return None

        response = await self._call(
            "chat_postMessage",
            channel=self.channel_id,
            text=f"🚨 {alert.name}: {alert.summary}",
            blocks=build_alert_blocks(alert),
            unfurl_links=False,
        )
        ts = response.get("ts")
        logger.info(f"Alert {alert.name} posted to Slack, thread_ts: {ts}")
        return ts

    async def post_or_update(
        self, thread_ts: Optional[str], text: str, message_ts: Optional[str] = None
    ) -> Optional[str]:
        """
        Create a reply in ``thread_ts`` or update ``message_ts`` in place

        A message created without ``thread_ts`` goes to the channel itself.

        Returns:
            The message handle
        """
        if not self._configured:
            return None

        body = truncate_for_slack(to_slack_markdown(text))
        if message_ts:
            await self._call(
                "chat_update", channel=self.channel_id, ts=message_ts, text=body
            )
            return message_ts

        params: dict[str, Any] = {"channel": self.channel_id, "text": body}
        if thread_ts:
            params["thread_ts"] = thread_ts
        response = await self._call("chat_postMessage", unfurl_links=False, **params)
        return response.get("ts")

    async def get_reactions(self, message_ts: str) -> list[str]:
        """Reaction names on a message, in the order Slack returns them"""
        if not self._configured:
            raise NotifierError("Bot token and channel are required to read reactions")

        try:
            response = await self.client.reactions_get(
                channel=self.channel_id, timestamp=message_ts
            )
        except SlackApiError as e:
            error = e.response.get("error", "")
            if error in _EMPTY_REACTION_ERRORS:
                return []
            if error == "not_in_channel":
                raise NotifierError(
                    f"Bot not in channel {self.channel_id}; invite it with /invite"
                ) from e
            raise NotifierError(
                f"Slack reactions.get failed: {error} "
                f"(channel: {self.channel_id}, ts: {message_ts})"
            ) from e

        message = response.get("message") or {}
        return [r["name"] for r in message.get("reactions", []) if r.get("name")]

    async def reply_to_thread(self, thread_ts: str, text: str) -> None:
        if not self._configured:
            return
        await self._call(
            "chat_postMessage", channel=self.channel_id, thread_ts=thread_ts, text=text
        )

    async def validate(self) -> None:
        """Check the token; logs a warning instead of failing startup"""
        if not self._configured:
            logger.warning("Slack bot token or channel not configured, notifications disabled")
            return
        try:
            await self._call("auth_test")
        except NotifierError as e:
            logger.warning(f"Slack token validation failed: {e}")
