"""
Pytest configuration and shared fixtures for kubetriage tests

Provides a safe test configuration, sample alerts and in-memory stand-ins
for the chat backend and the LLM provider.
"""

from typing import AsyncIterator, Optional

import pytest
import pytest_asyncio

from kubetriage.config import LLMRouterConfig, TriageConfig
from kubetriage.embeddings import HashEmbedder
from kubetriage.feedback import FeedbackStore
from kubetriage.knowledge import KnowledgeBase, LocalCaseStore
from kubetriage.models import Alert
from kubetriage.observability.metrics import reset_metrics

THREAD_TS = "1700000000.000100"
MESSAGE_TS = "1700000001.000200"


class FakeNotifier:
    """Records every chat call; creates return fixed handles"""

    def __init__(
        self,
        thread_ts: Optional[str] = THREAD_TS,
        message_ts: str = MESSAGE_TS,
        workspace_id: Optional[str] = None,
    ):
        self.thread_ts = thread_ts
        self.message_ts = message_ts
        self.workspace_id = workspace_id
        self.channel_id = "C123"
        self.supports_reactions = True
        self.posted_alerts: list[Alert] = []
        self.creates: list[tuple[Optional[str], str]] = []
        self.updates: list[tuple[str, str]] = []
        self.replies: list[tuple[str, str]] = []
        self.reactions: dict[str, list[str]] = {}
        self.fail_post_alert = False
        self.fail_reactions = False

    @property
    def calls(self) -> int:
        return len(self.posted_alerts) + len(self.creates) + len(self.updates)

    async def post_alert(self, alert: Alert) -> Optional[str]:
        if self.fail_post_alert:
            raise RuntimeError("chat unavailable")
        self.posted_alerts.append(alert)
        return self.thread_ts

    async def post_or_update(
        self, thread_ts: Optional[str], text: str, message_ts: Optional[str] = None
    ) -> Optional[str]:
        if message_ts:
            self.updates.append((message_ts, text))
            return message_ts
        self.creates.append((thread_ts, text))
        return self.message_ts

    def permalink(self, thread_ts: str) -> Optional[str]:
        if not self.workspace_id or not thread_ts:
            return None
        return (
            f"https://{self.workspace_id}.slack.com/archives/"
            f"{self.channel_id}/p{thread_ts.replace('.', '')}"
        )

    async def get_reactions(self, message_ts: str) -> list[str]:
        if self.fail_reactions:
            raise RuntimeError("reactions unavailable")
        return self.reactions.get(message_ts, [])

    async def reply_to_thread(self, thread_ts: str, text: str) -> None:
        self.replies.append((thread_ts, text))


class FakeProvider:
    """LLM provider returning a fixed category and a fixed chunk stream"""

    name = "fake"

    def __init__(
        self,
        category: str = "pod-crash",
        chunks: Optional[list[str]] = None,
        fail_after: Optional[int] = None,
    ):
        self.category = category
        self.chunks = chunks if chunks is not None else [f"c{i} " for i in range(25)]
        self.fail_after = fail_after
        self.categorize_calls = 0
        self.prompts: list[str] = []

    async def categorize(self, alert: Alert) -> str:
        self.categorize_calls += 1
        return self.category

    async def stream_analyze(self, prompt: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i >= self.fail_after:
                raise RuntimeError("stream interrupted")
            yield chunk


@pytest.fixture(autouse=True)
def _reset_metrics():
    yield
    reset_metrics()


@pytest.fixture
def test_config(tmp_path):
    """Provide a test configuration with safe defaults"""
    config = TriageConfig()
    config.llm.default = "default"
    config.llm.routers = {"default": LLMRouterConfig(provider="mock", model="test")}
    config.feedback.path = str(tmp_path / "feedback.jsonl")
    config.kubernetes.enabled = False
    config.knowledge_base.enabled = False
    config.telemetry.enabled = False
    config.telemetry.logging.enabled = False
    config.slack.bot_token = None
    config.slack.channel_id = None
    config.server.webhook_auth_token = None
    return config


@pytest.fixture
def sample_alert():
    """Provide a firing pod crash alert"""
    return Alert(
        status="firing",
        labels={
            "alertname": "KubePodCrashLooping",
            "namespace": "payments",
            "pod": "api-7d9f8b-x2x4q",
            "service": "api",
            "severity": "critical",
        },
        annotations={
            "summary": "Pod payments/api-7d9f8b-x2x4q is crash looping",
            "description": "Container api restarted 5 times in 10 minutes",
        },
        startsAt="2024-05-01T12:00:00Z",
    )


@pytest.fixture
def feedback_store(tmp_path):
    return FeedbackStore(tmp_path / "feedback.jsonl")


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def embedder():
    return HashEmbedder(dimension=64)


@pytest_asyncio.fixture
async def knowledge_base(embedder):
    """Knowledge base over an in-memory case store"""
    return await KnowledgeBase.create(
        LocalCaseStore(None, dimension=64),
        embedder,
        similarity_threshold=0.75,
        max_results=5,
    )
