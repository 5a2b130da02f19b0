"""
Language model clients for categorization and streamed analysis

Every backend exposes one-shot ``generate`` and chunked ``stream``;
``LLMProvider`` builds the triage-specific calls on top of a router.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from contextlib import nullcontext
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import yaml
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from .config import LLMRouterConfig, PromptsConfig, TriageConfig
from .models import Alert
from .observability import add_event, get_metrics, set_attribute, trace_async
from .prompts import PromptManager, build_categorize_prompt

logger = logging.getLogger(__name__)


class LLMResponse(BaseModel):
    """Completed generation with usage data"""

    content: str
    model: str
    tokens_used: Optional[int] = None
    finish_reason: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class BaseLLMClient(ABC):
    """One configured model: single-shot generation and token streaming"""

    provider_name = "base"

    def __init__(self, config: LLMRouterConfig):
        self.config = config

    @property
    def name(self) -> str:
        return f"{self.provider_name} ({self.config.model})"

    @abstractmethod
    async def generate(
        self, prompt: str, system_prompt: Optional[str] = None, **kwargs
    ) -> LLMResponse:
        """Generate a complete response"""

    @abstractmethod
    def stream(
        self, prompt: str, system_prompt: Optional[str] = None
    ) -> AsyncIterator[str]:
        """Yield response text chunks as they arrive"""

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the LLM service is available"""


class BaseOpenAICompatibleClient(BaseLLMClient):
    """Shared chat-completions logic for OpenAI and compatible servers"""

    def __init__(self, config: LLMRouterConfig):
        super().__init__(config)
        self._client: Optional[AsyncOpenAI] = None

    @abstractmethod
    def _create_client(self) -> AsyncOpenAI:
        """Build the underlying AsyncOpenAI client"""

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _messages(self, prompt: str, system_prompt: Optional[str]) -> list[dict]:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def generate(
        self, prompt: str, system_prompt: Optional[str] = None, **kwargs
    ) -> LLMResponse:
        """Generate response using a chat completion"""
        metrics = get_metrics()
        operation = kwargs.pop("template_type", "generate")
        if metrics:
            metrics.record_llm_request(self.provider_name, self.config.model, operation)

        set_attribute("llm.provider", self.provider_name)
        set_attribute("llm.model", self.config.model)
        set_attribute("prompt.length", len(prompt))

        params = {
            "model": self.config.model,
            "messages": self._messages(prompt, system_prompt),
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            **kwargs,
        }

        try:
            response = await self._get_client().chat.completions.create(**params)
        except Exception as e:
            logger.error(f"{self.provider_name} generation failed: {e}")
            if metrics:
                metrics.record_llm_error(
                    self.provider_name, operation, type(e).__name__
                )
            raise

        choice = response.choices[0]
        result = LLMResponse(
            content=choice.message.content or "",
            model=response.model,
            tokens_used=response.usage.total_tokens if response.usage else None,
            finish_reason=choice.finish_reason,
        )
        add_event("llm_generation_complete")
        return result

    async def stream(
        self, prompt: str, system_prompt: Optional[str] = None
    ) -> AsyncIterator[str]:
        metrics = get_metrics()
        if metrics:
            metrics.record_llm_request(self.provider_name, self.config.model, "stream")

        try:
            response = await self._get_client().chat.completions.create(
                model=self.config.model,
                messages=self._messages(prompt, system_prompt),
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                stream=True,
            )
            async for event in response:
                if not event.choices:
                    continue
                content = event.choices[0].delta.content
                if content:
                    yield content
        except Exception as e:
            if metrics:
                metrics.record_llm_error(self.provider_name, "stream", type(e).__name__)
            raise

    async def health_check(self) -> bool:
        try:
            await self._get_client().chat.completions.create(
                model=self.config.model,
                messages=[{"role": "user", "content": "test"}],
                max_tokens=1,
            )
            return True
        except Exception as e:
            logger.error(f"{self.provider_name} health check failed: {e}")
            return False


class OpenAIClient(BaseOpenAICompatibleClient):
    """OpenAI API client"""

    provider_name = "openai"

    def _create_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            timeout=self.config.timeout,
        )


class LocalLLMClient(BaseOpenAICompatibleClient):
    """
    Self-hosted model behind an OpenAI-compatible endpoint

    Ollama (http://localhost:11434/v1), LMStudio (http://localhost:1234/v1),
    vLLM and similar servers.
    """

    provider_name = "local"

    def _create_client(self) -> AsyncOpenAI:
        if not self.config.base_url:
            raise ValueError(
                "base_url is required for local LLM provider. "
                "Examples: http://localhost:11434/v1 (Ollama), "
                "http://localhost:1234/v1 (LMStudio)"
            )
        return AsyncOpenAI(
            api_key=self.config.api_key or "not-needed",
            base_url=self.config.base_url,
            timeout=self.config.timeout,
        )


class AnthropicClient(BaseLLMClient):
    """Anthropic Messages API client"""

    provider_name = "anthropic"

    def __init__(self, config: LLMRouterConfig):
        super().__init__(config)
        self._client: Optional[AsyncAnthropic] = None

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
            )
        return self._client

    def _params(self, prompt: str, system_prompt: Optional[str]) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        # The Messages API takes the system prompt outside the message list
        if system_prompt:
            params["system"] = system_prompt
        return params

    async def generate(
        self, prompt: str, system_prompt: Optional[str] = None, **kwargs
    ) -> LLMResponse:
        metrics = get_metrics()
        operation = kwargs.pop("template_type", "generate")
        if metrics:
            metrics.record_llm_request(self.provider_name, self.config.model, operation)

        set_attribute("llm.provider", self.provider_name)
        set_attribute("llm.model", self.config.model)
        set_attribute("prompt.length", len(prompt))

        try:
            message = await self._get_client().messages.create(
                **self._params(prompt, system_prompt), **kwargs
            )
        except Exception as e:
            logger.error(f"{self.provider_name} generation failed: {e}")
            if metrics:
                metrics.record_llm_error(
                    self.provider_name, operation, type(e).__name__
                )
            raise

        usage = message.usage
        result = LLMResponse(
            content="".join(
                block.text for block in message.content if block.type == "text"
            ),
            model=message.model,
            tokens_used=usage.input_tokens + usage.output_tokens if usage else None,
            finish_reason=message.stop_reason,
        )
        add_event("llm_generation_complete")
        return result

    async def stream(
        self, prompt: str, system_prompt: Optional[str] = None
    ) -> AsyncIterator[str]:
        metrics = get_metrics()
        if metrics:
            metrics.record_llm_request(self.provider_name, self.config.model, "stream")

        try:
            async with self._get_client().messages.stream(
                **self._params(prompt, system_prompt)
            ) as response:
                async for text in response.text_stream:
                    if text:
                        yield text
        except Exception as e:
            if metrics:
                metrics.record_llm_error(self.provider_name, "stream", type(e).__name__)
            raise

    async def health_check(self) -> bool:
        try:
            await self._get_client().messages.create(
                model=self.config.model,
                max_tokens=1,
                messages=[{"role": "user", "content": "test"}],
            )
            return True
        except Exception as e:
            logger.error(f"{self.provider_name} health check failed: {e}")
            return False


class MockLLMClient(BaseLLMClient):
    """Canned responses keyed by operation, used when no real API key is configured"""

    provider_name = "mock"

    def __init__(self, config: LLMRouterConfig, delay: float = 0.0):
        super().__init__(config)
        self.delay = delay
        path = (
            Path(config.mock_responses_path)
            if config.mock_responses_path
            else Path(__file__).parent / "prompts" / "mock_responses.yaml"
        )
        with open(path, encoding="utf-8") as f:
            self.mock_responses: dict[str, Any] = yaml.safe_load(f) or {}

    def _content(self, template_type: str) -> str:
        entry = self.mock_responses.get(template_type) or self.mock_responses.get(
            "default", {}
        )
        return entry.get("content", f"Mock response for {template_type}")

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        template_type: str = "default",
        **kwargs,
    ) -> LLMResponse:
        if self.delay:
            await asyncio.sleep(self.delay)
        content = self._content(template_type)
        return LLMResponse(
            content=content,
            model=f"mock-{self.config.model}",
            tokens_used=len(content.split()),
            finish_reason="stop",
            metadata={"mock": True, "template_type": template_type},
        )

    async def stream(
        self, prompt: str, system_prompt: Optional[str] = None
    ) -> AsyncIterator[str]:
        # Word-sized chunks, whitespace kept so the joined text is unchanged
        for chunk in re.findall(r"\S+\s*|\s+", self._content("analysis")):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield chunk

    async def health_check(self) -> bool:
        return True


class LLMRouter:
    """
    Routes LLM requests to configured clients

    Clients are created lazily per router name and cached.
    """

    def __init__(self, config: TriageConfig):
        self.config = config
        self._clients: dict[str, BaseLLMClient] = {}

    def _create_client(
        self, router_name: str, router_config: LLMRouterConfig
    ) -> BaseLLMClient:
        provider = router_config.provider.lower()

        if provider == "openai":
            if router_config.api_key and router_config.api_key.startswith(
                "sk-placeholder"
            ):
                logger.info(
                    f"Using mock client for placeholder API key in router {router_name}"
                )
                return MockLLMClient(router_config)
            return OpenAIClient(router_config)
        if provider == "anthropic":
            return AnthropicClient(router_config)
        if provider == "local":
            return LocalLLMClient(router_config)
        if provider == "mock":
            return MockLLMClient(router_config)
        raise ValueError(f"Unknown LLM provider '{provider}' in router {router_name}")

    def get_client(self, router_name: Optional[str] = None) -> BaseLLMClient:
        router_name = router_name or self.config.llm.default

        if router_name not in self._clients:
            router_config = self.config.get_llm_router_config(router_name)
            self._clients[router_name] = self._create_client(router_name, router_config)

        return self._clients[router_name]

    async def health_check_all(self) -> dict[str, bool]:
        """Check health of all configured routers"""
        results = {}
        for router_name in self.config.llm.routers:
            try:
                client = self.get_client(router_name)
                results[router_name] = await client.health_check()
            except Exception as e:
                logger.error(f"Health check failed for router {router_name}: {e}")
                results[router_name] = False
        return results


class LLMProvider:
    """
    Triage operations on top of one routed LLM client

    ``categorize`` returns the raw model reply; normalization belongs to
    the classifier.
    """

    def __init__(
        self,
        client: BaseLLMClient,
        prompts: Optional[PromptsConfig] = None,
        prompt_manager: Optional[PromptManager] = None,
    ):
        self.client = client
        self.prompts = prompts or PromptsConfig()
        self.prompt_manager = prompt_manager or PromptManager(self.prompts.prompts_dir)

    @classmethod
    def from_config(
        cls, config: TriageConfig, router_name: Optional[str] = None
    ) -> "LLMProvider":
        return cls(LLMRouter(config).get_client(router_name), config.prompts)

    @property
    def name(self) -> str:
        return self.client.name

    @trace_async("llm.categorize")
    async def categorize(self, alert: Alert) -> str:
        prompt = build_categorize_prompt(
            alert,
            template_key=self.prompts.categorize_template_key,
            prompt_manager=self.prompt_manager,
        )
        metrics = get_metrics()
        timer = (
            metrics.time_llm(self.client.provider_name, "categorize")
            if metrics
            else nullcontext()
        )
        with timer:
            response = await self.client.generate(prompt, template_type="categorize")
        return response.content

    def stream_analyze(self, prompt: str) -> AsyncIterator[str]:
        return self.client.stream(prompt, system_prompt=self.client.config.system_prompt)
