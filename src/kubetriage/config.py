"""
Configuration management for kubetriage

Provides pydantic-based configuration with environment variable support
and YAML file loading capabilities.
"""

import os
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .observability.config import TelemetryConfig

# Output width of the embedding models we know about
KNOWN_EMBEDDING_DIMS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "all-MiniLM-L6-v2": 384,
    "all-mpnet-base-v2": 768,
}


class ServerConfig(BaseModel):
    """HTTP ingress configuration"""

    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)
    webhook_auth_token: Optional[str] = None


class SourcesConfig(BaseModel):
    """Webhook source adapters tried in order during detection"""

    enabled: list[str] = Field(
        default_factory=lambda: ["alertmanager", "grafana", "pagerduty"]
    )


class LLMRouterConfig(BaseModel):
    """Single LLM router configuration"""

    provider: str = "openai"  # "openai", "anthropic", "local", "mock"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = "sk-placeholder-test-key"
    # For OpenAI-compatible local servers (Ollama, LMStudio, vLLM)
    base_url: Optional[str] = None
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, gt=0)
    timeout: float = Field(default=120.0, gt=0)
    system_prompt: str = "You are an expert Kubernetes SRE analyzing production incidents."
    mock_responses_path: Optional[str] = None


class LLMConfig(BaseModel):
    """LLM configuration"""

    default: str = "openai_default"
    routers: dict[str, LLMRouterConfig] = Field(
        default_factory=lambda: {"openai_default": LLMRouterConfig()}
    )


class SlackConfig(BaseModel):
    """Slack bot configuration"""

    bot_token: Optional[str] = None
    channel_id: Optional[str] = None
    # Needed to build deep links to past threads
    workspace_id: Optional[str] = None
    update_every_chunks: int = Field(default=10, gt=0)


class FeedbackConfig(BaseModel):
    """Feedback log and reaction polling"""

    path: str = "/data/feedback.jsonl"
    relevant_limit: int = Field(default=1, ge=0)
    poll_interval: float = Field(default=30.0, gt=0)
    pending_ttl_hours: float = Field(default=24.0, gt=0)


class KnowledgeBaseConfig(BaseModel):
    """Vector knowledge base of validated cases"""

    enabled: bool = False
    backend: Literal["pgvector", "local"] = "pgvector"
    database_url: Optional[str] = None
    local_path: str = ".kubetriage_kb.json"
    pool_min_connections: int = Field(default=1, ge=1)
    pool_max_connections: int = Field(default=5, ge=1)

    embedding_provider: Literal["openai", "local", "hash"] = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_api_key: Optional[str] = None
    embedding_base_url: Optional[str] = None
    embedding_dims: int = Field(default=1536, gt=0)

    similarity_threshold: float = Field(default=0.75, gt=0.0, le=1.0)
    max_results: int = Field(default=5, gt=0)

    @model_validator(mode="after")
    def check_embedding_dims(self) -> "KnowledgeBaseConfig":
        if self.embedding_provider == "hash":
            return self
        expected = KNOWN_EMBEDDING_DIMS.get(self.embedding_model)
        if expected is not None and expected != self.embedding_dims:
            raise ValueError(
                f"embedding_dims={self.embedding_dims} does not match model "
                f"'{self.embedding_model}' output dimension {expected}"
            )
        return self


class KubernetesConfig(BaseModel):
    """Cluster API access for the diagnostics collector"""

    enabled: bool = True
    # None = try in-cluster config first, then kubeconfig
    in_cluster: Optional[bool] = None
    kubeconfig: Optional[str] = None
    log_tail_lines: int = Field(default=50, gt=0)
    events_limit: int = Field(default=20, gt=0)


class PromptsConfig(BaseModel):
    """Prompt template locations"""

    prompts_dir: str = str(Path(__file__).parent / "prompts")
    analysis_template_key: str = "analysis:v1"
    categorize_template_key: str = "categorize:v1"
    # Raw override using {FEEDBACK_CONTEXT}, {FEEDBACK_INSTRUCTION}, {DEBUG_INFO}
    analysis_template: Optional[str] = None


class PerformanceConfig(BaseModel):
    """Performance settings"""

    # 0 disables the bound on in-flight alert tasks
    max_concurrent_alerts: int = Field(default=10, ge=0)
    # Seconds an alert may wait for a free slot before it is dropped, None waits forever
    alert_queue_timeout: Optional[float] = Field(default=None, gt=0)


class TriageConfig(BaseSettings):
    """Main kubetriage configuration"""

    model_config = SettingsConfigDict(
        env_prefix="KUBETRIAGE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    sources: SourcesConfig = Field(default_factory=SourcesConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    slack: SlackConfig = Field(default_factory=SlackConfig)
    feedback: FeedbackConfig = Field(default_factory=FeedbackConfig)
    knowledge_base: KnowledgeBaseConfig = Field(default_factory=KnowledgeBaseConfig)
    kubernetes: KubernetesConfig = Field(default_factory=KubernetesConfig)
    prompts: PromptsConfig = Field(default_factory=PromptsConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    @classmethod
    def load_from_file(cls, config_path: Optional[str] = None) -> "TriageConfig":
        """Load configuration from YAML file with environment variable override"""
        import yaml

        config_file = Path(
            config_path or os.getenv("KUBETRIAGE_CONFIG_FILE", "kubetriage.yml")
        )
        config_data: dict[str, Any] = {}

        if config_file.exists():
            with open(config_file, encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    def get_llm_router_config(
        self, router_name: Optional[str] = None
    ) -> LLMRouterConfig:
        """Get LLM router configuration"""
        router_name = router_name or self.llm.default
        if router_name not in self.llm.routers:
            raise ValueError(f"LLM router '{router_name}' not found in configuration")
        return self.llm.routers[router_name]


# Global configuration instance
_config: Optional[TriageConfig] = None


def get_config() -> TriageConfig:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        _config = TriageConfig.load_from_file()
    return _config


def set_config(config: TriageConfig) -> None:
    """Set the global configuration instance"""
    global _config
    _config = config
