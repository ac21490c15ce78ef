"""Configuration settings and data models."""

import json
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

CONFIG_FILENAME = "stancestream_config.json"


class StoreConfig(BaseModel):
    """Redis connection settings for the store client."""

    url: str = Field(default="redis://localhost:6379", description="Redis connection URL")
    max_retries: int = Field(
        default=3, description="Reconnect attempts before the client is marked disconnected"
    )
    backoff_base_seconds: float = Field(default=0.1, description="Initial reconnect backoff")
    backoff_cap_seconds: float = Field(default=3.0, description="Maximum reconnect backoff")
    operation_timeout_seconds: float = Field(
        default=5.0, description="Timeout applied to read operations"
    )
    socket_connect_timeout_seconds: float = Field(default=5.0)
    auto_setup: bool = Field(
        default=True, description="Create vector indexes and seed agent profiles on startup"
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("Store url must start with redis://, rediss:// or unix://")
        return v


class DebateConfig(BaseModel):
    """Limits governing debate lifecycles."""

    max_concurrent_debates: int = Field(default=10, ge=1, description="Ceiling on live debates")
    max_agents: int = Field(default=5, ge=1, description="Maximum participants per debate")
    max_batch_topics: int = Field(default=5, ge=1, description="Topics allowed per batch start")
    start_cooldown_seconds: float = Field(
        default=1.0, ge=0, description="Minimum time between accepted debate starts"
    )
    message_cooldown_seconds: float = Field(
        default=1.2, ge=0, description="Pause between generated messages"
    )
    rounds: int = Field(default=5, ge=1, description="Rounds per debate")
    ceiling_retry_after_seconds: int = Field(
        default=30, ge=1, description="Retry hint returned when the ceiling is reached"
    )


class RateLimitPolicy(BaseModel):
    """Fixed-window request budget for a single caller."""

    window_seconds: int = Field(..., gt=0)
    max_requests: int = Field(..., gt=0)


class RateLimitConfig(BaseModel):
    """Per-source admission policies."""

    enabled: bool = Field(default=True)
    general: RateLimitPolicy = Field(
        default_factory=lambda: RateLimitPolicy(window_seconds=15 * 60, max_requests=100)
    )
    api: RateLimitPolicy = Field(
        default_factory=lambda: RateLimitPolicy(window_seconds=5 * 60, max_requests=50)
    )
    generation: RateLimitPolicy = Field(
        default_factory=lambda: RateLimitPolicy(window_seconds=10 * 60, max_requests=20)
    )


class WebSocketConfig(BaseModel):
    """Realtime channel admission and fan-out settings."""

    max_connections_per_ip: int = Field(default=5, ge=1)
    max_messages_per_minute: int = Field(default=60, ge=1)
    event_queue_size: int = Field(default=1000, ge=1)


class CacheConfig(BaseModel):
    """Semantic cache configuration."""

    enabled: bool = Field(default=True)
    similarity_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    top_k: int = Field(default=5, ge=1)
    ttl_seconds: int = Field(default=86400, gt=0, description="Entry lifetime (24 hours)")
    max_entries: int = Field(default=10000, ge=1)
    index_name: str = Field(default="cache-index")
    key_prefix: str = Field(default="cache:prompt:")
    embedding_model: str = Field(default="text-embedding-ada-002")
    embedding_dim: int = Field(default=1536, ge=1)
    cost_per_1k_tokens: float = Field(default=0.002, ge=0.0)


class OpenAIConfig(BaseModel):
    """OpenAI settings for the default generation collaborators."""

    api_key: str | None = Field(
        default=None, description="OpenAI API key (can also be set via OPENAI_API_KEY env var)"
    )
    model: str = Field(default="gpt-4")
    max_tokens: int = Field(default=300)
    temperature: float = Field(default=0.8)
    timeout: int = Field(default=30, description="API request timeout in seconds")
    max_retries: int = Field(default=3)


class SystemConfig(BaseModel):
    """System-wide configuration."""

    environment: Literal["development", "production", "test"] = Field(default="development")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    allowed_origins: list[str] = Field(
        default=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:5174",
            "http://127.0.0.1:5174",
        ]
    )


class AppConfig(BaseModel):
    """Complete application configuration."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    debate: DebateConfig = Field(default_factory=DebateConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    websocket: WebSocketConfig = Field(default_factory=WebSocketConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    system: SystemConfig = Field(default_factory=SystemConfig)

    @classmethod
    def load_from_file(cls, config_path: Path) -> "AppConfig":
        """Load configuration from JSON file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a JSON object: {config_path}")

        return cls(**data)

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to JSON file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(self.model_dump(), f, indent=2)

    def apply_env_overrides(self) -> "AppConfig":
        """Overlay environment variables on top of file settings."""
        redis_url = os.environ.get("REDIS_URL")
        if redis_url:
            self.store = StoreConfig(**{**self.store.model_dump(), "url": redis_url})

        api_key = os.environ.get("OPENAI_API_KEY")
        if api_key:
            self.openai.api_key = api_key

        environment = os.environ.get("STANCESTREAM_ENV")
        if environment:
            self.system = SystemConfig(**{**self.system.model_dump(), "environment": environment})

        log_level = os.environ.get("LOG_LEVEL")
        if log_level:
            self.system = SystemConfig(
                **{**self.system.model_dump(), "log_level": log_level.upper()}
            )

        env_origins = os.environ.get("ALLOWED_ORIGINS")
        if env_origins:
            self.system.allowed_origins = [o.strip() for o in env_origins.split(",") if o.strip()]

        return self


def get_default_config() -> AppConfig:
    """Load configuration from stancestream_config.json, creating it if needed."""
    config_path = Path(os.environ.get("STANCESTREAM_CONFIG", CONFIG_FILENAME))
    if not config_path.exists():
        get_template_config().save_to_file(config_path)
    return AppConfig.load_from_file(config_path).apply_env_overrides()


def get_template_config() -> AppConfig:
    """Get template configuration for config file generation."""
    return AppConfig(
        store=StoreConfig(
            url="redis://localhost:6379",
            max_retries=3,
            backoff_base_seconds=0.1,
            backoff_cap_seconds=3.0,
            operation_timeout_seconds=5.0,
        ),
        debate=DebateConfig(
            max_concurrent_debates=10,
            max_agents=5,
            start_cooldown_seconds=1.0,
            message_cooldown_seconds=1.2,
            rounds=5,
        ),
        rate_limit=RateLimitConfig(),
        websocket=WebSocketConfig(max_connections_per_ip=5, max_messages_per_minute=60),
        cache=CacheConfig(similarity_threshold=0.85, ttl_seconds=86400, max_entries=10000),
        openai=OpenAIConfig(
            api_key=None,  # Set your OpenAI key here or use OPENAI_API_KEY env var
            model="gpt-4",
        ),
        system=SystemConfig(environment="development", log_level="INFO"),
    )
