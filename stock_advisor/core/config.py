"""
Application configuration using Pydantic Settings.

Supports hierarchical environment configuration:
- .env.base: Common non-secret defaults (committed to git)
- .env.{ENVIRONMENT}: Environment-specific overrides (gitignored)
- Environment variables: Highest priority
"""

import os
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# Get environment from env var, default to development
ENV = os.getenv("ENVIRONMENT", "development")


class Settings(BaseSettings):
    """Application settings with hierarchical env file support."""

    model_config = SettingsConfigDict(
        env_file=[
            ".env.base",
            f".env.{ENV}",
        ],
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "test", "production"] = "development"

    # Identity store (persistent key-value store for bound identities)
    # Empty URL keeps identities in process memory, e.g. redis://localhost:6379
    redis_url: str = ""

    # Conversation store (external document store reached over HTTP)
    # Empty URL keeps turns and summaries in process memory only
    conversation_store_url: str = "http://localhost:3001"
    conversation_store_timeout: float = 10.0

    cors_origins: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    # External APIs - LLM
    dashscope_api_key: str = ""  # Alibaba Cloud DashScope API key

    # LLM Configuration
    default_llm_model: str = "qwen-plus"
    default_llm_temperature: float = 0.7
    max_response_tokens: int = 3000
    summarization_model: str = "qwen-flash"  # Fast, cheap model for digests

    # Conversation memory
    memory_token_budget: int = 1000  # Compact buffered turns beyond this estimate
    tail_messages_keep: int = 4  # Turns kept verbatim by compaction

    # Identity
    identity_freshness_hours: int = 24
    default_user_id: str = "user1"

    # Advisor session registry
    session_ttl_minutes: int = 30
    session_cleanup_interval_seconds: int = 60

    # Bound of the token channel between generation and consumer
    stream_channel_size: int = 64

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
