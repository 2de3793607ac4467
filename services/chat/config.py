"""Configuration for the chat service."""

from __future__ import annotations

from typing import Any

from services.common.config import (
    BaseConfig,
    FieldDefinition,
    LoggingConfig,
    load_config_from_env,
)
from services.chat.generation import SAFETY_THRESHOLDS


class ContextConfig(BaseConfig):
    """Conversation memory configuration."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="enabled",
                field_type=bool,
                default=True,
                description="Keep server-side conversation history",
                env_var="CONTEXT_ENABLED",
            ),
            FieldDefinition(
                name="max_messages",
                field_type=int,
                default=100,
                description="Messages retained per session (sliding window)",
                env_var="MAX_CONTEXT_MESSAGES",
                min_value=1,
                max_value=10000,
            ),
            FieldDefinition(
                name="storage_backend",
                field_type=str,
                default="memory",
                description="Session store implementation",
                env_var="CONTEXT_STORAGE",
                choices=["memory", "file"],
            ),
            FieldDefinition(
                name="file_path",
                field_type=str,
                default="./data/context.json",
                description="JSON document used by the file store",
                env_var="CONTEXT_FILE_PATH",
            ),
            FieldDefinition(
                name="max_sessions",
                field_type=int,
                default=10000,
                description="Sessions kept by the memory store before eviction",
                env_var="CONTEXT_MAX_SESSIONS",
                min_value=1,
            ),
            FieldDefinition(
                name="cleanup_days",
                field_type=int,
                default=30,
                description="Sessions idle longer than this many days are purged",
                env_var="CONTEXT_CLEANUP_DAYS",
                min_value=0,
            ),
            FieldDefinition(
                name="cleanup_interval_minutes",
                field_type=int,
                default=0,
                description="Background purge interval (0 disables it)",
                env_var="CONTEXT_CLEANUP_INTERVAL_MINUTES",
                min_value=0,
            ),
        ]


class GenerationConfig(BaseConfig):
    """Gemini generation backend configuration."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="api_key",
                field_type=str,
                default="",
                description="Gemini API key",
                env_var="GEMINI_API_KEY",
            ),
            FieldDefinition(
                name="model",
                field_type=str,
                default="gemini-2.0-flash",
                description="Gemini model name",
                env_var="GEMINI_MODEL",
            ),
            FieldDefinition(
                name="base_url",
                field_type=str,
                default="https://generativelanguage.googleapis.com",
                description="Gemini API root",
                env_var="GEMINI_BASE_URL",
                pattern=r"^https?://",
            ),
            FieldDefinition(
                name="temperature",
                field_type=float,
                default=0.8,
                description="Sampling temperature",
                env_var="GEMINI_TEMPERATURE",
                min_value=0.0,
                max_value=2.0,
            ),
            FieldDefinition(
                name="top_k",
                field_type=int,
                default=15,
                description="Top-k sampling",
                env_var="GEMINI_TOP_K",
                min_value=1,
            ),
            FieldDefinition(
                name="top_p",
                field_type=float,
                default=1.0,
                description="Nucleus sampling",
                env_var="GEMINI_TOP_P",
                min_value=0.0,
                max_value=1.0,
            ),
            FieldDefinition(
                name="safety_threshold",
                field_type=str,
                default="BLOCK_NONE",
                description="Block threshold for every harm category",
                env_var="GEMINI_SAFETY_THRESHOLD",
                choices=list(SAFETY_THRESHOLDS),
            ),
            FieldDefinition(
                name="timeout_seconds",
                field_type=float,
                default=30.0,
                description="Generation request timeout",
                env_var="GEMINI_TIMEOUT_SECONDS",
                min_value=1.0,
                max_value=300.0,
            ),
            FieldDefinition(
                name="max_attempts",
                field_type=int,
                default=1,
                description="Attempts per request on transient failures",
                env_var="GENERATION_MAX_ATTEMPTS",
                min_value=1,
                max_value=5,
            ),
        ]


class RateLimitConfig(BaseConfig):
    """Per-client request limits (0 disables a limit)."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="ai_per_minute",
                field_type=int,
                default=10,
                description="Generation requests per client per minute",
                env_var="RATE_LIMIT_AI_PER_MINUTE",
                min_value=0,
            ),
            FieldDefinition(
                name="context_per_minute",
                field_type=int,
                default=5,
                description="Context mutations per client per minute",
                env_var="RATE_LIMIT_CONTEXT_PER_MINUTE",
                min_value=0,
            ),
        ]


class ServerConfig(BaseConfig):
    """HTTP server configuration."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="host",
                field_type=str,
                default="0.0.0.0",
                env_var="CHAT_HOST",
            ),
            FieldDefinition(
                name="port",
                field_type=int,
                default=3000,
                env_var="PORT",
                min_value=1,
                max_value=65535,
            ),
            FieldDefinition(
                name="environment",
                field_type=str,
                default="development",
                env_var="APP_ENV",
                choices=["development", "testing", "production"],
            ),
            FieldDefinition(
                name="version",
                field_type=str,
                default="1.0.0",
                env_var="SERVICE_VERSION",
            ),
        ]


class ChatServiceConfig:
    """Chat service configuration."""

    def __init__(self, **kwargs: Any) -> None:
        """Initialize sub-configurations from optional per-section dicts."""
        self.logging = LoggingConfig(**kwargs.get("logging", {}))
        self.context = ContextConfig(**kwargs.get("context", {}))
        self.generation = GenerationConfig(**kwargs.get("generation", {}))
        self.rate_limit = RateLimitConfig(**kwargs.get("rate_limit", {}))
        self.server = ServerConfig(**kwargs.get("server", {}))


def load_chat_config(**overrides: Any) -> ChatServiceConfig:
    """Build the service configuration, letting the environment override defaults."""
    return load_config_from_env(ChatServiceConfig, **overrides)
