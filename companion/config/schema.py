"""Configuration schema using Pydantic."""

import os
import re

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_REF = re.compile(r"^\$\{?([A-Za-z_][A-Za-z0-9_]*)\}?$")


def _resolve_env(value: str) -> str:
    """Resolve a ``$VAR`` / ``${VAR}`` reference; unset variables keep the original text."""
    if not value:
        return value
    match = _ENV_REF.match(value.strip())
    if not match:
        return value
    return os.environ.get(match.group(1), value)


class ResilienceConfig(BaseModel):
    """Timeout / retry / circuit-breaker settings for model calls."""
    timeout: int = 120  # seconds per request
    max_retries: int = 2  # LiteLLM built-in retries (not applied to rate limits by the controller)
    circuit_breaker_threshold: int = 5  # consecutive failures before opening; 0 disables
    circuit_breaker_cooldown: int = 60  # seconds


class ProviderConfig(BaseModel):
    """LLM provider configuration."""
    api_key: str = ""
    api_base: str | None = None
    model: str = "gemini/gemini-2.5-flash"
    live_model: str | None = None  # optional cheaper/faster model for context compression
    temperature: float = 0.4
    max_tokens: int = 2048
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)

    @property
    def resolved_api_key(self) -> str:
        return _resolve_env(self.api_key)


class CompactionConfig(BaseModel):
    """Bounds applied to every tool result before it is sent back to the model."""
    max_items: int = 10
    max_string_chars: int = 280
    max_depth: int = 4
    max_object_keys: int = 24


class CompressionConfig(BaseModel):
    """Older-history condensation settings."""
    enabled: bool = True
    trigger_messages: int = 24
    preserve_recent: int = 8
    max_summary_chars: int = 1600
    resummarize_every: int = 8  # new compressible messages before the cached summary is rebuilt
    use_live_model: bool = False


class AutocaptureConfig(BaseModel):
    """Recurring-intent detection that proposes a tracked habit."""
    enabled: bool = True
    min_mentions: int = 2
    lookback_messages: int = 12
    cooldown_minutes: int = 180


class ChatConfig(BaseModel):
    """Turn controller configuration."""
    user_name: str = "friend"
    assistant_name: str = "Companion"
    max_tool_rounds: int = 4
    history_limit: int = 10
    history_page_size: int = 20
    max_citations: int = 8
    stream_chunk_size: int = 48
    use_function_calling: bool = True
    parallel_tool_calls: bool = True
    pending_action_ttl_minutes: int = 120
    compaction: CompactionConfig = Field(default_factory=CompactionConfig)
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    autocapture: AutocaptureConfig = Field(default_factory=AutocaptureConfig)


class LoggingConfig(BaseModel):
    json_output: bool = True
    level: str = "INFO"


class Config(BaseSettings):
    """Root configuration for the companion chat core."""
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="COMPANION_",
        env_nested_delimiter="__",
    )
