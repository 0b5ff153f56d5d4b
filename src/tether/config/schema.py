"""Pydantic models for tether configuration."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator


class ServiceConfig(BaseModel):
    """Connection settings for the reasoning service."""

    api_key: str | None = None
    api_key_env: str | None = "OPENAI_API_KEY"
    base_url: str | None = None
    assistant_id: str = ""


class EngineConfig(BaseModel):
    """Run engine behaviour."""

    poll_interval: float = Field(1.0, ge=0.0)
    parallel_tool_calls: bool = False
    max_tool_rounds: int = Field(0, ge=0)  # 0 = unlimited
    restart_on_rate_limit: bool = False


class RetrySettings(BaseModel):
    """Retry policy for transient service call failures."""

    max_retries: int = Field(3, ge=0)
    base_delay: float = Field(1.0, ge=0.0)
    max_delay: float = Field(60.0, ge=0.0)
    jitter: bool = True


class ToolsConfig(BaseModel):
    """Tool registry, store and hot-reload settings."""

    store_dir: str = "~/.local/share/tether/tools"
    watch_dir: str = ""
    watch_debounce_ms: int = Field(1600, ge=0)
    builtin: bool = True
    author: str = "tether"


class SandboxConfig(BaseModel):
    """Out-of-process execution of scripted tools."""

    python: str = "python3"
    timeout: int = Field(30, gt=0)
    max_output: int = Field(10_000, gt=0)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "WARNING"
    file: str = ""

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            msg = f"unknown log level {value!r}"
            raise ValueError(msg)
        return level


class TetherConfig(BaseModel):
    """Top-level configuration for tether."""

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
