"""Configuration loading and validation."""

from tether.config.loader import load_config
from tether.config.schema import (
    EngineConfig,
    LoggingConfig,
    RetrySettings,
    SandboxConfig,
    ServiceConfig,
    TetherConfig,
    ToolsConfig,
)

__all__ = [
    "EngineConfig",
    "LoggingConfig",
    "RetrySettings",
    "SandboxConfig",
    "ServiceConfig",
    "TetherConfig",
    "ToolsConfig",
    "load_config",
]
