"""Core types, errors, and shared utilities."""

from tether.core.errors import (
    ConfigError,
    RunError,
    ServiceAuthError,
    ServiceError,
    ServiceNotFoundError,
    ServiceOverloadedError,
    ServiceRateLimitError,
    ServiceTimeoutError,
    SessionError,
    StorageError,
    TetherError,
    ToolError,
    ToolExecutionError,
    ToolNotAvailableError,
)
from tether.core.retry import (
    RetryConfig,
    is_retryable,
    rate_limit_backoff_ms,
    retry_with_backoff,
)

__all__ = [
    "ConfigError",
    "RetryConfig",
    "RunError",
    "ServiceAuthError",
    "ServiceError",
    "ServiceNotFoundError",
    "ServiceOverloadedError",
    "ServiceRateLimitError",
    "ServiceTimeoutError",
    "SessionError",
    "StorageError",
    "TetherError",
    "ToolError",
    "ToolExecutionError",
    "ToolNotAvailableError",
    "is_retryable",
    "rate_limit_backoff_ms",
    "retry_with_backoff",
]
