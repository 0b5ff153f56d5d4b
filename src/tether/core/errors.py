"""Exception hierarchy for tether.

Every module imports from here. The hierarchy is:

    TetherError
    ├── ServiceError(service_id)
    │   ├── ServiceAuthError
    │   ├── ServiceRateLimitError(retry_after)
    │   ├── ServiceTimeoutError
    │   ├── ServiceOverloadedError
    │   └── ServiceNotFoundError
    ├── RunError
    ├── SessionError
    ├── ToolError(tool_name)
    │   ├── ToolNotAvailableError
    │   └── ToolExecutionError
    ├── ConfigError
    └── StorageError
"""

from __future__ import annotations


class TetherError(Exception):
    """Base exception for all tether errors."""


# ─── Service Errors ───────────────────────────────────────────


class ServiceError(TetherError):
    """Base for reasoning-service errors."""

    def __init__(self, service_id: str, message: str) -> None:
        self.service_id = service_id
        super().__init__(f"[{service_id}] {message}")


class ServiceAuthError(ServiceError):
    """Invalid or missing API key."""


class ServiceRateLimitError(ServiceError):
    """Rate limit exceeded on a service call. Includes retry_after if available."""

    def __init__(self, service_id: str, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        msg = "Rate limited"
        if retry_after is not None:
            msg += f" (retry after {retry_after}s)"
        super().__init__(service_id, msg)


class ServiceTimeoutError(ServiceError):
    """Service call timed out."""


class ServiceOverloadedError(ServiceError):
    """Service is overloaded (529, 503)."""


class ServiceNotFoundError(ServiceError):
    """Thread, run or assistant does not exist."""


# ─── Run Errors ───────────────────────────────────────────────


class RunError(TetherError):
    """Invalid run state transition or run-level protocol error."""


# ─── Session Errors ──────────────────────────────────────────


class SessionError(TetherError):
    """Invalid session index or operation on a busy session."""


# ─── Tool Errors ──────────────────────────────────────────────


class ToolError(TetherError):
    """Base for tool resolution and execution errors."""

    def __init__(self, tool_name: str, message: str) -> None:
        self.tool_name = tool_name
        super().__init__(message)


class ToolNotAvailableError(ToolError):
    """No callable is bound to the requested tool name."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(tool_name, f"{tool_name} is not available.")


class ToolExecutionError(ToolError):
    """A tool body failed while running."""


# ─── Configuration Errors ─────────────────────────────────────


class ConfigError(TetherError):
    """Invalid configuration."""


# ─── Storage Errors ───────────────────────────────────────────


class StorageError(TetherError):
    """Tool store read/write error."""
