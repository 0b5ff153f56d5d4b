"""Reasoning-service protocol and adapters."""

from tether.service.base import (
    ReasoningService,
    RunSnapshot,
    RunStatus,
    ServiceMessage,
)

__all__ = [
    "ReasoningService",
    "RunSnapshot",
    "RunStatus",
    "ServiceMessage",
]
