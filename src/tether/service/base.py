"""Reasoning-service interface and data classes.

The run engine needs exactly seven operations from the service; every
adapter implements the ``ReasoningService`` protocol. Data classes are
immutable (frozen dataclasses with slots).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from tether.tools.base import ToolCall

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tether.tools.base import ToolOutput


class RunStatus(enum.Enum):
    """Remote run status as reported by the service."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    FAILED = "failed"
    COMPLETED = "completed"
    EXPIRED = "expired"
    INCOMPLETE = "incomplete"

    @classmethod
    def parse(cls, value: str) -> RunStatus | None:
        """Return the matching status, or None for values we don't know."""
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True, slots=True)
class RunSnapshot:
    """Status of a run at one poll."""

    status: str
    required_calls: tuple[ToolCall, ...] = ()
    error_detail: str | None = None

    @property
    def run_status(self) -> RunStatus | None:
        return RunStatus.parse(self.status)


@dataclass(frozen=True, slots=True)
class ServiceMessage:
    """A message on a thread."""

    role: str  # "user", "assistant"
    content: str
    id: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class ReasoningService(Protocol):
    """Protocol that all reasoning-service adapters must satisfy.

    Implementations hold connection config only; the run engine owns
    all run state.
    """

    @property
    def service_id(self) -> str:
        """Unique identifier for this service (e.g. 'openai')."""
        ...

    async def create_thread(self) -> str:
        """Create a conversation thread and return its id."""
        ...

    async def post_message(self, thread_id: str, content: str) -> None:
        """Append a user message to a thread."""
        ...

    async def create_run(self, thread_id: str, assistant_id: str) -> str:
        """Start a run of *assistant_id* on a thread and return its id."""
        ...

    async def get_run_status(self, thread_id: str, run_id: str) -> RunSnapshot:
        """Fetch the current status of a run."""
        ...

    async def submit_tool_outputs(
        self, thread_id: str, run_id: str, outputs: Sequence[ToolOutput]
    ) -> None:
        """Submit the outputs for every pending tool call of a run."""
        ...

    async def cancel_run(self, thread_id: str, run_id: str) -> None:
        """Ask the service to cancel a run."""
        ...

    async def list_messages(self, thread_id: str) -> list[ServiceMessage]:
        """Return a thread's messages, newest first."""
        ...
