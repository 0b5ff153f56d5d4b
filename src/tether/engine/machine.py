"""Run state machine: phases, run state, transitions, guards.

Pure logic module. No IO (no service calls, no tool execution).
The run engine performs the work; this module decides which phase
changes are legal and records them on the run state.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from tether.core.errors import RunError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tether.tools.base import ToolCall, ToolOutput


class RunPhase(enum.Enum):
    """Phases of one assistant run."""

    CREATED = "created"
    RUN_CREATED = "run_created"
    POLLING = "polling"
    REQUIRES_ACTION = "requires_action"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# ── Data classes ──────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class RunResult:
    """Outcome of one submitted message."""

    success: bool
    data: str
    phase: RunPhase
    error: str | None = None
    thread_id: str | None = None
    run_id: str | None = None


@dataclass
class RunState:
    """Mutable state for one run.

    Created per submitted message; the thread id is carried over from
    the engine so consecutive runs share a conversation.
    """

    thread_id: str | None = None
    run_id: str | None = None
    max_tool_rounds: int = 0  # 0 = unlimited

    phase: RunPhase = RunPhase.CREATED

    # Current requires_action batch
    pending_tool_calls: list[ToolCall] = field(default_factory=list)
    collected_outputs: list[ToolOutput] = field(default_factory=list)

    # Run-scoped state threaded through every tool call
    shared: dict[str, Any] = field(default_factory=dict)

    latest_message: str = ""
    tool_rounds: int = 0
    rate_limit_retries: int = 0
    cancel_requested: bool = False

    error: str | None = None

    def _clear_batch(self) -> None:
        self.pending_tool_calls = []
        self.collected_outputs = []


# ── State machine ─────────────────────────────────────────────

# Transitions allowed from non-terminal states.
# FAILED and CANCELLED can be reached from any non-terminal state.
_VALID_TRANSITIONS: dict[RunPhase, frozenset[RunPhase]] = {
    RunPhase.CREATED: frozenset({RunPhase.RUN_CREATED}),
    RunPhase.RUN_CREATED: frozenset({RunPhase.POLLING}),
    RunPhase.POLLING: frozenset(
        {RunPhase.POLLING, RunPhase.REQUIRES_ACTION, RunPhase.COMPLETED}
    ),
    RunPhase.REQUIRES_ACTION: frozenset({RunPhase.POLLING}),
    RunPhase.COMPLETED: frozenset(),
    RunPhase.FAILED: frozenset(),
    RunPhase.CANCELLED: frozenset(),
}

_TERMINAL_PHASES: frozenset[RunPhase] = frozenset(
    {RunPhase.COMPLETED, RunPhase.FAILED, RunPhase.CANCELLED}
)

_ALWAYS_REACHABLE: frozenset[RunPhase] = frozenset(
    {RunPhase.FAILED, RunPhase.CANCELLED}
)


class RunStateMachine:
    """Manages run phase transitions with guard validation.

    Pure logic. Validates that transitions are legal and that guard
    conditions are met, then mutates the run state.
    """

    def __init__(self, state: RunState) -> None:
        self._state = state

    @property
    def state(self) -> RunState:
        """The run state managed by this machine."""
        return self._state

    @property
    def phase(self) -> RunPhase:
        """Current phase."""
        return self._state.phase

    @property
    def is_terminal(self) -> bool:
        """Whether the run has finished."""
        return self._state.phase in _TERMINAL_PHASES

    def can_transition(self, to: RunPhase) -> bool:
        """Check if a transition is valid without raising."""
        if self._state.phase in _TERMINAL_PHASES:
            return False
        if to in _ALWAYS_REACHABLE:
            return True
        if to not in _VALID_TRANSITIONS.get(self._state.phase, frozenset()):
            return False
        return self._check_guard(to) is None

    def transition(self, to: RunPhase) -> None:
        """Execute a phase transition with guard validation.

        Raises:
            RunError: If the transition is invalid or a guard
                condition is not met.
        """
        self._validate_transition(to)
        self._apply_transition(to)

    def fail(self, error: str) -> None:
        """Transition to FAILED with an error message.

        Raises:
            RunError: If already in a terminal phase.
        """
        self.transition(RunPhase.FAILED)
        self._state.error = error

    def cancel(self) -> None:
        """Transition to CANCELLED.

        Raises:
            RunError: If already in a terminal phase.
        """
        self.transition(RunPhase.CANCELLED)

    # ── Internals ─────────────────────────────────────────────

    def _validate_transition(self, to: RunPhase) -> None:
        current = self._state.phase

        if current in _TERMINAL_PHASES:
            msg = f"Cannot transition from terminal phase {current.value}"
            raise RunError(msg)

        if to in _ALWAYS_REACHABLE:
            return

        valid = _VALID_TRANSITIONS.get(current, frozenset())
        if to not in valid:
            msg = f"Invalid transition: {current.value} -> {to.value}"
            raise RunError(msg)

        guard_error = self._check_guard(to)
        if guard_error is not None:
            raise RunError(guard_error)

    def _check_guard(self, to: RunPhase) -> str | None:
        """Return an error message if a guard condition fails, else None."""
        st = self._state

        if to == RunPhase.RUN_CREATED:
            if not st.thread_id:
                return "Cannot start run: no thread"
            if not st.run_id:
                return "Cannot start run: no run id"

        elif to == RunPhase.REQUIRES_ACTION:
            if not st.pending_tool_calls:
                return "Cannot dispatch: no pending tool calls"
            if st.max_tool_rounds and st.tool_rounds >= st.max_tool_rounds:
                return f"Cannot dispatch: max tool rounds ({st.max_tool_rounds}) reached"

        elif to == RunPhase.POLLING and st.phase == RunPhase.REQUIRES_ACTION:
            if len(st.collected_outputs) != len(st.pending_tool_calls):
                return "Cannot resume polling: tool outputs incomplete"

        return None

    def _apply_transition(self, to: RunPhase) -> None:
        current = self._state.phase

        if to == RunPhase.REQUIRES_ACTION:
            self._state.tool_rounds += 1
            self._state.collected_outputs = []

        elif to == RunPhase.POLLING and current == RunPhase.REQUIRES_ACTION:
            self._state._clear_batch()

        self._state.phase = to

    def valid_transitions(self) -> Sequence[RunPhase]:
        """Return the list of currently valid transitions."""
        if self._state.phase in _TERMINAL_PHASES:
            return []
        candidates = list(_VALID_TRANSITIONS.get(self._state.phase, frozenset()))
        for phase in (RunPhase.FAILED, RunPhase.CANCELLED):
            if phase not in candidates:
                candidates.append(phase)
        return [t for t in candidates if self.can_transition(t)]
