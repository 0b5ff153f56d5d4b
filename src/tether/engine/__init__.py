"""Run engine: state machine, cancellation and the polling driver."""

from tether.engine.cancellation import CancellationToken
from tether.engine.machine import RunPhase, RunResult, RunState, RunStateMachine
from tether.engine.runner import RunEngine

__all__ = [
    "CancellationToken",
    "RunEngine",
    "RunPhase",
    "RunResult",
    "RunState",
    "RunStateMachine",
]
