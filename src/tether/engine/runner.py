"""Run engine: drives one assistant run from message to final answer.

Each ``submit`` posts a user message to the engine's thread, starts a
run and polls it until it reaches a terminal phase. When the service
asks for tool outputs the engine dispatches the whole batch through the
availability map and submits every output together. Transient service
errors are retried with backoff; a run that fails with a rate-limit hint
is polled again after the hinted wait.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import TYPE_CHECKING, Any

from tether.core.retry import RetryConfig, rate_limit_backoff_ms, retry_with_backoff
from tether.engine.cancellation import CancellationToken
from tether.engine.machine import RunPhase, RunResult, RunState, RunStateMachine
from tether.service.base import RunStatus
from tether.tools.base import ToolOutput

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from tether.config.schema import EngineConfig
    from tether.service.base import ReasoningService
    from tether.tools.base import ToolCall
    from tether.tools.executor import ToolExecutor

    ToolFunction = Callable[[dict[str, Any]], Any]
    UpdateCallback = Callable[[str, object], None]

logger = logging.getLogger(__name__)

FAILED_PREFIX = "failed run: "
CANCELLED_MESSAGE = "cancelled run"
EMPTY_MESSAGE = "\n"

_WAITING = frozenset({RunStatus.QUEUED, RunStatus.IN_PROGRESS, RunStatus.CANCELLING})


def encode_output(result: Any) -> str:
    """Strings pass through; anything else is JSON-encoded."""
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


def _parse_arguments(raw: str) -> dict[str, Any]:
    args = json.loads(raw or "{}")
    if not isinstance(args, dict):
        msg = f"arguments must be a JSON object, got {type(args).__name__}"
        raise ValueError(msg)
    return args


class RunEngine:
    """Runs messages against one assistant on one thread.

    Args:
        service: Reasoning-service adapter.
        assistant_id: Assistant that every run uses.
        executor: Tool executor; its registry feeds the availability map.
        tools: Extra ``name -> async (args) -> result`` functions. These
            win over registry tools with the same name.
        config: Engine settings (poll interval, parallel dispatch).
        retry: Retry policy for transient service call failures.
        thread_id: Existing thread to continue, else one is created on
            the first submit.
        on_update: Optional ``(event, data)`` progress callback.
    """

    def __init__(
        self,
        service: ReasoningService,
        *,
        assistant_id: str,
        executor: ToolExecutor | None = None,
        tools: Mapping[str, ToolFunction] | None = None,
        config: EngineConfig | None = None,
        retry: RetryConfig | None = None,
        thread_id: str | None = None,
        on_update: UpdateCallback | None = None,
    ) -> None:
        self._service = service
        self._assistant_id = assistant_id
        self._executor = executor
        self._tools: dict[str, ToolFunction] = dict(tools or {})
        self._poll_interval = config.poll_interval if config else 1.0
        self._parallel = config.parallel_tool_calls if config else False
        self._max_tool_rounds = config.max_tool_rounds if config else 0
        self._restart_on_rate_limit = (
            config.restart_on_rate_limit if config else False
        )
        self._retry = retry or RetryConfig()
        self._thread_id = thread_id
        self._on_update = on_update
        self._token = CancellationToken()
        self._active: RunState | None = None

    @property
    def thread_id(self) -> str | None:
        return self._thread_id

    @property
    def is_running(self) -> bool:
        return self._active is not None

    @property
    def cancel_requested(self) -> bool:
        return self._token.is_requested

    # ── Public API ────────────────────────────────────────────

    async def submit(self, text: str) -> RunResult:
        """Run *text* to a terminal phase and return the outcome.

        Never raises for run or service failures; those come back as
        ``RunResult(success=False)``.
        """
        state = RunState(
            thread_id=self._thread_id,
            max_tool_rounds=self._max_tool_rounds,
            cancel_requested=self._token.is_requested,
        )
        machine = RunStateMachine(state)
        self._active = state
        try:
            await self._start(machine, text)
            await self._poll(machine)
        except Exception as e:
            logger.exception("Run on thread %s failed", state.thread_id)
            if not machine.is_terminal:
                machine.fail(str(e))
            state.latest_message = f"{FAILED_PREFIX}{e}"
            self._emit("run_failed", str(e))
        finally:
            self._active = None
        return self._result(state)

    async def cancel(self) -> None:
        """Cancel the current run, or the next one if none is active yet.

        With a live run the remote cancel is sent right away and the
        poll loop picks up the cancelled status.
        """
        state = self._active
        if state is None or not state.thread_id or not state.run_id:
            self._token.request()
            if state is not None:
                state.cancel_requested = True
            logger.info("Cancel requested before run start")
            return

        self._token.clear()
        state.cancel_requested = True
        thread_id, run_id = state.thread_id, state.run_id
        await self._call(lambda: self._service.cancel_run(thread_id, run_id))
        self._emit("run_cancelling", run_id)

    # ── Phases ────────────────────────────────────────────────

    async def _start(self, machine: RunStateMachine, text: str) -> None:
        state = machine.state
        if not state.thread_id:
            state.thread_id = await self._call(self._service.create_thread)
            self._thread_id = state.thread_id
            self._emit("thread_created", state.thread_id)

        thread_id = state.thread_id
        await self._call(lambda: self._service.post_message(thread_id, text))
        self._emit("message_posted", text)

        state.run_id = await self._call(
            lambda: self._service.create_run(thread_id, self._assistant_id)
        )
        self._emit("run_created", state.run_id)
        machine.transition(RunPhase.RUN_CREATED)

    async def _poll(self, machine: RunStateMachine) -> None:
        state = machine.state
        machine.transition(RunPhase.POLLING)
        thread_id = state.thread_id or ""

        while True:
            if self._token.is_requested:
                await self._cancel_remote(machine)
                return

            run_id = state.run_id or ""
            snapshot = await self._call(
                lambda: self._service.get_run_status(thread_id, run_id)
            )
            self._emit("run_status", snapshot.status)
            status = snapshot.run_status

            if status in _WAITING:
                machine.transition(RunPhase.POLLING)
                await asyncio.sleep(self._poll_interval)
                continue

            if status == RunStatus.REQUIRES_ACTION:
                state.pending_tool_calls = list(snapshot.required_calls)
                if not machine.can_transition(RunPhase.REQUIRES_ACTION):
                    reason = (
                        f"max tool rounds ({state.max_tool_rounds}) reached"
                        if state.pending_tool_calls
                        else "requires_action without tool calls"
                    )
                    await self._finish_failed(machine, reason)
                    return
                machine.transition(RunPhase.REQUIRES_ACTION)
                state.collected_outputs = await self._dispatch(state)
                outputs = list(state.collected_outputs)
                await self._call(
                    lambda: self._service.submit_tool_outputs(
                        thread_id, run_id, outputs
                    )
                )
                self._emit("outputs_submitted", len(outputs))
                machine.transition(RunPhase.POLLING)
                continue

            if status == RunStatus.COMPLETED:
                state.latest_message = (
                    await self._latest_assistant_message(thread_id) or EMPTY_MESSAGE
                )
                machine.transition(RunPhase.COMPLETED)
                self._emit("run_completed", state.latest_message)
                return

            if status == RunStatus.CANCELLED:
                state.latest_message = CANCELLED_MESSAGE
                machine.cancel()
                self._emit("run_cancelled", run_id)
                return

            if status == RunStatus.FAILED:
                backoff_ms = rate_limit_backoff_ms(snapshot.error_detail)
                if backoff_ms is not None:
                    await self._wait_out_rate_limit(machine, backoff_ms)
                    continue

            # failed, expired, incomplete or a status we don't know
            await self._finish_failed(
                machine,
                snapshot.error_detail,
                fallback=f"run ended with status {snapshot.status}",
            )
            return

    async def _wait_out_rate_limit(
        self, machine: RunStateMachine, backoff_ms: int
    ) -> None:
        """Sleep for the hinted wait, then go back to polling.

        The same run is polled again unless ``restart_on_rate_limit`` is
        set, in which case a fresh run is started on the same thread.
        """
        state = machine.state
        state.rate_limit_retries += 1
        logger.warning(
            "Run %s rate limited, polling again in %d ms (attempt %d)",
            state.run_id,
            backoff_ms,
            state.rate_limit_retries,
        )
        self._emit("rate_limited", backoff_ms)
        await asyncio.sleep(backoff_ms / 1000)

        if self._restart_on_rate_limit:
            thread_id = state.thread_id or ""
            state.run_id = await self._call(
                lambda: self._service.create_run(thread_id, self._assistant_id)
            )
            self._emit("run_created", state.run_id)
        machine.transition(RunPhase.POLLING)

    async def _finish_failed(
        self,
        machine: RunStateMachine,
        detail: str | None,
        *,
        fallback: str = "run failed",
    ) -> None:
        state = machine.state
        if detail:
            state.latest_message = f"{FAILED_PREFIX}{detail}"
        else:
            state.latest_message = (
                await self._latest_assistant_message(state.thread_id or "")
                or EMPTY_MESSAGE
            )
        machine.fail(detail or fallback)
        logger.warning("Run %s failed: %s", state.run_id, state.error)
        self._emit("run_failed", state.error)

    async def _cancel_remote(self, machine: RunStateMachine) -> None:
        state = machine.state
        self._token.clear()
        thread_id, run_id = state.thread_id or "", state.run_id or ""
        await self._call(lambda: self._service.cancel_run(thread_id, run_id))
        state.latest_message = CANCELLED_MESSAGE
        machine.cancel()
        self._emit("run_cancelled", run_id)

    # ── Tool dispatch ─────────────────────────────────────────

    def _availability(self, state: RunState) -> dict[str, ToolFunction]:
        available: dict[str, ToolFunction] = {}
        if self._executor is not None:
            available.update(self._executor.availability(state))
        available.update(self._tools)
        return available

    async def _dispatch(self, state: RunState) -> list[ToolOutput]:
        """Resolve every pending call to exactly one output."""
        available = self._availability(state)
        calls = state.pending_tool_calls
        if self._parallel:
            results = await asyncio.gather(
                *(self._run_call(call, available) for call in calls)
            )
            return list(results)
        return [await self._run_call(call, available) for call in calls]

    async def _run_call(
        self, call: ToolCall, available: Mapping[str, ToolFunction]
    ) -> ToolOutput:
        fn = available.get(call.name)
        if fn is None:
            logger.warning("Tool %s requested but not available", call.name)
            self._emit("tool_failed", call.name)
            return ToolOutput(call.id, f"{call.name} is not available.", is_error=True)

        try:
            args = _parse_arguments(call.arguments)
            result = fn(args)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.warning("Tool %s failed: %s", call.name, e)
            self._emit("tool_failed", call.name)
            return ToolOutput(call.id, f"error: {e}", is_error=True)

        self._emit("tool_executed", call.name)
        return ToolOutput(call.id, encode_output(result))

    # ── Helpers ───────────────────────────────────────────────

    async def _latest_assistant_message(self, thread_id: str) -> str | None:
        messages = await self._call(lambda: self._service.list_messages(thread_id))
        for message in messages:
            if message.role == "assistant" and message.content:
                return message.content
        return None

    async def _call(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        return await retry_with_backoff(
            fn, self._retry, on_retry=self._log_retry, cancel=self._token.event
        )

    @staticmethod
    def _log_retry(attempt: int, delay: float, error: Exception) -> None:
        logger.info("Retrying service call (attempt %d) in %.1fs: %s", attempt, delay, error)

    def _emit(self, event: str, data: object) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(event, data)
        except Exception:
            logger.warning("on_update callback failed for %s", event, exc_info=True)

    def _result(self, state: RunState) -> RunResult:
        success = state.phase == RunPhase.COMPLETED
        error = state.error
        if state.phase == RunPhase.CANCELLED:
            error = "cancelled"
        return RunResult(
            success=success,
            data=state.latest_message,
            phase=state.phase,
            error=None if success else error,
            thread_id=state.thread_id,
            run_id=state.run_id,
        )
