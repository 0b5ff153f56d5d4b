"""Tool executor: binds registry records to invocable callables.

A bound tool has the shape ``(params, shared_state) -> (result,
shared_state')``. Native capabilities run in-process; scripted ones go
through the :class:`~tether.tools.sandbox.ScriptSandbox`. Every call
leaves a progress marker and a serialized work product in the shared
state and bumps the record's usage count. Errors from the tool body
propagate unchanged to the caller.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import TYPE_CHECKING, Any

from tether.core.errors import ToolNotAvailableError
from tether.tools.base import NativeCapability

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tether.engine.machine import RunState
    from tether.tools.base import ToolRecord
    from tether.tools.registry import ToolRegistry
    from tether.tools.sandbox import ScriptSandbox

logger = logging.getLogger(__name__)

PROGRESS_KEY = "progress"
WORK_KEY = "work"


def _ensure_lists(state: dict[str, Any]) -> dict[str, Any]:
    state.setdefault(PROGRESS_KEY, [])
    state.setdefault(WORK_KEY, [])
    return state


def merge_shared_state(
    current: dict[str, Any],
    base: dict[str, Any],
    updated: dict[str, Any],
) -> dict[str, Any]:
    """Fold one call's changes into the run's shared state.

    *base* is what the call started from and *updated* what it returned;
    *current* may already hold other calls' results when calls in a batch
    overlap. Entries the call appended to the progress and work lists
    are appended to *current*'s lists. Other keys the call changed
    overwrite *current*, so for those the last call to finish wins.
    """
    merged = dict(current)
    for key, value in updated.items():
        if key in (PROGRESS_KEY, WORK_KEY):
            continue
        if key not in base or base[key] != value:
            merged[key] = value
    for key in (PROGRESS_KEY, WORK_KEY):
        added = list(updated.get(key, []))[len(base.get(key, [])) :]
        merged[key] = [*current.get(key, []), *added]
    return merged


class BoundTool:
    """One registry record bound to its execution strategy."""

    def __init__(
        self,
        record: ToolRecord,
        registry: ToolRegistry,
        sandbox: ScriptSandbox,
    ) -> None:
        self._record = record
        self._registry = registry
        self._sandbox = sandbox

    @property
    def name(self) -> str:
        return self._record.name

    @property
    def version(self) -> str:
        return self._record.version

    async def __call__(
        self,
        params: dict[str, Any],
        shared_state: dict[str, Any] | None = None,
    ) -> tuple[Any, dict[str, Any]]:
        state = _ensure_lists(copy.deepcopy(shared_state or {}))
        capability = self._record.capability

        if isinstance(capability, NativeCapability):
            result = await capability.handler(**params)
        else:
            outcome = await self._sandbox.run(
                self.name, capability.source, params, state
            )
            result = outcome.result
            state = _ensure_lists(outcome.state)
            if outcome.output:
                logger.debug("%s printed: %s", self.name, outcome.output)

        state[PROGRESS_KEY].append(f"{self.name}@{self.version} done")
        state[WORK_KEY].append(
            json.dumps(
                {
                    "tool": self.name,
                    "version": self.version,
                    "params": params,
                    "result": result,
                },
                default=str,
            )
        )
        self._registry.record_usage(self.name)
        return result, state


class ToolExecutor:
    """Builds bound tools and availability maps from a registry."""

    def __init__(self, registry: ToolRegistry, sandbox: ScriptSandbox) -> None:
        self._registry = registry
        self._sandbox = sandbox

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def bind(self, record: ToolRecord) -> BoundTool:
        return BoundTool(record, self._registry, self._sandbox)

    def bind_name(self, name: str) -> BoundTool:
        """Bind the current version of *name*.

        Raises:
            ToolNotAvailableError: If no live tool has this name.
        """
        record = self._registry.get_tool(name)
        if record is None:
            raise ToolNotAvailableError(name)
        return self.bind(record)

    def availability(
        self, run_state: RunState
    ) -> dict[str, Callable[[dict[str, Any]], Awaitable[Any]]]:
        """Map every live tool name to ``async (args) -> result``.

        Each call resolves the tool's current version at call time and
        threads ``run_state.shared`` through it.
        """

        def _make(name: str) -> Callable[[dict[str, Any]], Awaitable[Any]]:
            async def _invoke(args: dict[str, Any]) -> Any:
                bound = self.bind_name(name)
                base = copy.deepcopy(run_state.shared)
                result, updated = await bound(args, base)
                run_state.shared = merge_shared_state(run_state.shared, base, updated)
                return result

            return _invoke

        return {name: _make(name) for name in self._registry.list_names()}
