"""Script sandbox: runs scripted tool bodies in a separate interpreter.

Scripted tools are never evaluated in the engine's process. Each call
starts a fresh ``python`` subprocess running a small harness that
reads ``{"source", "params", "state"}`` from stdin, calls the source's
``execute(params, state)`` and writes a JSON envelope to stdout. The
process boundary limits what a broken tool can damage; it is not a
security boundary.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from tether.core.errors import ToolExecutionError

if TYPE_CHECKING:
    from tether.config.schema import SandboxConfig

logger = logging.getLogger(__name__)

_ENVELOPE_MARKER = "\x1e__tether_envelope__"

_HARNESS = f"""
import asyncio, inspect, json, sys

payload = json.load(sys.stdin)
namespace = {{"__name__": "tether_tool"}}
try:
    exec(compile(payload["source"], payload.get("filename", "<tool>"), "exec"), namespace)
    fn = namespace.get("execute")
    if not callable(fn):
        raise NameError("tool source does not define execute(params, state)")
    value = fn(payload["params"], payload["state"])
    if inspect.iscoroutine(value):
        value = asyncio.run(value)
    if isinstance(value, tuple) and len(value) == 2 and isinstance(value[1], dict):
        result, state = value
    else:
        result, state = value, payload["state"]
    envelope = {{"ok": True, "result": result, "state": state}}
except Exception as exc:
    envelope = {{"ok": False, "error": type(exc).__name__ + ": " + str(exc)}}
sys.stdout.write("\\n" + {_ENVELOPE_MARKER!r} + json.dumps(envelope, default=str))
"""


@dataclass(frozen=True, slots=True)
class SandboxResult:
    """Outcome of one sandboxed call."""

    result: Any
    state: dict[str, Any]
    output: str = ""  # anything the script printed


class ScriptSandbox:
    """Runs scripted tools via ``asyncio`` subprocesses."""

    def __init__(self, config: SandboxConfig | None = None) -> None:
        from tether.config.schema import SandboxConfig as SBConfig

        self._config = config or SBConfig()

    async def run(
        self,
        name: str,
        source: str,
        params: dict[str, Any],
        state: dict[str, Any],
    ) -> SandboxResult:
        """Execute *source* with *params* and *state*.

        Raises:
            ToolExecutionError: If the process cannot start, times out,
                exits abnormally, or the script raises.
        """
        payload = json.dumps(
            {
                "source": source,
                "filename": f"<tool:{name}>",
                "params": params,
                "state": state,
            },
            default=str,
        ).encode()

        try:
            proc = await asyncio.create_subprocess_exec(
                self._config.python,
                "-c",
                _HARNESS,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            msg = f"Failed to start sandbox for {name}: {exc}"
            raise ToolExecutionError(name, msg) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(payload),
                timeout=self._config.timeout,
            )
        except TimeoutError:
            proc.kill()
            await proc.communicate()
            msg = f"{name} timed out after {self._config.timeout} seconds."
            raise ToolExecutionError(name, msg) from None

        text = stdout.decode(errors="replace")
        printed, sep, raw_envelope = text.rpartition(_ENVELOPE_MARKER)
        if not sep:
            detail = stderr.decode(errors="replace").strip() or "(no output)"
            msg = f"{name} exited with code {proc.returncode}: {self._truncate(detail)}"
            raise ToolExecutionError(name, msg)

        try:
            envelope = json.loads(raw_envelope)
        except json.JSONDecodeError as exc:
            msg = f"{name} returned an unreadable result: {exc}"
            raise ToolExecutionError(name, msg) from exc

        if not envelope.get("ok"):
            raise ToolExecutionError(name, envelope.get("error", "unknown error"))

        if stderr:
            logger.debug("%s stderr: %s", name, stderr.decode(errors="replace"))

        result = envelope.get("result")
        if isinstance(result, str):
            result = self._truncate(result)
        return SandboxResult(
            result=result,
            state=envelope.get("state") or {},
            output=self._truncate(printed.rstrip("\n")),
        )

    def _truncate(self, text: str) -> str:
        """Truncate output to max_output characters."""
        if len(text) <= self._config.max_output:
            return text
        half = self._config.max_output // 2
        return (
            text[:half]
            + f"\n\n... [truncated {len(text) - self._config.max_output} chars] ...\n\n"
            + text[-half:]
        )
