"""Tests for the out-of-process script sandbox.

These start real interpreter subprocesses (``sys.executable``).
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tether.config.schema import SandboxConfig
from tether.core.errors import ToolExecutionError
from tether.tools.sandbox import ScriptSandbox


@pytest.fixture
def sandbox(sandbox_config: SandboxConfig) -> ScriptSandbox:
    return ScriptSandbox(sandbox_config)


class TestScriptSandbox:
    async def test_returns_result(self, sandbox: ScriptSandbox):
        src = "def execute(params, state):\n    return params['a'] + params['b']\n"
        out = await sandbox.run("add", src, {"a": 2, "b": 3}, {})
        assert out.result == 5
        assert out.state == {}

    async def test_result_and_state_tuple(self, sandbox: ScriptSandbox):
        src = (
            "def execute(params, state):\n"
            "    state['count'] = state.get('count', 0) + 1\n"
            "    return 'ok', state\n"
        )
        out = await sandbox.run("count", src, {}, {"count": 1})
        assert out.result == "ok"
        assert out.state == {"count": 2}

    async def test_async_execute(self, sandbox: ScriptSandbox):
        src = "async def execute(params, state):\n    return {'x': 1}\n"
        out = await sandbox.run("a", src, {}, {})
        assert out.result == {"x": 1}

    async def test_printed_output_captured(self, sandbox: ScriptSandbox):
        src = "def execute(params, state):\n    print('hello')\n    return None\n"
        out = await sandbox.run("p", src, {}, {})
        assert out.result is None
        assert out.output == "hello"

    async def test_script_error(self, sandbox: ScriptSandbox):
        src = "def execute(params, state):\n    raise KeyError('missing')\n"
        with pytest.raises(ToolExecutionError, match="KeyError") as exc_info:
            await sandbox.run("bad", src, {}, {})
        assert exc_info.value.tool_name == "bad"

    async def test_missing_execute(self, sandbox: ScriptSandbox):
        with pytest.raises(ToolExecutionError, match="does not define execute"):
            await sandbox.run("empty", "x = 1\n", {}, {})

    async def test_syntax_error(self, sandbox: ScriptSandbox):
        with pytest.raises(ToolExecutionError, match="SyntaxError"):
            await sandbox.run("syn", "def execute(:\n", {}, {})

    async def test_hard_exit(self, sandbox: ScriptSandbox):
        src = "import os\ndef execute(params, state):\n    os._exit(3)\n"
        with pytest.raises(ToolExecutionError, match="exited with code 3"):
            await sandbox.run("exit", src, {}, {})

    async def test_result_truncated(self, sandbox_config: SandboxConfig):
        sb = ScriptSandbox(sandbox_config.model_copy(update={"max_output": 100}))
        src = "def execute(params, state):\n    return 'x' * 1000\n"
        out = await sb.run("long", src, {}, {})
        assert "truncated 900 chars" in out.result
        assert len(out.result) < 1000

    async def test_timeout_kills_process(self, sandbox: ScriptSandbox):
        proc = MagicMock()
        proc.communicate = AsyncMock(return_value=(b"", b""))
        proc.kill = MagicMock()
        with (
            patch.object(asyncio, "create_subprocess_exec", AsyncMock(return_value=proc)),
            patch.object(asyncio, "wait_for", AsyncMock(side_effect=TimeoutError)),
            pytest.raises(ToolExecutionError, match="timed out after 10 seconds"),
        ):
            await sandbox.run("slow", "def execute(p, s): pass", {}, {})
        proc.kill.assert_called_once()

    async def test_interpreter_missing(self):
        sb = ScriptSandbox(SandboxConfig(python="/nonexistent/python"))
        with pytest.raises(ToolExecutionError, match="Failed to start sandbox"):
            await sb.run("t", "def execute(p, s): pass", {}, {})
