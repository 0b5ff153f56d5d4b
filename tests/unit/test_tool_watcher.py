"""Tests for directory hot-reload of scripted tools."""

from __future__ import annotations

import asyncio
import os
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock, patch

import pytest
from watchfiles import Change

from tether.tools.watcher import (
    ToolWatcher,
    WatchEvent,
    WatchEventKind,
    parse_tool_file,
)

if TYPE_CHECKING:
    from pathlib import Path

    from tether.tools.registry import ToolRegistry

TOOL_V1 = '''"""Count words in text."""

SCHEMA = {"type": "object", "properties": {"text": {"type": "string"}}}
TAGS = ["text", "count"]


def execute(params, state):
    return len(params["text"].split())
'''

TOOL_V2 = TOOL_V1.replace("split()", "split(' ')")


def _write(path: Path, text: str, mtime: float) -> None:
    path.write_text(text)
    os.utime(path, (mtime, mtime))


@pytest.fixture
def tool_dir(tmp_path: Path) -> Path:
    d = tmp_path / "watched"
    d.mkdir()
    return d.resolve()


@pytest.fixture
def watcher(registry: ToolRegistry, tool_dir: Path) -> ToolWatcher:
    return ToolWatcher(registry, tool_dir, debounce_ms=10, author="watcher")


# ── parse_tool_file ──────────────────────────────────────────────


class TestParseToolFile:
    def test_reads_docstring_schema_tags(self, tool_dir: Path):
        path = tool_dir / "wc.py"
        path.write_text(TOOL_V1)
        tool = parse_tool_file(path)
        assert tool.name == "wc"
        assert tool.source == TOOL_V1
        assert tool.description == "Count words in text."
        assert tool.schema["properties"]["text"]["type"] == "string"
        assert tool.tags == ("text", "count")

    def test_defaults_when_absent(self, tool_dir: Path):
        path = tool_dir / "bare.py"
        path.write_text("def execute(params, state):\n    return 1\n")
        tool = parse_tool_file(path)
        assert tool.description == ""
        assert tool.schema == {}
        assert tool.tags == ()

    def test_non_literal_schema(self, tool_dir: Path):
        path = tool_dir / "dyn.py"
        path.write_text("SCHEMA = dict(type='object')\n")
        with pytest.raises(ValueError):
            parse_tool_file(path)

    def test_syntax_error(self, tool_dir: Path):
        path = tool_dir / "broken.py"
        path.write_text("def execute(:\n")
        with pytest.raises(SyntaxError):
            parse_tool_file(path)

    def test_not_executed(self, tool_dir: Path, tmp_path: Path):
        marker = tmp_path / "ran"
        path = tool_dir / "side.py"
        path.write_text(f"open({str(marker)!r}, 'w').close()\n")
        parse_tool_file(path)
        assert not marker.exists()


# ── polling ──────────────────────────────────────────────────────


class TestPoll:
    def test_added_changed_removed(self, watcher: ToolWatcher, tool_dir: Path):
        path = tool_dir / "wc.py"
        _write(path, TOOL_V1, 1_000)
        assert watcher.poll() == [WatchEvent(WatchEventKind.ADDED, path)]
        assert watcher.poll() == []

        _write(path, TOOL_V2, 2_000)
        assert watcher.poll() == [WatchEvent(WatchEventKind.CHANGED, path)]

        path.unlink()
        assert watcher.poll() == [WatchEvent(WatchEventKind.REMOVED, path)]

    def test_ignores_private_and_other_files(self, watcher: ToolWatcher, tool_dir: Path):
        (tool_dir / "_helper.py").write_text("x = 1")
        (tool_dir / ".hidden.py").write_text("x = 1")
        (tool_dir / "notes.txt").write_text("hi")
        assert watcher.poll() == []

    def test_missing_directory(self, registry: ToolRegistry, tmp_path: Path):
        w = ToolWatcher(registry, tmp_path / "absent")
        assert w.poll() == []


# ── registry effects ─────────────────────────────────────────────


class TestHandle:
    def test_add_registers_tool(self, watcher: ToolWatcher, tool_dir: Path, registry: ToolRegistry):
        _write(tool_dir / "wc.py", TOOL_V1, 1_000)
        assert watcher.load_existing() == 1
        rec = registry.get_tool("wc")
        assert rec is not None
        assert rec.version == "1.0.0"
        assert rec.tags == frozenset({"text", "count"})
        assert rec.description == "Count words in text."
        assert rec.metadata.author == "watcher"

    def test_add_duplicate_is_skipped(
        self,
        watcher: ToolWatcher,
        tool_dir: Path,
        registry: ToolRegistry,
        caplog: pytest.LogCaptureFixture,
    ):
        registry.add_tool("wc", "original")
        _write(tool_dir / "wc.py", TOOL_V1, 1_000)
        watcher.scan()
        assert registry.get_tool("wc").source == "original"  # type: ignore[union-attr]
        assert "already registered" in caplog.text

    def test_change_updates_tool(self, watcher: ToolWatcher, tool_dir: Path, registry: ToolRegistry):
        path = tool_dir / "wc.py"
        _write(path, TOOL_V1, 1_000)
        watcher.scan()
        _write(path, TOOL_V2, 2_000)
        watcher.scan()
        rec = registry.get_tool("wc")
        assert rec is not None
        assert rec.version == "1.0.1"
        assert rec.source == TOOL_V2
        assert rec.history[-1].source == TOOL_V1

    def test_touch_without_edit_keeps_version(
        self, watcher: ToolWatcher, tool_dir: Path, registry: ToolRegistry
    ):
        path = tool_dir / "wc.py"
        _write(path, TOOL_V1, 1_000)
        watcher.scan()
        os.utime(path, (3_000, 3_000))
        watcher.scan()
        assert registry.get_tool("wc").version == "1.0.0"  # type: ignore[union-attr]

    def test_remove_removes_tool(self, watcher: ToolWatcher, tool_dir: Path, registry: ToolRegistry):
        path = tool_dir / "wc.py"
        _write(path, TOOL_V1, 1_000)
        watcher.scan()
        path.unlink()
        watcher.scan()
        assert "wc" not in registry
        assert [r.name for r in registry.removed_tools()] == ["wc"]

    def test_broken_file_logged_not_raised(
        self,
        watcher: ToolWatcher,
        tool_dir: Path,
        registry: ToolRegistry,
        caplog: pytest.LogCaptureFixture,
    ):
        _write(tool_dir / "bad.py", "def execute(:\n", 1_000)
        watcher.scan()
        assert "bad" not in registry
        assert "Error loading tool" in caplog.text


class TestTranslate:
    def test_new_file_is_added(self, watcher: ToolWatcher, tool_dir: Path):
        path = tool_dir / "wc.py"
        path.write_text(TOOL_V1)
        events = watcher.translate({(Change.added, str(path))})
        assert events == [WatchEvent(WatchEventKind.ADDED, path)]

    def test_known_file_is_changed(self, watcher: ToolWatcher, tool_dir: Path):
        path = tool_dir / "wc.py"
        _write(path, TOOL_V1, 1_000)
        watcher.scan()
        _write(path, TOOL_V2, 2_000)
        events = watcher.translate({(Change.modified, str(path))})
        assert events == [WatchEvent(WatchEventKind.CHANGED, path)]

    def test_replace_by_rename_is_a_change(self, watcher: ToolWatcher, tool_dir: Path):
        path = tool_dir / "wc.py"
        _write(path, TOOL_V1, 1_000)
        watcher.scan()
        _write(path, TOOL_V2, 2_000)
        changes = {(Change.deleted, str(path)), (Change.added, str(path))}
        assert watcher.translate(changes) == [WatchEvent(WatchEventKind.CHANGED, path)]

    def test_deleted_known_file_is_removed(self, watcher: ToolWatcher, tool_dir: Path):
        path = tool_dir / "wc.py"
        _write(path, TOOL_V1, 1_000)
        watcher.scan()
        path.unlink()
        events = watcher.translate({(Change.deleted, str(path))})
        assert events == [WatchEvent(WatchEventKind.REMOVED, path)]
        assert watcher.poll() == []

    def test_deleted_unknown_file_ignored(self, watcher: ToolWatcher, tool_dir: Path):
        assert watcher.translate({(Change.deleted, str(tool_dir / "gone.py"))}) == []

    def test_non_tool_files_ignored(self, watcher: ToolWatcher, tool_dir: Path):
        sub = tool_dir / "sub"
        sub.mkdir()
        for name in ("notes.txt", "_private.py", ".hidden.py"):
            (tool_dir / name).write_text("x")
        (sub / "nested.py").write_text(TOOL_V1)
        changes = {
            (Change.added, str(p))
            for p in (
                tool_dir / "notes.txt",
                tool_dir / "_private.py",
                tool_dir / ".hidden.py",
                sub / "nested.py",
            )
        }
        assert watcher.translate(changes) == []


class TestRun:
    @staticmethod
    def _fake_awatch(batches: list[set[tuple[Change, str]]], seen: dict[str, Any]):
        async def fake(*paths: Any, **kwargs: Any):
            seen["paths"] = paths
            seen.update(kwargs)
            for batch in batches:
                yield batch

        return fake

    async def test_applies_notifications(
        self, watcher: ToolWatcher, tool_dir: Path, registry: ToolRegistry
    ):
        path = tool_dir / "wc.py"
        path.write_text(TOOL_V1)
        stop = asyncio.Event()
        seen: dict[str, Any] = {}
        fake = self._fake_awatch([{(Change.added, str(path))}], seen)

        with patch("tether.tools.watcher.awatch", fake):
            await asyncio.wait_for(watcher.run(stop), timeout=1)

        assert "wc" in registry
        assert seen["paths"] == (tool_dir,)
        assert seen["stop_event"] is stop
        assert seen["debounce"] == 10
        assert seen["recursive"] is False

    async def test_edit_after_initial_load_updates(
        self, watcher: ToolWatcher, tool_dir: Path, registry: ToolRegistry
    ):
        path = tool_dir / "wc.py"
        _write(path, TOOL_V1, 1_000)
        assert watcher.load_existing() == 1
        _write(path, TOOL_V2, 2_000)
        fake = self._fake_awatch([{(Change.modified, str(path))}], {})

        with patch("tether.tools.watcher.awatch", fake):
            await watcher.run(asyncio.Event())

        rec = registry.get_tool("wc")
        assert rec is not None
        assert rec.version == "1.0.1"
        assert rec.source == TOOL_V2

    async def test_filter_accepts_only_tool_files(self, watcher: ToolWatcher, tool_dir: Path):
        seen: dict[str, Any] = {}
        with patch("tether.tools.watcher.awatch", self._fake_awatch([], seen)):
            await watcher.run(asyncio.Event())
        accepts = seen["watch_filter"]
        assert accepts(Change.added, str(tool_dir / "wc.py"))
        assert not accepts(Change.added, str(tool_dir / "wc.txt"))
        assert not accepts(Change.added, str(tool_dir / "_wc.py"))

    async def test_missing_directory_not_watched(
        self, registry: ToolRegistry, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ):
        watcher = ToolWatcher(registry, tmp_path / "absent")
        fake = MagicMock()
        with patch("tether.tools.watcher.awatch", fake):
            await watcher.run(asyncio.Event())
        fake.assert_not_called()
        assert "does not exist" in caplog.text
