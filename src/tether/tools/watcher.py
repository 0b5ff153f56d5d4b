"""Tool watcher: hot-reloads scripted tools from a directory.

Each ``<name>.py`` file in the watched directory is one scripted tool.
The file text is the tool source; its module docstring, and literal
``SCHEMA`` and ``TAGS`` assignments, supply the description, schema and
tags. Files are parsed with :mod:`ast` and never imported here.

``scan`` does a one-off comparison of file mtimes (used for the initial
load); ``run`` then follows filesystem notifications via
:func:`watchfiles.awatch`.

The registry only ever sees ``add_tool`` / ``update_tool`` /
``remove_tool``. On add the first registrant wins: a name that is
already registered is skipped with a warning.
"""

from __future__ import annotations

import ast
import asyncio
import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from watchfiles import Change, awatch

if TYPE_CHECKING:
    from collections.abc import Iterable

    from tether.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class WatchEventKind(enum.Enum):
    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"


@dataclass(frozen=True, slots=True)
class WatchEvent:
    kind: WatchEventKind
    path: Path

    @property
    def tool_name(self) -> str:
        return self.path.stem


@dataclass(frozen=True, slots=True)
class ToolFile:
    """A tool definition parsed from a source file."""

    name: str
    source: str
    description: str = ""
    schema: dict[str, Any] = field(default_factory=dict)
    tags: tuple[str, ...] = ()


def _literal_assignment(tree: ast.Module, target: str) -> Any:
    for node in tree.body:
        if isinstance(node, ast.Assign):
            names = [t.id for t in node.targets if isinstance(t, ast.Name)]
        elif isinstance(node, ast.AnnAssign) and isinstance(node.target, ast.Name):
            names = [node.target.id]
        else:
            continue
        if target in names and node.value is not None:
            return ast.literal_eval(node.value)
    return None


def parse_tool_file(path: Path) -> ToolFile:
    """Read a tool file without executing it.

    Raises:
        OSError: If the file cannot be read.
        SyntaxError, ValueError: If it is not valid Python or its
            ``SCHEMA``/``TAGS`` are not literals.
    """
    source = path.read_text(encoding="utf-8")
    tree = ast.parse(source, filename=str(path))
    schema = _literal_assignment(tree, "SCHEMA") or {}
    tags = _literal_assignment(tree, "TAGS") or ()
    if not isinstance(schema, dict):
        msg = f"SCHEMA in {path.name} must be a dict literal"
        raise ValueError(msg)
    return ToolFile(
        name=path.stem,
        source=source,
        description=ast.get_docstring(tree) or "",
        schema=schema,
        tags=tuple(str(t) for t in tags),
    )


class ToolWatcher:
    """Keeps the registry in step with the tool files in a directory."""

    def __init__(
        self,
        registry: ToolRegistry,
        directory: str | Path,
        *,
        debounce_ms: int = 1600,
        author: str = "watcher",
    ) -> None:
        self._registry = registry
        self._dir = Path(directory).expanduser().resolve()
        self._debounce_ms = debounce_ms
        self._author = author
        self._seen: dict[Path, float] = {}

    @property
    def directory(self) -> Path:
        return self._dir

    def is_tool_file(self, path: Path) -> bool:
        """A visible ``<name>.py`` directly inside the watched directory."""
        return (
            path.suffix == ".py"
            and not path.name.startswith((".", "_"))
            and path.parent == self._dir
        )

    def _snapshot(self) -> dict[Path, float]:
        if not self._dir.is_dir():
            return {}
        snapshot: dict[Path, float] = {}
        for path in self._dir.glob("*.py"):
            if not self.is_tool_file(path):
                continue
            try:
                snapshot[path] = path.stat().st_mtime
            except OSError:
                continue
        return snapshot

    def poll(self) -> list[WatchEvent]:
        """Diff the directory against what was last seen."""
        current = self._snapshot()
        events: list[WatchEvent] = []
        for path, mtime in sorted(current.items()):
            previous = self._seen.get(path)
            if previous is None:
                events.append(WatchEvent(WatchEventKind.ADDED, path))
            elif mtime != previous:
                events.append(WatchEvent(WatchEventKind.CHANGED, path))
        for path in sorted(self._seen.keys() - current.keys()):
            events.append(WatchEvent(WatchEventKind.REMOVED, path))
        self._seen = current
        return events

    def translate(self, changes: Iterable[tuple[Change, str]]) -> list[WatchEvent]:
        """Turn one batch of filesystem notifications into watch events.

        A batch can hold several changes for one path (a save done by
        writing a temp file and renaming it shows up as deleted plus
        added), so the file's state once the batch arrives decides the
        event: present and known is a change, present and new an add,
        gone and known a removal.
        """
        touched: set[Path] = set()
        for _change, raw in changes:
            path = Path(raw).resolve()
            if self.is_tool_file(path):
                touched.add(path)
        events: list[WatchEvent] = []
        for path in sorted(touched):
            known = path in self._seen
            try:
                mtime = path.stat().st_mtime
            except OSError:
                if known:
                    del self._seen[path]
                    events.append(WatchEvent(WatchEventKind.REMOVED, path))
                continue
            self._seen[path] = mtime
            kind = WatchEventKind.CHANGED if known else WatchEventKind.ADDED
            events.append(WatchEvent(kind, path))
        return events

    def handle(self, event: WatchEvent) -> None:
        """Apply one event to the registry."""
        name = event.tool_name
        if event.kind is WatchEventKind.REMOVED:
            logger.info("Tool file removed: %s", event.path)
            self._registry.remove_tool(name)
            return

        try:
            tool = parse_tool_file(event.path)
        except (OSError, SyntaxError, ValueError) as exc:
            logger.error("Error loading tool from file %s: %s", event.path, exc)
            return

        if event.kind is WatchEventKind.ADDED:
            logger.info("New tool file detected: %s", event.path)
            if self._registry.has_tool(name):
                logger.warning("Tool '%s' already registered; skipping %s", name, event.path)
                return
            self._add(tool)
            return

        logger.info("Tool file changed: %s", event.path)
        current = self._registry.get_tool(name)
        if current is None:
            self._add(tool)
        elif current.source != tool.source:
            self._registry.update_tool(
                name,
                tool.source,
                tool.schema,
                tool.tags,
                description=tool.description,
            )

    def _add(self, tool: ToolFile) -> None:
        self._registry.add_tool(
            tool.name,
            tool.source,
            tool.schema,
            tool.tags,
            description=tool.description,
            author=self._author,
        )

    def scan(self) -> list[WatchEvent]:
        """Compare the directory with the last scan and apply every event."""
        events = self.poll()
        for event in events:
            self.handle(event)
        return events

    def load_existing(self) -> int:
        """Initial scan. Returns the number of files seen."""
        return len(self.scan())

    def _accepts(self, change: Change, raw: str) -> bool:
        return self.is_tool_file(Path(raw).resolve())

    async def run(self, stop: asyncio.Event) -> None:
        """Apply filesystem notifications until *stop* is set.

        Files already present should be loaded with :meth:`load_existing`
        first; only changes after that are picked up here.
        """
        if not self._dir.is_dir():
            logger.warning("Tool directory %s does not exist; not watching", self._dir)
            return
        logger.info("Watching %s for tool changes", self._dir)
        async for changes in awatch(
            self._dir,
            watch_filter=self._accepts,
            debounce=self._debounce_ms,
            stop_event=stop,
            recursive=False,
        ):
            for event in self.translate(changes):
                self.handle(event)
