"""Rich display for runs, sessions and tools.

Renders run progress events as dim status lines, final answers in
panels, and registry contents as tables. Accepts an optional
:class:`~rich.console.Console` for dependency injection in tests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tether.engine.machine import RunResult
    from tether.session.manager import Session
    from tether.tools.base import ToolRecord, ToolSnapshot

_TRUNCATE_LEN = 500

# event -> (label, style)
_EVENT_STYLES: dict[str, tuple[str, str]] = {
    "thread_created": ("thread", "dim"),
    "run_created": ("run", "dim"),
    "run_status": ("status", "dim"),
    "rate_limited": ("rate limited, waiting ms", "yellow"),
    "tool_executed": ("tool", "cyan"),
    "tool_failed": ("tool failed", "red"),
    "outputs_submitted": ("outputs submitted", "dim"),
    "run_cancelling": ("cancelling", "yellow"),
}


def _truncate(text: str, limit: int = _TRUNCATE_LEN) -> str:
    """Truncate text to *limit* characters with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + " ..."


class RunDisplay:
    """Console output for the ``ask`` and ``chat`` commands."""

    def __init__(self, console: Console | None = None, *, verbose: bool = True) -> None:
        self._console = console or Console()
        self._verbose = verbose
        self._last_status: str | None = None

    @property
    def console(self) -> Console:
        return self._console

    # ── Run progress ──────────────────────────────────────────

    def on_update(self, event: str, data: object) -> None:
        """Engine progress callback. Repeated statuses are collapsed."""
        if not self._verbose:
            return
        if event == "run_status":
            if data == self._last_status:
                return
            self._last_status = str(data)
        style = _EVENT_STYLES.get(event)
        if style is None:
            return
        label, color = style
        self._console.print(f"  {label}: {data}", style=color, markup=False)

    def show_result(self, result: RunResult, *, label: str | None = None) -> None:
        """Display a finished run's message."""
        title = f"[bold]{label}[/bold]" if label else None
        if result.success:
            self._console.print(
                Panel(Text(result.data.strip() or "(empty)"), title=title, border_style="green")
            )
            return
        border = "yellow" if result.phase.value == "cancelled" else "red"
        self._console.print(
            Panel(
                Text(_truncate(result.data.strip() or (result.error or "run failed"))),
                title=title or f"[bold]{result.phase.value.upper()}[/bold]",
                border_style=border,
            )
        )

    # ── Sessions ──────────────────────────────────────────────

    def show_sessions(self, sessions: Sequence[Session], active_index: int) -> None:
        if not sessions:
            self._console.print("No sessions.")
            return
        for i, session in enumerate(sessions):
            marker = "*" if i == active_index else " "
            state = "running" if session.busy else "idle"
            thread = session.engine.thread_id or "-"
            self._console.print(
                f" {marker} {i + 1}. {session.id}  [{state}]  {thread}", markup=False
            )

    # ── Tools ─────────────────────────────────────────────────

    def show_tools(self, records: Sequence[ToolRecord]) -> None:
        if not records:
            self._console.print("No tools registered.")
            return
        table = Table(show_header=True, header_style="bold")
        table.add_column("Name")
        table.add_column("Version")
        table.add_column("Kind")
        table.add_column("Tags")
        table.add_column("Uses", justify="right")
        table.add_column("Description")
        for r in records:
            table.add_row(
                r.name,
                r.version,
                "native" if r.is_native else "scripted",
                ", ".join(sorted(r.tags)),
                str(r.metadata.usage_count),
                _truncate(r.description, 60),
            )
        self._console.print(table)

    def show_tool(self, record: ToolRecord) -> None:
        lines = [
            f"Version: {record.version}",
            f"Author: {record.metadata.author}",
            f"Created: {record.metadata.created_at:%Y-%m-%d %H:%M}",
            f"Modified: {record.metadata.last_modified_at:%Y-%m-%d %H:%M}",
            f"Uses: {record.metadata.usage_count}",
            f"Tags: {', '.join(sorted(record.tags)) or '-'}",
        ]
        if record.restored_from:
            lines.append(f"Restored from: {record.restored_from}")
        if record.description:
            lines.extend(["", record.description])
        if not record.is_native:
            lines.extend(["", _truncate(record.source)])
        self._console.print(
            Panel(Text("\n".join(lines)), title=f"[bold]{record.name}[/bold]", border_style="cyan")
        )

    def show_history(self, name: str, history: Sequence[ToolSnapshot]) -> None:
        if not history:
            self._console.print(f"No history for {name}.")
            return
        for snap in history:
            tags = ", ".join(sorted(snap.tags))
            summary = snap.description.splitlines()[0] if snap.description else ""
            self._console.print(f"  {snap.version}  [{tags}]  {summary}", markup=False)
