"""Main CLI application.

Click commands for tether: ask, chat, and the tools group
(list, show, history, rollback, add, remove).
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from tether import __version__
from tether.config.loader import load_config
from tether.core.errors import ConfigError, SessionError, TetherError

if TYPE_CHECKING:
    from tether.cli.display import RunDisplay
    from tether.config.schema import LoggingConfig, TetherConfig
    from tether.engine.machine import RunResult
    from tether.engine.runner import RunEngine
    from tether.service.base import ReasoningService
    from tether.session.manager import SessionManager
    from tether.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


# ── Helpers ──────────────────────────────────────────────────────


def _error(msg: str) -> None:
    """Print an error message to stderr and exit."""
    click.echo(f"Error: {msg}", err=True)
    sys.exit(1)


def _load_config(config_path: str | None) -> TetherConfig:
    """Load config with user-friendly error handling."""
    try:
        return load_config(path=config_path)
    except ConfigError as e:
        _error(str(e))
        raise  # unreachable, keeps mypy happy


def _setup_logging(config: LoggingConfig) -> None:
    """Route log records to stderr through rich, and to a file if set."""
    from rich.console import Console
    from rich.logging import RichHandler

    handlers: list[logging.Handler] = [
        RichHandler(console=Console(stderr=True), show_path=False)
    ]
    if config.file:
        path = Path(config.file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handlers.append(file_handler)
    logging.basicConfig(
        level=config.level.upper(),
        format="%(message)s",
        handlers=handlers,
        force=True,
    )


def _setup_registry(config: TetherConfig) -> ToolRegistry:
    """Build the tool registry: store-backed, plus built-ins if enabled."""
    from tether.tools.builtin import register_builtin_tools
    from tether.tools.registry import ToolRegistry
    from tether.tools.store import JsonToolStore

    store = JsonToolStore(Path(config.tools.store_dir).expanduser())
    registry = ToolRegistry(store, default_author=config.tools.author)
    if config.tools.builtin:
        register_builtin_tools(registry)
    registry.load()
    return registry


def _setup_service(config: TetherConfig) -> ReasoningService:
    from tether.service.openai import OpenAIAssistantsService

    if not config.service.api_key:
        env = config.service.api_key_env or "api_key"
        _error(f"No API key configured (set {env} or service.api_key)")
    return OpenAIAssistantsService(
        api_key=config.service.api_key,
        base_url=config.service.base_url,
    )


def _make_engine(
    config: TetherConfig,
    service: ReasoningService,
    registry: ToolRegistry,
    *,
    assistant_id: str,
    thread_id: str | None = None,
    display: RunDisplay | None = None,
) -> RunEngine:
    from tether.core.retry import RetryConfig
    from tether.engine.runner import RunEngine
    from tether.tools.executor import ToolExecutor
    from tether.tools.sandbox import ScriptSandbox

    executor = ToolExecutor(registry, ScriptSandbox(config.sandbox))
    retry = RetryConfig.from_settings(config.retry)
    return RunEngine(
        service,
        assistant_id=assistant_id,
        executor=executor,
        config=config.engine,
        retry=retry,
        thread_id=thread_id,
        on_update=display.on_update if display is not None else None,
    )


def _resolve_assistant(config: TetherConfig, assistant: str | None) -> str:
    assistant_id = assistant or config.service.assistant_id
    if not assistant_id:
        _error("No assistant id (use --assistant or set service.assistant_id)")
    return assistant_id


# ── CLI group ────────────────────────────────────────────────────


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="tether")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True),
    default=None,
    help="Path to config file.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """tether - Assistant runs with live, versioned tools.

    Send messages to a hosted assistant and answer its tool calls locally.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# ── ask ──────────────────────────────────────────────────────────


@cli.command()
@click.argument("text")
@click.option("--assistant", default=None, help="Assistant id (overrides config).")
@click.option("--thread", default=None, help="Continue an existing thread.")
@click.option(
    "--parallel-tools",
    is_flag=True,
    default=False,
    help="Run the tool calls of a batch concurrently.",
)
@click.pass_context
def ask(
    ctx: click.Context,
    text: str,
    assistant: str | None,
    thread: str | None,
    parallel_tools: bool,
) -> None:
    """Send TEXT to the assistant and print its answer."""
    config = _load_config(ctx.obj["config_path"])
    _setup_logging(config.logging)
    if parallel_tools:
        config.engine.parallel_tool_calls = True
    assistant_id = _resolve_assistant(config, assistant)

    try:
        ok = asyncio.run(_ask_async(config, text, assistant_id, thread))
    except TetherError as e:
        _error(str(e))
        return  # unreachable

    if not ok:
        sys.exit(1)


async def _ask_async(
    config: TetherConfig,
    text: str,
    assistant_id: str,
    thread_id: str | None,
) -> bool:
    """Async implementation for the ask command."""
    from tether.cli.display import RunDisplay

    display = RunDisplay()
    registry = _setup_registry(config)
    service = _setup_service(config)
    engine = _make_engine(
        config,
        service,
        registry,
        assistant_id=assistant_id,
        thread_id=thread_id,
        display=display,
    )
    with display.console.status("[bold cyan]Running[/bold cyan]...", spinner="dots"):
        result = await engine.submit(text)
    display.show_result(result)
    if result.thread_id:
        display.console.print(f"thread: {result.thread_id}", style="dim")
    return result.success


# ── chat ─────────────────────────────────────────────────────────

_CHAT_HELP = (
    "Commands: /new, /next, /switch N, /sessions, /cancel, /quit. "
    "Anything else is sent to the active session."
)


@cli.command()
@click.option("--assistant", default=None, help="Assistant id (overrides config).")
@click.pass_context
def chat(ctx: click.Context, assistant: str | None) -> None:
    """Interactive multi-session chat."""
    config = _load_config(ctx.obj["config_path"])
    _setup_logging(config.logging)
    assistant_id = _resolve_assistant(config, assistant)
    try:
        asyncio.run(_chat_async(config, assistant_id))
    except TetherError as e:
        _error(str(e))


async def _chat_async(config: TetherConfig, assistant_id: str) -> None:
    """Async implementation for the chat command."""
    from tether.cli.display import RunDisplay
    from tether.session.manager import SessionManager
    from tether.tools.watcher import ToolWatcher

    display = RunDisplay(verbose=False)
    registry = _setup_registry(config)
    service = _setup_service(config)

    manager = SessionManager(
        lambda _sid: _make_engine(
            config, service, registry, assistant_id=assistant_id, display=display
        )
    )
    manager.create_session()

    stop = asyncio.Event()
    watch_task: asyncio.Task[None] | None = None
    if config.tools.watch_dir:
        watcher = ToolWatcher(
            registry,
            config.tools.watch_dir,
            debounce_ms=config.tools.watch_debounce_ms,
            author=config.tools.author,
        )
        watcher.load_existing()
        watch_task = asyncio.create_task(watcher.run(stop))

    display.console.print(_CHAT_HELP, style="dim")
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, f"[{manager.active_index + 1}]> ")
            except EOFError:
                break
            if not await _chat_command(manager, display, line.strip()):
                break
    finally:
        stop.set()
        if watch_task is not None:
            await watch_task
        await manager.close()


async def _chat_command(
    manager: SessionManager, display: RunDisplay, line: str
) -> bool:
    """Handle one chat input line. Returns False to quit."""
    if not line:
        return True
    if line == "/quit":
        return False
    if line == "/new":
        session = manager.create_session()
        display.console.print(f"Switched to session {session.id}")
    elif line == "/next":
        session = manager.next_session()
        display.console.print(f"Switched to session {session.id}")
    elif line.startswith("/switch"):
        arg = line.removeprefix("/switch").strip()
        try:
            session = manager.switch_to(int(arg) - 1)
        except (ValueError, SessionError) as e:
            display.console.print(f"Cannot switch: {e}", style="red")
        else:
            display.console.print(f"Switched to session {session.id}")
    elif line == "/sessions":
        display.show_sessions(manager.sessions, manager.active_index)
    elif line == "/cancel":
        await manager.cancel_active()
        display.console.print("Cancel requested", style="yellow")
    elif line.startswith("/"):
        display.console.print(_CHAT_HELP, style="dim")
    else:
        try:
            task = manager.submit(line)
        except SessionError as e:
            display.console.print(str(e), style="red")
        else:
            label = manager.active.id

            def _show(t: asyncio.Task[RunResult]) -> None:
                if not t.cancelled() and t.exception() is None:
                    display.show_result(t.result(), label=label)

            task.add_done_callback(_show)
    return True


# ── tools ────────────────────────────────────────────────────────


@cli.group()
@click.pass_context
def tools(ctx: click.Context) -> None:
    """Inspect and edit the persisted tool registry."""
    config = _load_config(ctx.obj["config_path"])
    _setup_logging(config.logging)
    try:
        ctx.obj["registry"] = _setup_registry(config)
    except TetherError as e:
        _error(str(e))
    ctx.obj["config"] = config


@tools.command("list")
@click.pass_context
def tools_list(ctx: click.Context) -> None:
    """List registered tools."""
    from tether.cli.display import RunDisplay

    RunDisplay().show_tools(ctx.obj["registry"].list_tools())


@tools.command("show")
@click.argument("name")
@click.pass_context
def tools_show(ctx: click.Context, name: str) -> None:
    """Show one tool's current version and metadata."""
    from tether.cli.display import RunDisplay

    record = ctx.obj["registry"].get_tool(name)
    if record is None:
        _error(f"No tool named {name}")
        return  # unreachable
    RunDisplay().show_tool(record)


@tools.command("history")
@click.argument("name")
@click.pass_context
def tools_history(ctx: click.Context, name: str) -> None:
    """List a tool's previous versions, oldest first."""
    from tether.cli.display import RunDisplay

    registry = ctx.obj["registry"]
    if not registry.has_tool(name):
        _error(f"No tool named {name}")
    RunDisplay().show_history(name, registry.get_tool_history(name))


@tools.command("rollback")
@click.argument("name")
@click.argument("version")
@click.pass_context
def tools_rollback(ctx: click.Context, name: str, version: str) -> None:
    """Restore VERSION of tool NAME as its current content."""
    registry = ctx.obj["registry"]
    try:
        ok = registry.rollback_tool(name, version)
    except TetherError as e:
        _error(str(e))
        return  # unreachable
    if not ok:
        _error(f"Cannot roll back {name} to {version}")
    record = registry.get_tool(name)
    click.echo(f"{name} restored from {version} as {record.version}")


@tools.command("add")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--name", default=None, help="Tool name (default: file stem).")
@click.pass_context
def tools_add(ctx: click.Context, path: str, name: str | None) -> None:
    """Register the scripted tool defined in PATH."""
    from tether.tools.watcher import parse_tool_file

    registry = ctx.obj["registry"]
    file_path = Path(path)
    tool_name = name or file_path.stem
    try:
        tool = parse_tool_file(file_path)
        added = registry.add_tool(
            tool_name,
            tool.source,
            tool.schema,
            tool.tags,
            description=tool.description,
        )
    except (OSError, SyntaxError, ValueError, TetherError) as e:
        _error(str(e))
        return  # unreachable
    if not added:
        _error(f"Tool {tool_name} already exists")
    click.echo(f"Added {tool_name} at 1.0.0")


@tools.command("remove")
@click.argument("name")
@click.pass_context
def tools_remove(ctx: click.Context, name: str) -> None:
    """Remove a tool from the registry and its store."""
    registry = ctx.obj["registry"]
    try:
        removed = registry.remove_tool(name)
    except TetherError as e:
        _error(str(e))
        return  # unreachable
    if not removed:
        _error(f"No tool named {name}")
    click.echo(f"Removed {name}")
