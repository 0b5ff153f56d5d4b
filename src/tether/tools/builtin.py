"""Built-in native tools: list_files and read_file.

Both confine themselves to an optional root directory, reject path
traversal, and refuse binary or oversized files.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tether.tools.registry import ToolRegistry

MAX_FILE_SIZE = 100 * 1024  # 100KB
MAX_LISTING = 500


class _RootedTool:
    def __init__(self, *, root: str | None = None) -> None:
        self._root: Path | None = Path(root).resolve() if root else None

    def _resolve(self, path_str: str) -> Path:
        normalized = os.path.normpath(path_str)
        if ".." in normalized.split(os.sep):
            msg = f"Path traversal not allowed: {path_str}"
            raise ValueError(msg)

        path = Path(path_str)
        if self._root is not None and not path.is_absolute():
            path = self._root / path
        resolved = path.resolve()

        if self._root is not None and not resolved.is_relative_to(self._root):
            msg = f"Path is outside allowed directory: {path_str}"
            raise ValueError(msg)
        return resolved


class ListFilesTool(_RootedTool):
    """Lists the entries of a directory.

    Implements the :class:`Tool` protocol.
    """

    @property
    def name(self) -> str:
        return "list_files"

    @property
    def description(self) -> str:
        return "List the files in a directory."

    @property
    def parameters_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Directory to list (default: current directory).",
                },
            },
        }

    async def execute(self, **kwargs: Any) -> str:
        path_str = kwargs.get("path") or "."
        if not isinstance(path_str, str):
            msg = "Parameter 'path' must be a string."
            raise ValueError(msg)

        directory = self._resolve(path_str)
        if not directory.is_dir():
            msg = f"Not a directory: {path_str}"
            raise NotADirectoryError(msg)

        names = sorted(
            p.name + ("/" if p.is_dir() else "") for p in directory.iterdir()
        )
        if len(names) > MAX_LISTING:
            names = [*names[:MAX_LISTING], f"... ({len(names) - MAX_LISTING} more)"]
        return "[" + ", ".join(names) + "]"


class FileReadTool(_RootedTool):
    """File read tool with safety checks.

    Implements the :class:`Tool` protocol.
    """

    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read the contents of a text file."

    @property
    def parameters_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to the file to read.",
                },
            },
            "required": ["path"],
        }

    async def execute(self, **kwargs: Any) -> str:
        """Read a file's contents.

        Raises:
            ValueError: If 'path' is missing, unsafe, too large or binary.
            FileNotFoundError: If the file does not exist.
        """
        path_str = kwargs.get("path", "")
        if not path_str or not isinstance(path_str, str):
            msg = "Parameter 'path' is required and must be a non-empty string."
            raise ValueError(msg)

        resolved = self._resolve(path_str)

        if not resolved.exists():
            msg = f"File not found: {path_str}"
            raise FileNotFoundError(msg)

        if not resolved.is_file():
            msg = f"Not a regular file: {path_str}"
            raise ValueError(msg)

        size = resolved.stat().st_size
        if size > MAX_FILE_SIZE:
            msg = (
                f"File too large: {size} bytes "
                f"(max {MAX_FILE_SIZE} bytes / {MAX_FILE_SIZE // 1024}KB)"
            )
            raise ValueError(msg)

        if b"\x00" in resolved.read_bytes()[:8192]:
            msg = f"Binary file cannot be read as text: {path_str}"
            raise ValueError(msg)

        return resolved.read_text(encoding="utf-8")


def register_builtin_tools(registry: ToolRegistry, *, root: str | None = None) -> int:
    """Register the built-in tools not already present. Returns how many were added."""
    added = 0
    for tool in (ListFilesTool(root=root), FileReadTool(root=root)):
        if registry.register_native(tool):
            added += 1
    return added
