"""Tool registry: versioned catalog of executable tools.

Provides add, update (patch bump + history), rollback, history query,
removal, and lookup of :class:`ToolRecord` entries. Records are
immutable and replaced on every mutation (copy-on-write); an internal
lock serializes writers, and the last writer for a given name wins.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from tether.core.errors import StorageError
from tether.tools.base import (
    INITIAL_VERSION,
    ToolMetadata,
    ToolRecord,
    bump_patch,
    normalize_tags,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from tether.tools.base import Tool, ToolDefinition, ToolSnapshot
    from tether.tools.store import ToolStore

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Registry for managing versioned tools.

    Declined operations (duplicate name, unknown tool or version)
    return ``False`` rather than raising. Store failures raise
    :class:`~tether.core.errors.StorageError` and leave the registry
    unchanged.
    """

    def __init__(
        self,
        store: ToolStore | None = None,
        *,
        default_author: str = "unknown",
    ) -> None:
        self._store = store
        self._default_author = default_author
        self._tools: dict[str, ToolRecord] = {}
        self._removed: dict[str, ToolRecord] = {}
        self._lock = threading.RLock()

    # ── Loading ───────────────────────────────────────────────

    def load(self) -> int:
        """Load records from the store. First registrant wins.

        Returns:
            Number of records added.
        """
        if self._store is None:
            return 0
        added = 0
        for record in self._store.load_all():
            with self._lock:
                if record.name in self._tools:
                    logger.warning(
                        "Tool %s already registered; ignoring stored copy",
                        record.name,
                    )
                    continue
                self._tools[record.name] = record
                self._removed.pop(record.name, None)
            added += 1
        return added

    # ── Mutation ──────────────────────────────────────────────

    def add_tool(
        self,
        name: str,
        source: str,
        schema: dict[str, Any] | None = None,
        tags: Iterable[str] | None = None,
        *,
        description: str = "",
        author: str | None = None,
        handler: Callable[..., Awaitable[Any]] | None = None,
    ) -> bool:
        """Register a new tool at version 1.0.0.

        Returns:
            False if a live tool with this name already exists.
        """
        with self._lock:
            if name in self._tools:
                logger.info("Tool %s already exists; skipping add", name)
                return False
            now = datetime.now(UTC)
            record = ToolRecord(
                name=name,
                source=source,
                schema=dict(schema or {}),
                tags=normalize_tags(tags),
                description=description,
                version=INITIAL_VERSION,
                metadata=ToolMetadata(
                    created_at=now,
                    last_modified_at=now,
                    author=author or self._default_author,
                ),
                handler=handler,
            )
            self._commit(record)
            self._removed.pop(name, None)
        logger.info("Tool %s added at %s", name, INITIAL_VERSION)
        return True

    def register_native(self, tool: Tool, tags: Iterable[str] | None = None) -> bool:
        """Register a :class:`Tool`-protocol object as a native tool."""
        cls = type(tool)
        return self.add_tool(
            tool.name,
            f"native:{cls.__module__}.{cls.__qualname__}",
            tool.parameters_schema,
            tags or ("native",),
            description=tool.description,
            handler=tool.execute,
        )

    def update_tool(
        self,
        name: str,
        source: str,
        schema: dict[str, Any] | None = None,
        tags: Iterable[str] | None = None,
        *,
        description: str | None = None,
    ) -> bool:
        """Replace a tool's content, bumping the patch version.

        The pre-update record is appended to history. Omitted schema,
        tags and description keep their current values.

        Returns:
            False if the tool does not exist.
        """
        with self._lock:
            current = self._tools.get(name)
            if current is None:
                logger.warning("Cannot update %s: tool not found", name)
                return False
            updated = replace(
                current,
                source=source,
                schema=dict(schema) if schema is not None else current.schema,
                tags=normalize_tags(tags) if tags is not None else current.tags,
                description=(
                    description if description is not None else current.description
                ),
                version=bump_patch(current.version),
                history=(*current.history, current.snapshot()),
                restored_from=None,
                metadata=replace(
                    current.metadata, last_modified_at=datetime.now(UTC)
                ),
            )
            self._commit(updated)
        logger.info("Tool %s updated to %s", name, updated.version)
        return True

    def rollback_tool(self, name: str, version: str) -> bool:
        """Restore the content of a historical version as current.

        The record being replaced is appended to history, so a rollback
        is itself an ordinary, revertible history entry. The restored
        content gets a fresh patch version; ``restored_from`` names the
        version it came from. The snapshot's own version number is not
        reused, so every version in a tool's history stays unique and
        ``find_version`` is unambiguous after any number of rollbacks.

        Returns:
            False if the tool or the version is not found.
        """
        with self._lock:
            current = self._tools.get(name)
            if current is None:
                logger.warning("Cannot roll back %s: tool not found", name)
                return False
            target = current.find_version(version)
            if target is None:
                logger.warning("Cannot roll back %s: no version %s", name, version)
                return False
            restored = replace(
                current,
                source=target.source,
                schema=dict(target.schema),
                tags=target.tags,
                description=target.description,
                version=bump_patch(current.version),
                history=(*current.history, current.snapshot()),
                restored_from=version,
                metadata=replace(
                    current.metadata, last_modified_at=datetime.now(UTC)
                ),
            )
            self._commit(restored)
        logger.info(
            "Tool %s rolled back to %s (now %s)", name, version, restored.version
        )
        return True

    def remove_tool(self, name: str) -> bool:
        """Tombstone a tool and delete it from the store.

        Returns:
            False if the tool does not exist.
        """
        with self._lock:
            record = self._tools.get(name)
            if record is None:
                return False
            if self._store is not None:
                self._store.delete(name)
            del self._tools[name]
            self._removed[name] = record
        logger.info("Tool %s removed", name)
        return True

    def record_usage(self, name: str) -> None:
        """Count one invocation of *name*. No version change.

        Scripted tools' counts are written through to the store. A failed
        write is logged and the in-memory count kept, so a storage
        problem never fails the tool call that was already made.
        """
        with self._lock:
            current = self._tools.get(name)
            if current is None:
                return
            meta = current.metadata
            record = replace(
                current,
                metadata=replace(
                    meta,
                    usage_count=meta.usage_count + 1,
                    last_used_at=datetime.now(UTC),
                ),
            )
            self._tools[name] = record
            if self._store is None or record.is_native:
                return
            try:
                self._store.save(record)
            except StorageError as e:
                logger.warning("Could not persist usage of %s: %s", name, e)

    def _commit(self, record: ToolRecord) -> None:
        """Persist then publish *record*. Caller holds the lock."""
        if self._store is not None and not record.is_native:
            self._store.save(record)
        self._tools[record.name] = record

    # ── Queries ───────────────────────────────────────────────

    def get_tool(self, name: str) -> ToolRecord | None:
        """Return a copy of the live record, or None."""
        with self._lock:
            record = self._tools.get(name)
        return record.copy() if record is not None else None

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def get_tool_history(self, name: str) -> list[ToolSnapshot]:
        """Return prior versions of *name*, oldest first."""
        record = self.get_tool(name)
        if record is None:
            return []
        return list(record.history)

    def list_tools(self) -> list[ToolRecord]:
        with self._lock:
            records = list(self._tools.values())
        return [r.copy() for r in records]

    def list_names(self) -> list[str]:
        """Return names of all live tools."""
        with self._lock:
            return list(self._tools.keys())

    def list_definitions(self) -> list[ToolDefinition]:
        """Return tool definitions for all live tools.

        Suitable for passing to the service as available tools.
        """
        return [r.definition() for r in self.list_tools()]

    def removed_tools(self) -> list[ToolRecord]:
        """Tombstoned records, kept for audit."""
        with self._lock:
            return [r.copy() for r in self._removed.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
