"""Tool protocol and data types.

Defines the ``Tool`` protocol for native tool implementations, the
versioned ``ToolRecord`` kept by the registry, and the capability
variants the executor dispatches on.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

INITIAL_VERSION = "1.0.0"


def parse_version(version: str) -> tuple[int, int, int]:
    """Split a ``MAJOR.MINOR.PATCH`` string into three integers.

    Raises:
        ValueError: If *version* is not three dot-separated non-negative integers.
    """
    parts = version.split(".")
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        msg = f"Invalid version: {version!r} (expected MAJOR.MINOR.PATCH)"
        raise ValueError(msg)
    major, minor, patch = (int(p) for p in parts)
    return major, minor, patch


def bump_patch(version: str) -> str:
    """Return *version* with its patch component incremented."""
    major, minor, patch = parse_version(version)
    return f"{major}.{minor}.{patch + 1}"


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """Schema definition for a tool, suitable for passing to the service."""

    name: str
    description: str
    parameters_schema: dict[str, Any]


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation requested by the service."""

    id: str
    name: str
    arguments: str = "{}"  # JSON string, parsed per call at dispatch


@dataclass(frozen=True, slots=True)
class ToolOutput:
    """Output for one tool call, submitted back to the service."""

    call_id: str
    output: str
    is_error: bool = False


@dataclass(frozen=True, slots=True)
class ToolMetadata:
    """Bookkeeping attached to a tool record."""

    created_at: datetime = field(default_factory=_now)
    last_modified_at: datetime | None = None  # defaults to created_at
    author: str = "unknown"
    usage_count: int = 0
    last_used_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.last_modified_at is None:
            object.__setattr__(self, "last_modified_at", self.created_at)


@dataclass(frozen=True, slots=True)
class ToolSnapshot:
    """Immutable copy of a record's content at one version."""

    version: str
    source: str
    schema: dict[str, Any]
    tags: frozenset[str]
    description: str = ""


@dataclass(frozen=True, slots=True)
class NativeCapability:
    """A tool implemented by an in-process async callable."""

    handler: Callable[..., Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class ScriptedCapability:
    """A tool implemented by stored source text, run in the sandbox."""

    source: str


Capability = NativeCapability | ScriptedCapability


@dataclass(frozen=True, slots=True)
class ToolRecord:
    """A named, versioned, rollback-capable tool.

    Records are immutable; the registry replaces them on every
    mutation, so a record handed out is never changed underneath
    its holder.
    """

    name: str
    source: str
    schema: dict[str, Any] = field(default_factory=dict)
    tags: frozenset[str] = field(default_factory=frozenset)
    description: str = ""
    version: str = INITIAL_VERSION
    metadata: ToolMetadata = field(default_factory=ToolMetadata)
    history: tuple[ToolSnapshot, ...] = ()
    restored_from: str | None = None
    handler: Callable[..., Awaitable[Any]] | None = field(
        default=None, compare=False, repr=False
    )

    def snapshot(self) -> ToolSnapshot:
        """Return the content of this record as a history entry."""
        return ToolSnapshot(
            version=self.version,
            source=self.source,
            schema=copy.deepcopy(self.schema),
            tags=self.tags,
            description=self.description,
        )

    def find_version(self, version: str) -> ToolSnapshot | None:
        """Return the newest history entry for *version*, if any."""
        for entry in reversed(self.history):
            if entry.version == version:
                return entry
        return None

    @property
    def capability(self) -> Capability:
        """Which way this tool executes."""
        if self.handler is not None:
            return NativeCapability(self.handler)
        return ScriptedCapability(self.source)

    @property
    def is_native(self) -> bool:
        return self.handler is not None

    def copy(self) -> ToolRecord:
        """Detached copy; the schema dicts are not shared."""
        return replace(
            self,
            schema=copy.deepcopy(self.schema),
            history=tuple(
                replace(h, schema=copy.deepcopy(h.schema)) for h in self.history
            ),
        )

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters_schema=copy.deepcopy(self.schema),
        )


def normalize_tags(tags: Iterable[str] | None) -> frozenset[str]:
    """Coerce a tag collection to a frozenset of strings."""
    if not tags:
        return frozenset()
    return frozenset(str(t) for t in tags)


@runtime_checkable
class Tool(Protocol):
    """Protocol that all native tool implementations must satisfy."""

    @property
    def name(self) -> str:
        """Unique name for this tool."""
        ...

    @property
    def description(self) -> str:
        """Human-readable description of what the tool does."""
        ...

    @property
    def parameters_schema(self) -> dict[str, Any]:
        """JSON Schema for the tool's parameters."""
        ...

    async def execute(self, **kwargs: Any) -> str:
        """Execute the tool with the given arguments.

        Returns:
            String result of the tool execution.

        Raises:
            Exception: On execution failure.
        """
        ...
