"""Tool persistence: one JSON document per tool.

The registry talks to storage only through the :class:`ToolStore`
protocol (``load_all`` / ``save`` / ``delete``). :class:`JsonToolStore`
is the on-disk implementation used by the CLI.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from tether.core.errors import StorageError
from tether.tools.base import ToolMetadata, ToolRecord, ToolSnapshot, normalize_tags

logger = logging.getLogger(__name__)


@runtime_checkable
class ToolStore(Protocol):
    """Persistence collaborator for the tool registry."""

    def load_all(self) -> list[ToolRecord]: ...

    def save(self, record: ToolRecord) -> None: ...

    def delete(self, name: str) -> None: ...


# ── Serialization ────────────────────────────────────────────────


def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _snapshot_to_dict(snap: ToolSnapshot) -> dict[str, Any]:
    return {
        "version": snap.version,
        "source": snap.source,
        "schema": snap.schema,
        "tags": sorted(snap.tags),
        "description": snap.description,
    }


def record_to_dict(record: ToolRecord) -> dict[str, Any]:
    """Serialize a record. The native handler is not persisted."""
    meta = record.metadata
    return {
        "name": record.name,
        "version": record.version,
        "description": record.description,
        "source": record.source,
        "schema": record.schema,
        "tags": sorted(record.tags),
        "restored_from": record.restored_from,
        "metadata": {
            "created_at": _dt(meta.created_at),
            "last_modified_at": _dt(meta.last_modified_at),
            "author": meta.author,
            "usage_count": meta.usage_count,
            "last_used_at": _dt(meta.last_used_at),
        },
        "history": [_snapshot_to_dict(h) for h in record.history],
    }


def record_from_dict(data: dict[str, Any]) -> ToolRecord:
    """Deserialize a record written by :func:`record_to_dict`.

    Raises:
        KeyError, ValueError, TypeError: On malformed documents.
    """
    meta_data = data.get("metadata") or {}
    defaults = ToolMetadata()
    metadata = ToolMetadata(
        created_at=_parse_dt(meta_data.get("created_at")) or defaults.created_at,
        last_modified_at=_parse_dt(meta_data.get("last_modified_at"))
        or defaults.last_modified_at,
        author=meta_data.get("author", defaults.author),
        usage_count=int(meta_data.get("usage_count", 0)),
        last_used_at=_parse_dt(meta_data.get("last_used_at")),
    )
    history = tuple(
        ToolSnapshot(
            version=h["version"],
            source=h["source"],
            schema=h.get("schema") or {},
            tags=normalize_tags(h.get("tags")),
            description=h.get("description", ""),
        )
        for h in data.get("history", [])
    )
    return ToolRecord(
        name=data["name"],
        source=data["source"],
        schema=data.get("schema") or {},
        tags=normalize_tags(data.get("tags")),
        description=data.get("description", ""),
        version=data.get("version", "1.0.0"),
        metadata=metadata,
        history=history,
        restored_from=data.get("restored_from"),
    )


# ── JSON directory store ─────────────────────────────────────────


class JsonToolStore:
    """Stores each tool as ``<directory>/<name>.json``.

    Implements the :class:`ToolStore` protocol.
    """

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory).expanduser()

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, name: str) -> Path:
        return self._dir / f"{name}.json"

    def load_all(self) -> list[ToolRecord]:
        """Load every readable tool document, skipping broken ones."""
        if not self._dir.is_dir():
            return []
        records: list[ToolRecord] = []
        for path in sorted(self._dir.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                records.append(record_from_dict(data))
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning("Failed to load tool %s: %s", path.name, exc)
        return records

    def save(self, record: ToolRecord) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            path = self._path(record.name)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(
                json.dumps(record_to_dict(record), indent=2), encoding="utf-8"
            )
            os.replace(tmp, path)
        except OSError as exc:
            msg = f"Failed to save tool {record.name}: {exc}"
            raise StorageError(msg) from exc

    def delete(self, name: str) -> None:
        try:
            self._path(name).unlink(missing_ok=True)
        except OSError as exc:
            msg = f"Failed to delete tool {name}: {exc}"
            raise StorageError(msg) from exc
