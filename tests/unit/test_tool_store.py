"""Tests for JSON tool persistence."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from tether.core.errors import StorageError
from tether.tools.base import ToolMetadata, ToolRecord, ToolSnapshot
from tether.tools.store import JsonToolStore, ToolStore, record_from_dict, record_to_dict

if TYPE_CHECKING:
    from pathlib import Path


def _record() -> ToolRecord:
    when = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
    return ToolRecord(
        name="grep",
        source="def execute(params, state): return 1",
        schema={"type": "object"},
        tags=frozenset({"search", "fs"}),
        description="search files",
        version="1.0.1",
        metadata=ToolMetadata(
            created_at=when, last_modified_at=when, author="alice", usage_count=4
        ),
        history=(ToolSnapshot("1.0.0", "old", {}, frozenset({"fs"}), "v0"),),
        restored_from=None,
    )


class TestSerialization:
    def test_document_shape(self):
        data = record_to_dict(_record())
        assert data["name"] == "grep"
        assert data["tags"] == ["fs", "search"]
        assert data["metadata"]["author"] == "alice"
        assert data["metadata"]["created_at"] == "2026-01-02T03:04:05+00:00"
        assert data["history"][0]["version"] == "1.0.0"
        assert "handler" not in data

    def test_from_dict_restores_record(self):
        rec = _record()
        assert record_from_dict(record_to_dict(rec)) == rec

    def test_from_dict_missing_name(self):
        with pytest.raises(KeyError):
            record_from_dict({"source": "x"})


class TestJsonToolStore:
    def test_is_tool_store(self, store: JsonToolStore):
        assert isinstance(store, ToolStore)

    def test_load_missing_dir(self, tmp_path: Path):
        assert JsonToolStore(tmp_path / "nope").load_all() == []

    def test_save_writes_one_file_per_tool(self, store: JsonToolStore):
        store.save(_record())
        path = store.directory / "grep.json"
        assert path.is_file()
        assert json.loads(path.read_text())["version"] == "1.0.1"

    def test_save_overwrites(self, store: JsonToolStore):
        store.save(_record())
        store.save(ToolRecord(name="grep", source="new"))
        (loaded,) = store.load_all()
        assert loaded.source == "new"

    def test_bad_files_skipped(self, store: JsonToolStore, caplog: pytest.LogCaptureFixture):
        store.save(_record())
        (store.directory / "broken.json").write_text("{not json")
        (store.directory / "partial.json").write_text('{"source": "x"}')
        records = store.load_all()
        assert [r.name for r in records] == ["grep"]
        assert "broken.json" in caplog.text

    def test_delete(self, store: JsonToolStore):
        store.save(_record())
        store.delete("grep")
        assert store.load_all() == []
        store.delete("grep")  # missing is fine

    def test_save_failure_raises_storage_error(self, store: JsonToolStore):
        with (
            patch("pathlib.Path.write_text", side_effect=OSError("read-only")),
            pytest.raises(StorageError, match="grep"),
        ):
            store.save(_record())
