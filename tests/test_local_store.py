"""Tests for local persistent stores."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import json

from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from fleetmaster.auth.local_store import (
    FileLocalStore,
    MemoryLocalStore,
    get_local_store,
    reset_local_store,
)
from fleetmaster.exceptions import StoreError


if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
def file_store(tmp_path: Path) -> FileLocalStore:
    return FileLocalStore(tmp_path / "state" / "state.json")


class TestMemoryLocalStore:
    """Tests for MemoryLocalStore."""

    @pytest.mark.asyncio
    async def test_set_and_get(self):
        store = MemoryLocalStore()
        await store.set("pendingOTP", True)
        await store.set("pendingOTPEmail", "driver@fleet.io")
        await store.set("passwordResetFlow", {"active": True, "email": "driver@fleet.io"})

        assert await store.get("pendingOTP") is True
        assert await store.get("pendingOTPEmail") == "driver@fleet.io"
        assert await store.get("passwordResetFlow") == {"active": True, "email": "driver@fleet.io"}

    @pytest.mark.asyncio
    async def test_missing_key(self):
        store = MemoryLocalStore()
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_last_write_wins(self):
        store = MemoryLocalStore()
        await store.set("k", "one")
        await store.set("k", "two")
        assert await store.get("k") == "two"

    @pytest.mark.asyncio
    async def test_remove_missing_is_ignored(self):
        store = MemoryLocalStore({"k": True})
        await store.remove("k")
        await store.remove("k")
        assert await store.keys() == []

    @pytest.mark.asyncio
    async def test_rejects_unsupported_values(self):
        store = MemoryLocalStore()
        with pytest.raises(TypeError, match="Unsupported value type"):
            await store.set("k", 42)  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_typed_reads_are_defensive(self):
        store = MemoryLocalStore({"flag": "yes", "text": True, "blob": "x", "empty": ""})

        assert await store.get_bool("flag") is False
        assert await store.get_bool("missing", default=True) is True
        assert await store.get_str("text") is None
        assert await store.get_str("empty") is None
        assert await store.get_dict("blob") is None

    @pytest.mark.asyncio
    async def test_clear(self):
        store = MemoryLocalStore({"a": True, "b": "x"})
        await store.clear()
        assert await store.keys() == []


class TestFileLocalStore:
    """Tests for FileLocalStore."""

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, file_store: FileLocalStore):
        await file_store.set("appInstalledVersion", "1.0.0")
        await file_store.set("appPreviouslyLaunched", True)

        reopened = FileLocalStore(file_store.path)

        assert await reopened.get("appInstalledVersion") == "1.0.0"
        assert await reopened.get_bool("appPreviouslyLaunched") is True

    @pytest.mark.asyncio
    async def test_writes_json_document(self, file_store: FileLocalStore):
        await file_store.set("pendingOTP", True)
        assert json.loads(file_store.path.read_text(encoding="utf-8")) == {"pendingOTP": True}

    @pytest.mark.asyncio
    async def test_remove_persists(self, file_store: FileLocalStore):
        await file_store.set("pendingOTP", True)
        await file_store.remove("pendingOTP")

        assert await FileLocalStore(file_store.path).keys() == []

    @pytest.mark.asyncio
    async def test_corrupt_file_reads_empty(self, tmp_path: Path):
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")
        store = FileLocalStore(path)

        assert await store.keys() == []
        await store.set("pendingOTP", True)
        assert json.loads(path.read_text(encoding="utf-8")) == {"pendingOTP": True}

    @pytest.mark.asyncio
    async def test_non_object_reads_empty(self, tmp_path: Path):
        path = tmp_path / "state.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")

        assert await FileLocalStore(path).get("pendingOTP") is None

    @pytest.mark.asyncio
    async def test_clear(self, file_store: FileLocalStore):
        await file_store.set("a", True)
        await file_store.set("b", "x")
        await file_store.clear()

        assert json.loads(file_store.path.read_text(encoding="utf-8")) == {}

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, file_store: FileLocalStore):
        await file_store.set("a", True)
        await file_store.set("b", False)

        assert [p.name for p in file_store.path.parent.iterdir()] == ["state.json"]

    @pytest.mark.asyncio
    async def test_write_failure_raises_store_error(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        store = FileLocalStore(blocker / "state.json")

        with pytest.raises(StoreError) as exc_info:
            await store.set("pendingOTP", True)
        assert exc_info.value.backend == "file"

    @pytest.mark.asyncio
    async def test_failed_write_leaves_cached_view_unchanged(self, file_store: FileLocalStore):
        await file_store.set("pendingOTP", True)
        failure = StoreError("Failed to write local store: disk full", backend="file")

        with patch.object(file_store, "_write_file", side_effect=failure):
            with pytest.raises(StoreError):
                await file_store.set("pendingOTPEmail", "driver@fleet.io")
            with pytest.raises(StoreError):
                await file_store.remove("pendingOTP")
            with pytest.raises(StoreError):
                await file_store.clear()

        assert await file_store.get("pendingOTPEmail") is None
        assert await file_store.get("pendingOTP") is True
        assert await file_store.keys() == ["pendingOTP"]


class TestGetLocalStore:
    """Tests for the local store factory."""

    def test_memory_singleton(self):
        first = get_local_store("memory")
        assert isinstance(first, MemoryLocalStore)
        assert get_local_store("memory") is first

    def test_reset(self):
        first = get_local_store("memory")
        reset_local_store()
        assert get_local_store("memory") is not first

    def test_file_backend(self, tmp_path: Path):
        store = get_local_store("file", path=tmp_path / "state.json")
        assert isinstance(store, FileLocalStore)

    def test_file_backend_requires_path(self):
        with pytest.raises(ValueError, match="requires a path"):
            get_local_store("file")

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown local store backend"):
            get_local_store("sqlite")
