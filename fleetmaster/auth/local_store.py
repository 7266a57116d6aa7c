"""Pluggable local persistent stores.

Provides the LocalStore ABC and concrete implementations for in-memory
and JSON-file persistence of the auth flow flags.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import tempfile
import threading

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ..exceptions import StoreError


logger = logging.getLogger("fleetmaster.store")

_ALLOWED_TYPES = (bool, str, dict)


def _check_value(key: str, value: Any) -> None:
    """Reject values the store cannot persist."""
    if not isinstance(value, _ALLOWED_TYPES):
        msg = f"Unsupported value type for {key!r}: {type(value).__name__}"
        raise TypeError(msg)


class LocalStore(ABC):
    """Abstract base class for the durable key-value store.

    Values are ``bool``, ``str`` or ``dict`` (JSON-serialisable). All
    methods are async so file- or network-backed stores never block the
    event loop.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the raw value for ``key``, or None if absent."""

    @abstractmethod
    async def set(self, key: str, value: bool | str | dict[str, Any]) -> None:
        """Store ``value`` under ``key`` (last write wins)."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete ``key``; missing keys are ignored."""

    @abstractmethod
    async def keys(self) -> list[str]:
        """List all stored keys."""

    async def clear(self) -> None:
        """Delete every key."""
        for key in await self.keys():
            await self.remove(key)

    async def get_bool(self, key: str, default: bool = False) -> bool:
        """Read a bool; anything else reads as ``default``."""
        value = await self.get(key)
        return value if isinstance(value, bool) else default

    async def get_str(self, key: str) -> str | None:
        """Read a non-empty string; anything else reads as None."""
        value = await self.get(key)
        return value if isinstance(value, str) and value else None

    async def get_dict(self, key: str) -> dict[str, Any] | None:
        """Read a dict; anything else reads as None."""
        value = await self.get(key)
        return value if isinstance(value, dict) else None


class MemoryLocalStore(LocalStore):
    """In-memory store for tests and single-process use.

    Thread-safe via asyncio.Lock.
    """

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        """Initialize the memory store."""
        self._data: dict[str, Any] = dict(initial or {})
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        """Read a value from memory."""
        async with self._lock:
            return self._data.get(key)

    async def set(self, key: str, value: bool | str | dict[str, Any]) -> None:
        """Write a value to memory."""
        _check_value(key, value)
        async with self._lock:
            self._data[key] = value

    async def remove(self, key: str) -> None:
        """Delete a value from memory."""
        async with self._lock:
            self._data.pop(key, None)

    async def keys(self) -> list[str]:
        """List keys in memory."""
        async with self._lock:
            return list(self._data.keys())


class FileLocalStore(LocalStore):
    """JSON-file store that survives process restarts.

    The whole document is rewritten atomically (temp file + replace) on
    every change. An unreadable or corrupt file is logged and read as
    empty.

    Parameters
    ----------
    path : str or Path
        Location of the JSON document. Parent directories are created.
    """

    def __init__(self, path: str | Path) -> None:
        """Initialize the file store."""
        self.path = Path(path).expanduser()
        self._data: dict[str, Any] | None = None
        self._lock = asyncio.Lock()

    def _read_file(self) -> dict[str, Any]:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("Cannot read local store %s: %s", self.path, exc)
            return {}
        try:
            data = json.loads(content)
        except ValueError:
            logger.warning("Local store %s is corrupt, starting empty", self.path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Local store %s does not hold an object, starting empty", self.path)
            return {}
        return data

    def _write_file(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".fleetmaster-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, indent=2, sort_keys=True)
                os.replace(tmp_name, self.path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            msg = f"Failed to write local store: {exc}"
            raise StoreError(msg, backend="file", path=str(self.path)) from exc

    async def _load(self) -> dict[str, Any]:
        if self._data is None:
            loop = asyncio.get_running_loop()
            self._data = await loop.run_in_executor(None, self._read_file)
        return self._data

    async def _commit(self, data: dict[str, Any]) -> None:
        """Write ``data``; it becomes the cached view only once it is on disk."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_file, data)
        self._data = data

    async def get(self, key: str) -> Any | None:
        """Read a value from the file."""
        async with self._lock:
            data = await self._load()
            return data.get(key)

    async def set(self, key: str, value: bool | str | dict[str, Any]) -> None:
        """Write a value and persist the file."""
        _check_value(key, value)
        async with self._lock:
            data = dict(await self._load())
            data[key] = value
            await self._commit(data)

    async def remove(self, key: str) -> None:
        """Delete a value and persist the file."""
        async with self._lock:
            data = await self._load()
            if key in data:
                data = dict(data)
                del data[key]
                await self._commit(data)

    async def keys(self) -> list[str]:
        """List keys in the file."""
        async with self._lock:
            data = await self._load()
            return list(data.keys())

    async def clear(self) -> None:
        """Delete every key with a single write."""
        async with self._lock:
            await self._load()
            await self._commit({})


_local_store_instance: LocalStore | None = None
_local_store_lock = threading.Lock()


def get_local_store(backend: str = "memory", **kwargs: Any) -> LocalStore:
    """Factory function for local stores.

    Returns a singleton instance. Call ``reset_local_store()`` to clear
    the cached instance (e.g. in tests).

    Parameters
    ----------
    backend : str
        Storage backend: "memory" or "file".
    **kwargs : Any
        ``path`` for the file backend.

    Returns
    -------
    LocalStore
        A configured store instance.
    """
    global _local_store_instance  # noqa: PLW0603

    with _local_store_lock:
        if _local_store_instance is not None:
            return _local_store_instance

        if backend == "memory":
            _local_store_instance = MemoryLocalStore()
        elif backend == "file":
            path = kwargs.get("path")
            if path is None:
                msg = "File local store requires a path"
                raise ValueError(msg)
            _local_store_instance = FileLocalStore(path)
        else:
            msg = f"Unknown local store backend: {backend}"
            raise ValueError(msg)

        return _local_store_instance


def reset_local_store() -> None:
    """Reset the singleton local store instance."""
    global _local_store_instance  # noqa: PLW0603

    with _local_store_lock:
        _local_store_instance = None
