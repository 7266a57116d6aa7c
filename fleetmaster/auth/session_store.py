"""Pluggable caches for the identity provider's session.

Provides the SessionStore ABC and concrete implementations for in-memory
and OS-keyring persistence of access/refresh tokens.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import threading
import time

from abc import ABC, abstractmethod
from typing import Any

from ..exceptions import StoreError
from .types import ProviderSession


logger = logging.getLogger("fleetmaster.auth")


class SessionStore(ABC):
    """Abstract base class for provider session storage.

    All methods are async to support both local and OS-backed stores.
    """

    @abstractmethod
    async def save(self, key: str, session: ProviderSession) -> None:
        """Save a session under the given key.

        Parameters
        ----------
        key : str
            Unique identifier (e.g., "default" for the device session).
        session : ProviderSession
            The session to persist.
        """

    @abstractmethod
    async def load(self, key: str) -> ProviderSession | None:
        """Load the session for the given key.

        Parameters
        ----------
        key : str
            Unique identifier.

        Returns
        -------
        ProviderSession or None
            The stored session, or None if not found.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete the session for the given key."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if a session exists for the given key."""

    @abstractmethod
    async def list_keys(self) -> list[str]:
        """List all stored session keys."""


def _serialize_session(session: ProviderSession) -> str:
    """Serialize a ProviderSession to JSON."""
    return json.dumps(
        {
            "access_token": session.access_token,
            "refresh_token": session.refresh_token,
            "user_id": session.user_id,
            "email": session.email,
            "token_type": session.token_type,
            "expires_in": session.expires_in,
            "issued_at": session.issued_at,
            "raw": session.raw,
        }
    )


def _deserialize_session(data: str) -> ProviderSession:
    """Deserialize a ProviderSession from JSON."""
    obj = json.loads(data)
    return ProviderSession(
        access_token=obj["access_token"],
        refresh_token=obj.get("refresh_token"),
        user_id=obj.get("user_id"),
        email=obj.get("email"),
        token_type=obj.get("token_type", "bearer"),
        expires_in=obj.get("expires_in"),
        issued_at=obj.get("issued_at", time.time()),
        raw=obj.get("raw", {}),
    )


class MemorySessionStore(SessionStore):
    """In-memory session store for development and tests."""

    def __init__(self) -> None:
        """Initialize the memory session store."""
        self._sessions: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def save(self, key: str, session: ProviderSession) -> None:
        """Save a session in memory."""
        async with self._lock:
            self._sessions[key] = _serialize_session(session)

    async def load(self, key: str) -> ProviderSession | None:
        """Load a session from memory."""
        async with self._lock:
            data = self._sessions.get(key)
            if data is None:
                return None
            return _deserialize_session(data)

    async def delete(self, key: str) -> None:
        """Delete a session from memory."""
        async with self._lock:
            self._sessions.pop(key, None)

    async def exists(self, key: str) -> bool:
        """Check if a session exists in memory."""
        async with self._lock:
            return key in self._sessions

    async def list_keys(self) -> list[str]:
        """List all session keys in memory."""
        async with self._lock:
            return list(self._sessions.keys())


class KeyringSessionStore(SessionStore):
    """OS keyring-backed session store (secure credential storage).

    Requires the ``keyring`` package: ``pip install fleetmaster[keyring]``

    Parameters
    ----------
    service_name : str
        Service name for keyring storage (default "fleetmaster").
    """

    _INDEX_KEY = "__keys__"

    def __init__(self, service_name: str = "fleetmaster") -> None:
        """Initialize the keyring session store."""
        try:
            import keyring as _keyring
        except ImportError:
            msg = "Install keyring for persistent sessions: pip install fleetmaster[keyring]"
            raise ImportError(msg) from None
        self._service_name = service_name
        self._keyring = _keyring

    async def _call(self, func: Any, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func, self._service_name, *args)
        except self._keyring.errors.KeyringError as exc:
            msg = f"Keyring operation failed: {exc}"
            raise StoreError(msg, backend="keyring") from exc

    async def _read_index(self) -> list[str]:
        raw = await self._call(self._keyring.get_password, self._INDEX_KEY)
        if not raw:
            return []
        try:
            keys = json.loads(raw)
        except ValueError:
            return []
        return [k for k in keys if isinstance(k, str)] if isinstance(keys, list) else []

    async def _write_index(self, keys: list[str]) -> None:
        await self._call(self._keyring.set_password, self._INDEX_KEY, json.dumps(sorted(set(keys))))

    async def save(self, key: str, session: ProviderSession) -> None:
        """Save a session to the OS keyring."""
        await self._call(self._keyring.set_password, key, _serialize_session(session))
        keys = await self._read_index()
        if key not in keys:
            await self._write_index([*keys, key])

    async def load(self, key: str) -> ProviderSession | None:
        """Load a session from the OS keyring."""
        data = await self._call(self._keyring.get_password, key)
        if data is None:
            return None
        try:
            return _deserialize_session(data)
        except (ValueError, KeyError):
            logger.warning("Discarding unreadable cached session %s", key)
            return None

    async def delete(self, key: str) -> None:
        """Delete a session from the OS keyring."""
        with contextlib.suppress(StoreError):
            await self._call(self._keyring.delete_password, key)
        keys = await self._read_index()
        if key in keys:
            await self._write_index([k for k in keys if k != key])

    async def exists(self, key: str) -> bool:
        """Check if a session exists in the OS keyring."""
        return await self.load(key) is not None

    async def list_keys(self) -> list[str]:
        """List keys recorded in the store's index entry."""
        return await self._read_index()


_session_store_instance: SessionStore | None = None
_session_store_lock = threading.Lock()


def get_session_store(backend: str = "memory", **kwargs: Any) -> SessionStore:
    """Factory function for session stores.

    Returns a singleton instance. Call ``reset_session_store()`` to clear
    the cached instance (e.g. in tests).

    Parameters
    ----------
    backend : str
        Storage backend: "memory" or "keyring".
    **kwargs : Any
        ``service_name`` for the keyring backend.

    Returns
    -------
    SessionStore
        A configured session store instance.
    """
    global _session_store_instance  # noqa: PLW0603

    with _session_store_lock:
        if _session_store_instance is not None:
            return _session_store_instance

        if backend == "memory":
            _session_store_instance = MemorySessionStore()
        elif backend == "keyring":
            service_name = kwargs.get("service_name", "fleetmaster")
            _session_store_instance = KeyringSessionStore(service_name=service_name)
        else:
            msg = f"Unknown session store backend: {backend}"
            raise ValueError(msg)

        return _session_store_instance


def reset_session_store() -> None:
    """Reset the singleton session store instance."""
    global _session_store_instance  # noqa: PLW0603

    with _session_store_lock:
        _session_store_instance = None
