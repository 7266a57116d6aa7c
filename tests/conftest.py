"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock

import pytest

from fleetmaster.auth.app_session import AppSessionState
from fleetmaster.auth.local_store import MemoryLocalStore, reset_local_store
from fleetmaster.auth.orchestrator import AuthOrchestrator
from fleetmaster.auth.session_store import reset_session_store
from fleetmaster.auth.types import ProviderSession, VerificationResult
from fleetmaster.config import clear_settings
from tests.constants import EMAIL, USER_ID


if TYPE_CHECKING:
    from collections.abc import Generator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _reset_singletons() -> Generator[None, None, None]:
    """Reset cached settings and store singletons around every test."""
    clear_settings()
    reset_local_store()
    reset_session_store()
    yield
    clear_settings()
    reset_local_store()
    reset_session_store()


@pytest.fixture()
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run in an empty directory with no user config and no FLEETMASTER_ vars."""
    import os

    for key in list(os.environ):
        if key.startswith("FLEETMASTER_"):
            monkeypatch.delenv(key)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("APPDATA", str(home))
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    return work


@pytest.fixture()
def provider_session() -> ProviderSession:
    """A valid session for the test user."""
    return ProviderSession(
        access_token="at_valid",
        refresh_token="rt_valid",
        user_id=USER_ID,
        email=EMAIL,
        expires_in=3600,
    )


@pytest.fixture()
def mock_provider(provider_session: ProviderSession) -> MagicMock:
    """Create a mock identity provider that accepts everything."""
    provider = MagicMock()
    provider.is_authorized_email = AsyncMock(return_value=True)
    provider.sign_in_with_password = AsyncMock(return_value=provider_session)
    provider.send_one_time_code = AsyncMock(return_value=None)
    provider.verify_one_time_code = AsyncMock(
        return_value=VerificationResult(session=provider_session, user_id=USER_ID)
    )
    provider.get_current_session = AsyncMock(return_value=None)
    provider.update_password = AsyncMock(return_value=None)
    provider.sign_out = AsyncMock(return_value=None)
    provider.close = AsyncMock(return_value=None)
    return provider


@pytest.fixture()
def store() -> MemoryLocalStore:
    """Create an empty memory store."""
    return MemoryLocalStore()


@pytest.fixture()
def app_session() -> AppSessionState:
    return AppSessionState()


@pytest.fixture()
def orchestrator(
    mock_provider: MagicMock,
    store: MemoryLocalStore,
    app_session: AppSessionState,
) -> AuthOrchestrator:
    """Create an orchestrator wired to the mock provider and memory store."""
    return AuthOrchestrator(mock_provider, store, app_session=app_session)
