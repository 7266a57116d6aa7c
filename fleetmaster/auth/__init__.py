"""Client-side authentication core for Fleet Master.

Provides the identity provider abstraction, local flag persistence,
provider session caching, the resend cooldown and the login / 2FA /
password-change orchestrator.
"""

from __future__ import annotations

from .app_session import AppSessionState
from .cooldown import ResendCooldown
from .flags import AuthStateFlags
from .local_store import (
    FileLocalStore,
    LocalStore,
    MemoryLocalStore,
    get_local_store,
    reset_local_store,
)
from .orchestrator import AuthOrchestrator
from .provider import IdentityProvider, SupabaseProvider, create_provider_from_settings
from .session_store import (
    KeyringSessionStore,
    MemorySessionStore,
    SessionStore,
    get_session_store,
    reset_session_store,
)
from .types import AuthAlert, AuthStage, AuthViewState, ProviderSession, VerificationResult


__all__ = [
    "AppSessionState",
    "AuthAlert",
    "AuthOrchestrator",
    "AuthStage",
    "AuthStateFlags",
    "AuthViewState",
    "FileLocalStore",
    "IdentityProvider",
    "KeyringSessionStore",
    "LocalStore",
    "MemoryLocalStore",
    "MemorySessionStore",
    "ProviderSession",
    "ResendCooldown",
    "SessionStore",
    "SupabaseProvider",
    "VerificationResult",
    "create_provider_from_settings",
    "get_local_store",
    "get_session_store",
    "reset_local_store",
    "reset_session_store",
]
