"""Fleet Master - client-side authentication core for the fleet management app.

Login with mandatory emailed one-time codes, forced password change on
first login, password reset and session restore, backed by a hosted
identity provider.
"""

from .auth import (
    AppSessionState,
    AuthOrchestrator,
    AuthStage,
    FileLocalStore,
    IdentityProvider,
    LocalStore,
    MemoryLocalStore,
    SupabaseProvider,
)
from .config import FleetMasterSettings, get_settings
from .exceptions import (
    AccessDenied,
    AuthenticationFailed,
    AuthFlowError,
    CorruptLocalState,
    FleetMasterException,
    OTPInvalid,
    ProviderError,
    StoreError,
    ValidationError,
)


__version__ = "1.0.0"

__all__ = [
    "AccessDenied",
    "AppSessionState",
    "AuthFlowError",
    "AuthOrchestrator",
    "AuthStage",
    "AuthenticationFailed",
    "CorruptLocalState",
    "FileLocalStore",
    "FleetMasterException",
    "FleetMasterSettings",
    "IdentityProvider",
    "LocalStore",
    "MemoryLocalStore",
    "OTPInvalid",
    "ProviderError",
    "StoreError",
    "SupabaseProvider",
    "ValidationError",
    "__version__",
    "get_settings",
]
