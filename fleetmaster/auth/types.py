"""Type definitions for the Fleet Master authentication core.

Shared types used by the provider, the persisted flags and the
orchestrator.
"""

from __future__ import annotations

import time

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal


class AuthStage(str, Enum):
    """Stage of the login / 2FA / password flow."""

    UNAUTHENTICATED = "unauthenticated"
    CREDENTIALS_SUBMITTED = "credentials_submitted"
    AWAITING_OTP = "awaiting_otp"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_CHANGE_REQUIRED = "password_change_required"
    PASSWORD_RESET_OTP_VERIFIED = "password_reset_otp_verified"
    AUTHENTICATED = "authenticated"
    SIGNED_OUT = "signed_out"


PASSWORD_CHANGE_STAGES = frozenset(
    {AuthStage.PASSWORD_CHANGE_REQUIRED, AuthStage.PASSWORD_RESET_OTP_VERIFIED}
)

# Stages from which a new login may be submitted.
LOGIN_STAGES = frozenset({AuthStage.UNAUTHENTICATED, AuthStage.SIGNED_OUT})


@dataclass
class ProviderSession:
    """Session returned by the identity provider.

    Attributes
    ----------
    access_token : str
        Bearer token for provider API requests.
    refresh_token : str or None
        Token used to obtain a new access token.
    user_id : str or None
        Opaque identifier of the signed-in user.
    email : str or None
        Email of the signed-in user.
    token_type : str
        Token type, typically "bearer".
    expires_in : int or None
        Access token lifetime in seconds from issuance.
    issued_at : float
        Unix timestamp when the session was issued.
    raw : dict[str, Any]
        The raw session payload from the provider.
    """

    access_token: str
    refresh_token: str | None = None
    user_id: str | None = None
    email: str | None = None
    token_type: str = "bearer"  # noqa: S105
    expires_in: int | None = None
    issued_at: float = field(default_factory=time.time)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_expired(self) -> bool:
        """Check if the access token has expired."""
        if self.expires_in is None:
            return False
        return time.time() > (self.issued_at + self.expires_in)

    @property
    def expires_at(self) -> float | None:
        """Get the expiry timestamp, or None if no expiry."""
        if self.expires_in is None:
            return None
        return self.issued_at + self.expires_in


@dataclass
class VerificationResult:
    """Result of a successful one-time-code verification."""

    session: ProviderSession | None = None
    user_id: str | None = None


@dataclass
class PendingOTP:
    """Persisted pending verification marker."""

    flag: bool = False
    email: str | None = None

    @property
    def is_corrupt(self) -> bool:
        """A set flag with no stored email."""
        return self.flag and not self.email


@dataclass
class ResetFlowState:
    """Persisted password-reset flow marker.

    Stored as ``{"active": bool, "email": str}``.
    """

    active: bool = False
    email: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> ResetFlowState:
        """Decode a persisted blob.

        Missing or wrongly typed fields read as absent.
        """
        if not isinstance(data, dict):
            return cls()
        active = data.get("active")
        email = data.get("email")
        return cls(
            active=active if isinstance(active, bool) else False,
            email=email if isinstance(email, str) and email else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Encode for the local store."""
        return {"active": self.active, "email": self.email or ""}


AlertKind = Literal[
    "validation_error",
    "access_denied",
    "authentication_failed",
    "otp_invalid",
    "provider_error",
    "notice",
]


@dataclass(frozen=True)
class AuthAlert:
    """One-shot user-facing message."""

    kind: AlertKind
    message: str

    @property
    def is_error(self) -> bool:
        """Whether the alert reports a failure."""
        return self.kind != "notice"


@dataclass(frozen=True)
class AuthViewState:
    """Read-only snapshot of everything the UI binds to."""

    stage: AuthStage
    email: str
    password: str
    new_password: str
    confirm_password: str
    otp_digits: tuple[str, ...]
    is_loading: bool
    show_alert: bool
    alert_message: str
    show_two_factor_auth: bool
    show_password_change: bool
    is_password_reset_flow: bool
    is_first_login: bool
    resend_seconds_remaining: int
