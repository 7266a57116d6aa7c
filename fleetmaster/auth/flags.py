"""Typed accessors for the persisted authentication flags.

Every key the auth flow writes to the local store is named here, so the
orchestrator never touches raw keys.
"""

from __future__ import annotations

import logging

from typing import TYPE_CHECKING

from ..exceptions import CorruptLocalState
from .types import PendingOTP, ResetFlowState


if TYPE_CHECKING:
    from .local_store import LocalStore


logger = logging.getLogger("fleetmaster.auth")

PENDING_OTP_KEY = "pendingOTP"
PENDING_OTP_EMAIL_KEY = "pendingOTPEmail"
RESET_FLOW_KEY = "passwordResetFlow"
FIRST_LOGIN_COMPLETED_PREFIX = "firstLoginCompleted_"
APP_VERSION_KEY = "appInstalledVersion"
APP_LAUNCHED_KEY = "appPreviouslyLaunched"


def first_login_key(user_id: str) -> str:
    """Store key of the first-login-completed flag for ``user_id``."""
    return f"{FIRST_LOGIN_COMPLETED_PREFIX}{user_id}"


class AuthStateFlags:
    """Reads and writes the auth flags in a ``LocalStore``.

    Parameters
    ----------
    store : LocalStore
        The durable key-value store.
    """

    def __init__(self, store: LocalStore) -> None:
        self.store = store

    # ── Pending OTP ────────────────────────────────────────────────

    async def pending_otp(self) -> PendingOTP:
        """Read the pending verification marker."""
        flag = await self.store.get_bool(PENDING_OTP_KEY)
        email = await self.store.get_str(PENDING_OTP_EMAIL_KEY)
        return PendingOTP(flag=flag, email=email)

    async def checked_pending_otp(self) -> PendingOTP:
        """Read the pending marker, rejecting a flag without an email.

        Raises
        ------
        CorruptLocalState
            If the flag is set but no email is stored.
        """
        pending = await self.pending_otp()
        if pending.is_corrupt:
            msg = "Pending verification flag without an email"
            raise CorruptLocalState(msg)
        return pending

    async def set_pending_otp(self, email: str) -> None:
        """Mark a verification as pending for ``email``.

        The email is written before the flag so a set flag always has
        an email behind it.
        """
        await self.store.set(PENDING_OTP_EMAIL_KEY, email)
        await self.store.set(PENDING_OTP_KEY, True)

    async def clear_pending_otp(self) -> None:
        """Remove the flag, then its email."""
        await self.store.remove(PENDING_OTP_KEY)
        await self.store.remove(PENDING_OTP_EMAIL_KEY)

    # ── Password reset ─────────────────────────────────────────────

    async def reset_flow(self) -> ResetFlowState:
        """Read the password-reset marker."""
        return ResetFlowState.from_dict(await self.store.get_dict(RESET_FLOW_KEY))

    async def set_reset_flow(self, email: str) -> None:
        """Mark a password reset as in progress for ``email``."""
        await self.store.set(RESET_FLOW_KEY, ResetFlowState(active=True, email=email).to_dict())

    async def clear_reset_flow(self) -> None:
        await self.store.remove(RESET_FLOW_KEY)

    async def clear_auth_state(self) -> None:
        """Clear every pending and reset key."""
        await self.clear_pending_otp()
        await self.clear_reset_flow()

    # ── First login ────────────────────────────────────────────────

    async def first_login_completed(self, user_id: str) -> bool:
        """Whether ``user_id`` already finished the onboarding password change."""
        return await self.store.get_bool(first_login_key(user_id))

    async def record_first_login_completed(self, user_id: str) -> None:
        await self.store.set(first_login_key(user_id), True)
        logger.debug("First login recorded for user %s", user_id)

    # ── App lifecycle markers ──────────────────────────────────────

    async def installed_version(self) -> str | None:
        return await self.store.get_str(APP_VERSION_KEY)

    async def record_installed_version(self, version: str) -> None:
        await self.store.set(APP_VERSION_KEY, version)

    async def previously_launched(self) -> bool:
        return await self.store.get_bool(APP_LAUNCHED_KEY)

    async def record_launched(self) -> None:
        await self.store.set(APP_LAUNCHED_KEY, True)
