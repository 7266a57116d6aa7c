"""Authentication flow orchestrator.

Provides AuthOrchestrator, the state machine behind the login screen:
password sign-in, mandatory emailed one-time code, forced password change
on first login, password reset by code, sign-out and startup restore with
reinstall / first-launch detection.

All intents are coroutines meant to run on the single UI event loop.
Completions that arrive after a sign-out, a teardown or a newer request
are discarded instead of applied.
"""

# pylint: disable=logging-too-many-args,too-many-instance-attributes,too-many-public-methods

from __future__ import annotations

import logging

from typing import TYPE_CHECKING, Any

from ..config import AuthSettings
from ..exceptions import (
    AccessDenied,
    AuthFlowError,
    CorruptLocalState,
    FleetMasterException,
    ProviderError,
    ValidationError,
)
from ..log import mask_email
from .app_session import AppSessionState
from .cooldown import ResendCooldown
from .flags import AuthStateFlags
from .types import (
    LOGIN_STAGES,
    PASSWORD_CHANGE_STAGES,
    AuthAlert,
    AuthStage,
    AuthViewState,
)
from .validation import (
    is_valid_email,
    is_valid_login_input,
    is_valid_otp,
    normalize_email,
    password_problems,
)


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..config import FleetMasterSettings
    from .local_store import LocalStore
    from .provider import IdentityProvider


logger = logging.getLogger("fleetmaster.auth")

MSG_INVALID_LOGIN = "Please enter valid email and password"
MSG_INVALID_EMAIL = "Please enter a valid email address"
MSG_INVALID_OTP = "Please enter a valid OTP"
MSG_ACCESS_DENIED = "Access denied. This email is not registered as a fleet manager."
MSG_OTP_SENT = "OTP sent to your email"
MSG_RESET_DONE = "Password updated successfully. Please log in with your new password."


class AuthOrchestrator:
    """Login / 2FA / password-change state machine.

    Parameters
    ----------
    provider : IdentityProvider
        The hosted identity and data provider.
    store : LocalStore
        Durable key-value store for the persisted flags.
    app_session : AppSessionState, optional
        Process-wide authenticated flag; a private one is created if omitted.
    settings : AuthSettings, optional
        Flow settings (cooldown, OTP length, password policy, app version).
    cooldown : ResendCooldown, optional
        Resend countdown; a one-second one is created if omitted.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        store: LocalStore,
        app_session: AppSessionState | None = None,
        settings: AuthSettings | None = None,
        cooldown: ResendCooldown | None = None,
    ) -> None:
        """Initialize the orchestrator in the unauthenticated stage."""
        self.provider = provider
        self.flags = AuthStateFlags(store)
        self.app_session = app_session or AppSessionState()
        self.settings = settings or AuthSettings()
        self.cooldown = cooldown or ResendCooldown()
        self.cooldown.on_tick = lambda _remaining: self._notify()

        # UI buffers
        self.email = ""
        self.password = ""
        self.new_password = ""
        self.confirm_password = ""
        self.otp_digits: list[str] = [""] * self.settings.otp_length

        self.stage = AuthStage.UNAUTHENTICATED
        self.is_loading = False
        self.is_first_login = True
        self.is_password_reset_flow = False
        self.alert: AuthAlert | None = None
        self.show_alert = False

        self._user_id: str | None = None
        self._epoch = 0
        self._otp_request = 0
        self._listeners: list[Callable[[AuthOrchestrator], None]] = []

    @classmethod
    def from_settings(
        cls,
        settings: FleetMasterSettings,
        app_session: AppSessionState | None = None,
    ) -> AuthOrchestrator:
        """Wire a provider and local store from application settings."""
        from .local_store import get_local_store
        from .provider import create_provider_from_settings

        provider = create_provider_from_settings(settings.provider)
        store = get_local_store(settings.store.backend, path=settings.store.path)
        return cls(provider, store, app_session=app_session, settings=settings.auth)

    # ── Observable surface ─────────────────────────────────────────

    @property
    def show_two_factor_auth(self) -> bool:
        return self.stage is AuthStage.AWAITING_OTP

    @property
    def show_password_change(self) -> bool:
        return self.stage in PASSWORD_CHANGE_STAGES

    @property
    def alert_message(self) -> str:
        return self.alert.message if self.alert else ""

    @property
    def resend_seconds_remaining(self) -> int:
        return self.cooldown.remaining

    @property
    def otp_code(self) -> str:
        return "".join(self.otp_digits)

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def set_otp_digit(self, index: int, value: str) -> None:
        """Write one OTP cell, keeping at most one character."""
        self.otp_digits[index] = value[-1:] if value else ""
        self._notify()

    def snapshot(self) -> AuthViewState:
        """Return a read-only copy of the observable state."""
        return AuthViewState(
            stage=self.stage,
            email=self.email,
            password=self.password,
            new_password=self.new_password,
            confirm_password=self.confirm_password,
            otp_digits=tuple(self.otp_digits),
            is_loading=self.is_loading,
            show_alert=self.show_alert,
            alert_message=self.alert_message,
            show_two_factor_auth=self.show_two_factor_auth,
            show_password_change=self.show_password_change,
            is_password_reset_flow=self.is_password_reset_flow,
            is_first_login=self.is_first_login,
            resend_seconds_remaining=self.resend_seconds_remaining,
        )

    def consume_alert(self) -> AuthAlert | None:
        """Return the pending alert once and clear it."""
        alert = self.alert
        self.alert = None
        self.show_alert = False
        if alert is not None:
            self._notify()
        return alert

    def add_listener(self, listener: Callable[[AuthOrchestrator], None]) -> None:
        """Call ``listener(self)`` after every observable change."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[AuthOrchestrator], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Auth state listener failed")

    def _show(self, kind: Any, message: str) -> None:
        self.alert = AuthAlert(kind=kind, message=message)
        self.show_alert = True
        self._notify()

    def _report(self, exc: Exception, prefix: str | None = None) -> None:
        """Turn a failure into the single user-facing alert."""
        if isinstance(exc, AuthFlowError):
            kind = exc.alert_kind
            message = exc.message
        else:
            kind = "provider_error"
            message = str(exc)
        if prefix and kind in ("provider_error", "otp_invalid", "authentication_failed"):
            message = f"{prefix}: {message}"
        logger.info("Auth flow error (%s) in stage %s: %s", kind, self.stage.value, message)
        self._show(kind, message)

    def _set_stage(self, stage: AuthStage) -> None:
        if stage is not self.stage:
            logger.debug("Auth stage %s -> %s", self.stage.value, stage.value)
            self.stage = stage
        self._notify()

    def _set_loading(self, value: bool) -> None:
        self.is_loading = value
        self._notify()

    def _is_current(self, epoch: int) -> bool:
        if epoch != self._epoch:
            logger.debug("Discarding completion from superseded epoch %s", epoch)
            return False
        return True

    def _invalidate(self) -> None:
        """Make every in-flight completion stale."""
        self._epoch += 1

    async def _discard_stale_writes(self) -> None:
        """Undo pending/reset keys written by a superseded request.

        Left alone while a newer flow owns them.
        """
        if self.stage is AuthStage.AWAITING_OTP or self.stage in PASSWORD_CHANGE_STAGES:
            return
        logger.debug("Clearing flow state persisted by a superseded request")
        try:
            await self.flags.clear_auth_state()
        except FleetMasterException as exc:
            logger.warning("Could not clear persisted auth state: %s", exc)

    def _clear_buffers(self) -> None:
        self.email = ""
        self.password = ""
        self._clear_password_buffers()
        self.otp_digits = [""] * self.settings.otp_length

    def _clear_password_buffers(self) -> None:
        self.password = ""
        self.new_password = ""
        self.confirm_password = ""

    def _authenticate(self) -> None:
        self._clear_password_buffers()
        self.otp_digits = [""] * self.settings.otp_length
        self.cooldown.reset()
        self.is_password_reset_flow = False
        self.app_session.set_logged_in(True)
        self._set_stage(AuthStage.AUTHENTICATED)

    @staticmethod
    def _wrap(exc: Exception, provider: Any) -> AuthFlowError:
        if isinstance(exc, AuthFlowError):
            return exc
        logger.exception("Unexpected provider failure")
        return ProviderError(str(exc) or type(exc).__name__, provider=type(provider).__name__)

    # ── Intents ────────────────────────────────────────────────────

    async def login(self, email: str | None = None, password: str | None = None) -> bool:
        """Submit email and password.

        The allow-list check always runs before the password sign-in. A
        successful sign-in always leads to code verification.

        Returns
        -------
        bool
            True if the flow moved on to ``AWAITING_OTP``.
        """
        if email is not None:
            self.email = email
        if password is not None:
            self.password = password

        if self.stage not in LOGIN_STAGES:
            logger.debug("Login submitted in stage %s, ignoring", self.stage.value)
            return False
        if not is_valid_login_input(self.email, self.password, strict=self.settings.strict_email):
            self._report(ValidationError(MSG_INVALID_LOGIN, stage=self.stage.value))
            return False

        epoch = self._epoch
        address = self.email.strip()
        self._set_stage(AuthStage.CREDENTIALS_SUBMITTED)
        self._set_loading(True)
        try:
            if not await self.provider.is_authorized_email(address):
                raise AccessDenied(MSG_ACCESS_DENIED, email=normalize_email(address))
            if not self._is_current(epoch):
                return False
            session = await self.provider.sign_in_with_password(address, self.password)
            if not self._is_current(epoch):
                return False
            completed = (
                await self.flags.first_login_completed(session.user_id)
                if session.user_id
                else False
            )
            if not self._is_current(epoch):
                return False

            await self.flags.clear_reset_flow()
            if not self._is_current(epoch):
                return False
            await self.flags.set_pending_otp(address)
            if not self._is_current(epoch):
                await self._discard_stale_writes()
                return False

            self._user_id = session.user_id
            self.is_first_login = not completed
            self.is_password_reset_flow = False
            self.email = address
            self.otp_digits = [""] * self.settings.otp_length
            self._set_stage(AuthStage.AWAITING_OTP)
            logger.info(
                "Password accepted for %s (first login: %s)",
                mask_email(address),
                self.is_first_login,
            )
        except Exception as exc:  # noqa: BLE001
            if self._is_current(epoch):
                self._set_stage(AuthStage.UNAUTHENTICATED)
                self._report(self._wrap(exc, self.provider), prefix="Login failed")
            return False
        finally:
            if self._is_current(epoch):
                self._set_loading(False)

        await self._dispatch_otp()
        return True

    async def _dispatch_otp(self) -> bool:
        """Send a code to the current email and restart the cooldown.

        A dispatch that completes after a newer one was started is
        ignored.
        """
        epoch = self._epoch
        self._otp_request += 1
        request_id = self._otp_request
        self._set_loading(True)
        try:
            await self.provider.send_one_time_code(self.email)
        except Exception as exc:  # noqa: BLE001
            if self._is_current(epoch) and request_id == self._otp_request:
                self._report(self._wrap(exc, self.provider), prefix="Failed to send OTP")
            return False
        finally:
            if self._is_current(epoch) and request_id == self._otp_request:
                self._set_loading(False)

        if not self._is_current(epoch) or request_id != self._otp_request:
            logger.debug("Ignoring superseded code dispatch %s", request_id)
            return False
        self.cooldown.start(self.settings.resend_cooldown_seconds)
        self._show("notice", MSG_OTP_SENT)
        return True

    async def resend_otp(self) -> bool:
        """Send a new code once the cooldown has run out.

        Returns
        -------
        bool
            True if a code was dispatched.
        """
        if self.stage is not AuthStage.AWAITING_OTP:
            logger.debug("Resend ignored in stage %s", self.stage.value)
            return False
        if not self.cooldown.ready:
            logger.debug("Resend ignored, %ss of cooldown left", self.cooldown.remaining)
            return False
        return await self._dispatch_otp()

    async def verify_otp(self, code: str | None = None) -> bool:
        """Submit the emailed code.

        Returns
        -------
        bool
            True if the code was accepted.
        """
        if code is not None:
            cells = list(code.strip())[: self.settings.otp_length]
            self.otp_digits = cells + [""] * (self.settings.otp_length - len(cells))

        if self.stage is not AuthStage.AWAITING_OTP:
            logger.debug("Code submitted in stage %s, ignoring", self.stage.value)
            return False
        if not is_valid_otp(self.otp_code, self.settings.otp_length):
            self._report(ValidationError(MSG_INVALID_OTP, stage=self.stage.value))
            return False

        epoch = self._epoch
        self._set_loading(True)
        try:
            result = await self.provider.verify_one_time_code(self.email, self.otp_code)
            if not self._is_current(epoch):
                return False
            if result.user_id:
                self._user_id = result.user_id

            if self.is_password_reset_flow:
                self.otp_digits = [""] * self.settings.otp_length
                self.cooldown.reset()
                self._set_stage(AuthStage.PASSWORD_RESET_OTP_VERIFIED)
            elif self.is_first_login:
                self.otp_digits = [""] * self.settings.otp_length
                self.cooldown.reset()
                self._set_stage(AuthStage.PASSWORD_CHANGE_REQUIRED)
            else:
                await self.flags.clear_auth_state()
                if not self._is_current(epoch):
                    return False
                self._authenticate()
            return True
        except Exception as exc:  # noqa: BLE001
            if self._is_current(epoch):
                self._report(self._wrap(exc, self.provider), prefix="OTP verification failed")
            return False
        finally:
            if self._is_current(epoch):
                self._set_loading(False)

    async def change_password(
        self,
        new_password: str | None = None,
        confirm_password: str | None = None,
    ) -> bool:
        """Set the new password after a verified code.

        In the reset branch the user is sent back to the login screen; in
        the onboarding branch the first login is recorded and the user is
        authenticated.

        Returns
        -------
        bool
            True if the password was changed.
        """
        if new_password is not None:
            self.new_password = new_password
        if confirm_password is not None:
            self.confirm_password = confirm_password

        if self.stage not in PASSWORD_CHANGE_STAGES:
            logger.debug("Password change requested in stage %s, ignoring", self.stage.value)
            return False
        problems = password_problems(
            self.new_password, self.confirm_password, self.settings.min_password_length
        )
        if problems:
            msg = "Please ensure all password requirements are met: missing " + ", ".join(problems)
            self._report(ValidationError(msg, stage=self.stage.value))
            return False

        epoch = self._epoch
        reset_branch = self.stage is AuthStage.PASSWORD_RESET_OTP_VERIFIED
        self._set_loading(True)
        try:
            await self.provider.update_password(self.new_password)
            if not self._is_current(epoch):
                return False

            if reset_branch:
                await self._finish_reset(epoch)
            else:
                await self._finish_onboarding(epoch)
            return True
        except Exception as exc:  # noqa: BLE001
            if self._is_current(epoch):
                self._report(self._wrap(exc, self.provider), prefix="Failed to change password")
            return False
        finally:
            if self._is_current(epoch):
                self._set_loading(False)

    async def _finish_reset(self, epoch: int) -> None:
        try:
            await self.flags.clear_auth_state()
        except FleetMasterException as exc:
            logger.warning("Could not clear persisted auth state: %s", exc)
        try:
            await self.provider.sign_out()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Sign-out after password reset failed: %s", exc)
        if not self._is_current(epoch):
            return
        self.is_password_reset_flow = False
        self._clear_password_buffers()
        self.otp_digits = [""] * self.settings.otp_length
        self.cooldown.reset()
        self._user_id = None
        self._set_stage(AuthStage.UNAUTHENTICATED)
        self._show("notice", MSG_RESET_DONE)

    async def _finish_onboarding(self, epoch: int) -> None:
        # The password has already changed; bookkeeping failures must not
        # send the user back to the form.
        try:
            user_id = self._user_id
            if user_id is None:
                session = await self.provider.get_current_session()
                user_id = session.user_id if session else None
            if user_id is not None:
                await self.flags.record_first_login_completed(user_id)
            else:
                logger.warning("No user id known, first login could not be recorded")
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not record completed first login: %s", exc)
        try:
            await self.flags.clear_pending_otp()
        except FleetMasterException as exc:
            logger.warning("Could not clear pending verification: %s", exc)
        if not self._is_current(epoch):
            return
        self.is_first_login = False
        self._authenticate()

    async def forgot_password(self, email: str | None = None) -> bool:
        """Start a password reset by emailed code.

        Returns
        -------
        bool
            True if a code was sent and the flow awaits it.
        """
        if email is not None:
            self.email = email

        if not is_valid_email(self.email, strict=self.settings.strict_email):
            self._report(ValidationError(MSG_INVALID_EMAIL, stage=self.stage.value))
            return False

        epoch = self._epoch
        address = self.email.strip()
        self._set_stage(AuthStage.PASSWORD_RESET_REQUESTED)
        self._set_loading(True)
        try:
            if not await self.provider.is_authorized_email(address):
                raise AccessDenied(MSG_ACCESS_DENIED, email=normalize_email(address))
            if not self._is_current(epoch):
                return False
            self._otp_request += 1
            await self.provider.send_one_time_code(address)
            if not self._is_current(epoch):
                return False
            await self.flags.set_reset_flow(address)
            if not self._is_current(epoch):
                await self._discard_stale_writes()
                return False
            await self.flags.set_pending_otp(address)
            if not self._is_current(epoch):
                await self._discard_stale_writes()
                return False
        except Exception as exc:  # noqa: BLE001
            if self._is_current(epoch):
                self._set_stage(AuthStage.UNAUTHENTICATED)
                self._report(self._wrap(exc, self.provider), prefix="Password reset failed")
            return False
        finally:
            if self._is_current(epoch):
                self._set_loading(False)

        self.email = address
        self.is_password_reset_flow = True
        self.otp_digits = [""] * self.settings.otp_length
        self.cooldown.start(self.settings.resend_cooldown_seconds)
        self._set_stage(AuthStage.AWAITING_OTP)
        self._show("notice", MSG_OTP_SENT)
        logger.info("Password reset code sent to %s", mask_email(address))
        return True

    async def sign_out(self) -> bool:
        """Sign out and wipe transient and persisted flow state.

        Safe to call repeatedly. Provider failures are logged only.

        Returns
        -------
        bool
            True if the provider acknowledged the sign-out.
        """
        self._invalidate()
        self.cooldown.reset()
        self._set_loading(True)
        acknowledged = True
        try:
            await self.provider.sign_out()
        except Exception as exc:  # noqa: BLE001
            acknowledged = False
            logger.warning("Provider sign-out failed: %s", exc)
        await self._reset_local_state()
        self._set_stage(AuthStage.SIGNED_OUT)
        self._set_loading(False)
        return acknowledged

    async def _reset_local_state(self) -> None:
        """Clear buffers, flags and the authenticated flag."""
        self._clear_buffers()
        self._user_id = None
        self.is_first_login = True
        self.is_password_reset_flow = False
        self.alert = None
        self.show_alert = False
        try:
            await self.flags.clear_auth_state()
        except FleetMasterException as exc:
            logger.warning("Could not clear persisted auth state: %s", exc)
        self.app_session.set_logged_in(False)

    async def _force_sign_out(self, reason: str, clear_cached_credentials: bool = True) -> None:
        logger.info("Forcing sign-out: %s", reason)
        self._invalidate()
        self.cooldown.reset()
        try:
            await self.provider.sign_out(clear_cached_credentials=clear_cached_credentials)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Forced sign-out at provider failed: %s", exc)
        await self._reset_local_state()
        self._set_stage(AuthStage.UNAUTHENTICATED)

    # ── Startup ────────────────────────────────────────────────────

    async def initialize_auth_state(self, current_version: str | None = None) -> AuthStage:
        """Restore the flow after a process start.

        Runs once, before any other intent.

        Parameters
        ----------
        current_version : str, optional
            Running app version; defaults to ``settings.app_version``.

        Returns
        -------
        AuthStage
            The stage the flow was restored to.
        """
        version = current_version or self.settings.app_version
        self._set_loading(True)
        try:
            installed = await self.flags.installed_version()
            if installed is not None and installed != version:
                await self._force_sign_out(f"reinstall detected ({installed} -> {version})")
                await self.flags.record_installed_version(version)
                return self.stage

            previously_launched = await self.flags.previously_launched()
            try:
                session = await self.provider.get_current_session()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Session lookup failed at startup: %s", exc)
                session = None

            if session is None:
                self._set_stage(AuthStage.UNAUTHENTICATED)
            elif not previously_launched:
                await self._force_sign_out("first launch on this device")
            else:
                await self._restore_session(session.user_id)

            await self.flags.record_installed_version(version)
            await self.flags.record_launched()
            return self.stage
        except FleetMasterException as exc:
            logger.warning("Startup restore failed, staying signed out: %s", exc)
            self._set_stage(AuthStage.UNAUTHENTICATED)
            return self.stage
        finally:
            self._set_loading(False)

    async def _restore_session(self, user_id: str | None) -> None:
        try:
            pending = await self.flags.checked_pending_otp()
        except CorruptLocalState as exc:
            await self._force_sign_out(str(exc), clear_cached_credentials=False)
            return

        if not pending.flag:
            logger.info("Existing session restored")
            self._user_id = user_id
            self._authenticate()
            return

        self._user_id = user_id
        self.email = pending.email or ""
        reset = await self.flags.reset_flow()
        self.is_password_reset_flow = reset.active and reset.email == pending.email
        completed = await self.flags.first_login_completed(user_id) if user_id else False
        self.is_first_login = not completed
        self._set_stage(AuthStage.AWAITING_OTP)
        logger.info("Resuming code verification for %s", mask_email(self.email))

    def close(self) -> None:
        """Tear down: stop the cooldown and ignore in-flight completions."""
        self._invalidate()
        self.cooldown.cancel()
        self._listeners.clear()
