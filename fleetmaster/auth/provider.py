"""Identity and data provider abstractions.

Defines the IdentityProvider ABC consumed by the orchestrator and a
concrete implementation for the hosted Supabase backend (GoTrue auth and
PostgREST row queries over HTTP).
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import time

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import httpx

from ..exceptions import AuthenticationFailed, FleetMasterException, OTPInvalid, ProviderError
from ..log import mask_email, redact_sensitive_data
from .session_store import MemorySessionStore, get_session_store
from .types import ProviderSession, VerificationResult
from .validation import normalize_email


if TYPE_CHECKING:
    from ..config import ProviderSettings
    from .session_store import SessionStore


logger = logging.getLogger("fleetmaster.provider")


class IdentityProvider(ABC):
    """Abstract base class for the hosted identity and data provider.

    Every method may raise ``AuthenticationFailed``, ``OTPInvalid`` or
    ``ProviderError``.
    """

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        """Sign in with email and password.

        Raises
        ------
        AuthenticationFailed
            If the credentials are rejected.
        ProviderError
            On network or service failure.
        """

    @abstractmethod
    async def send_one_time_code(self, email: str) -> None:
        """Email a one-time code, creating the user if absent."""

    @abstractmethod
    async def verify_one_time_code(self, email: str, code: str) -> VerificationResult:
        """Verify a one-time code.

        Raises
        ------
        OTPInvalid
            If the code is wrong or expired.
        """

    @abstractmethod
    async def get_current_session(self) -> ProviderSession | None:
        """Return the active session, or None when signed out."""

    @abstractmethod
    async def update_password(self, new_password: str) -> None:
        """Change the password of the signed-in user."""

    @abstractmethod
    async def sign_out(self, clear_cached_credentials: bool = False) -> None:
        """End the session.

        Parameters
        ----------
        clear_cached_credentials : bool
            Also wipe every session cached in secure storage.
        """

    @abstractmethod
    async def is_authorized_email(self, email: str) -> bool:
        """Whether ``email`` is on the fleet manager allow-list."""

    async def close(self) -> None:  # noqa: B027
        """Release network resources."""


# Error codes returned by the hosted auth service, grouped by meaning.
_INVALID_CREDENTIAL_CODES = frozenset(
    {"invalid_credentials", "invalid_grant", "user_not_found", "email_not_confirmed"}
)
_INVALID_OTP_CODES = frozenset({"otp_expired", "otp_disabled", "invalid_otp"})
_NO_SESSION_CODES = frozenset({"session_not_found", "no_session", "bad_jwt"})


def _error_payload(resp: httpx.Response) -> tuple[str, str]:
    """Extract ``(code, message)`` from an error response."""
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    code = str(body.get("error_code") or body.get("error") or body.get("code") or "")
    message = str(
        body.get("msg")
        or body.get("error_description")
        or body.get("message")
        or resp.reason_phrase
        or f"HTTP {resp.status_code}"
    )
    return code, message


def map_auth_error(resp: httpx.Response, operation: str, provider: str) -> Exception:
    """Convert an error response into a Fleet Master exception.

    Parameters
    ----------
    resp : httpx.Response
        The non-success response.
    operation : str
        What was attempted (e.g. "sign in"), used in the message.
    provider : str
        The provider name for error context.

    Returns
    -------
    Exception
        ``AuthenticationFailed``, ``OTPInvalid`` or ``ProviderError``.
    """
    code, message = _error_payload(resp)
    lowered = message.lower()

    if code in _INVALID_OTP_CODES or (
        operation == "verify code" and resp.status_code in (400, 401, 403)
    ):
        return OTPInvalid(f"Invalid or expired code: {message}", provider=provider)
    if (
        code in _INVALID_CREDENTIAL_CODES
        or "invalid login credentials" in lowered
        or "user not found" in lowered
    ):
        return AuthenticationFailed("Invalid credentials", provider=provider)
    if code in _NO_SESSION_CODES or "missing session" in lowered or "no session" in lowered:
        return ProviderError(
            "No active session found", provider=provider, status_code=resp.status_code
        )
    return ProviderError(
        f"{operation.capitalize()} failed: {message}",
        provider=provider,
        status_code=resp.status_code,
    )


def _session_from_payload(raw: dict[str, Any]) -> ProviderSession:
    user = raw.get("user") or {}
    return ProviderSession(
        access_token=raw["access_token"],
        refresh_token=raw.get("refresh_token"),
        user_id=user.get("id"),
        email=user.get("email"),
        token_type=raw.get("token_type", "bearer"),
        expires_in=raw.get("expires_in"),
        issued_at=time.time(),
        raw=raw,
    )


class SupabaseProvider(IdentityProvider):
    """Hosted Supabase project as the identity and data provider.

    Parameters
    ----------
    url : str
        Project base URL (``https://<ref>.supabase.co``).
    anon_key : str
        The project's public API key.
    session_store : SessionStore, optional
        Cache for the provider session; defaults to process memory.
    session_key : str
        Key of the device session in the cache (default ``"default"``).
    allowlist_table : str
        Table listing authorized fleet manager emails.
    allowlist_column : str
        Email column of ``allowlist_table``.
    timeout : float
        Request timeout in seconds.
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        session_store: SessionStore | None = None,
        session_key: str = "default",
        allowlist_table: str = "fleet_manager",
        allowlist_column: str = "email",
        timeout: float = 30.0,
    ) -> None:
        """Initialize the provider."""
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.session_store = session_store or MemorySessionStore()
        self.session_key = session_key
        self.allowlist_table = allowlist_table
        self.allowlist_column = allowlist_column
        self.timeout = timeout
        self._http_client: httpx.AsyncClient | None = None
        self._current: ProviderSession | None = None

    @property
    def name(self) -> str:
        return self.__class__.__name__

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client. Call from app shutdown lifecycle."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {access_token or self.anon_key}",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        access_token: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request and map failures to Fleet Master exceptions."""
        client = await self._get_client()
        logger.debug(
            "%s %s params=%s body=%s",
            method,
            path,
            redact_sensitive_data(kwargs.get("params")),
            redact_sensitive_data(kwargs.get("json")),
        )
        try:
            resp = await client.request(
                method,
                f"{self.url}{path}",
                headers=self._headers(access_token),
                **kwargs,
            )
        except httpx.HTTPError as exc:
            msg = f"Network error: {exc}"
            raise ProviderError(msg, provider=self.name) from exc
        if not resp.is_success:
            raise map_auth_error(resp, operation, self.name)
        return resp

    async def _store_session(self, session: ProviderSession) -> None:
        self._current = session
        await self.session_store.save(self.session_key, session)

    async def _drop_session(self) -> None:
        self._current = None
        await self.session_store.delete(self.session_key)

    async def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        """Sign in via the password grant."""
        resp = await self._request(
            "POST",
            "/auth/v1/token",
            "sign in",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = _session_from_payload(resp.json())
        await self._store_session(session)
        logger.info("Password sign-in succeeded for %s", mask_email(email))
        return session

    async def send_one_time_code(self, email: str) -> None:
        """Request an emailed one-time code."""
        await self._request(
            "POST",
            "/auth/v1/otp",
            "send code",
            json={"email": email, "create_user": True},
        )
        logger.info("One-time code sent to %s", mask_email(email))

    async def verify_one_time_code(self, email: str, code: str) -> VerificationResult:
        """Verify an emailed one-time code; a valid code yields a session."""
        resp = await self._request(
            "POST",
            "/auth/v1/verify",
            "verify code",
            json={"type": "email", "email": email, "token": code},
        )
        raw = resp.json()
        session: ProviderSession | None = None
        if isinstance(raw, dict) and raw.get("access_token"):
            session = _session_from_payload(raw)
            await self._store_session(session)
        user_id = session.user_id if session else (raw.get("user") or {}).get("id")
        return VerificationResult(session=session, user_id=user_id)

    async def _refresh(self, session: ProviderSession) -> ProviderSession | None:
        """Exchange the refresh token; None if the provider rejects it."""
        if not session.refresh_token:
            return None
        try:
            resp = await self._request(
                "POST",
                "/auth/v1/token",
                "refresh session",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": session.refresh_token},
            )
        except ProviderError as exc:
            if exc.status_code is None:
                raise
            logger.warning("Session refresh rejected: %s", exc)
            return None
        except AuthenticationFailed as exc:
            logger.warning("Session refresh rejected: %s", exc)
            return None
        return _session_from_payload(resp.json())

    async def get_current_session(self) -> ProviderSession | None:
        """Return the cached session, refreshing it if expired."""
        session = self._current or await self.session_store.load(self.session_key)
        if session is None:
            return None
        if not session.is_expired:
            self._current = session
            return session

        refreshed = await self._refresh(session)
        if refreshed is None:
            await self._drop_session()
            return None
        await self._store_session(refreshed)
        return refreshed

    async def update_password(self, new_password: str) -> None:
        """Set a new password for the signed-in user."""
        session = await self.get_current_session()
        if session is None:
            msg = "No active session found"
            raise ProviderError(msg, provider=self.name)
        await self._request(
            "PUT",
            "/auth/v1/user",
            "update password",
            access_token=session.access_token,
            json={"password": new_password},
        )
        logger.info("Password updated for user %s", session.user_id)

    async def sign_out(self, clear_cached_credentials: bool = False) -> None:
        """Revoke the session at the provider and drop it locally.

        The local session is always dropped, even when the revoke call
        fails; the failure is then re-raised.
        """
        session = self._current or await self.session_store.load(self.session_key)
        try:
            if session is not None:
                await self._request(
                    "POST",
                    "/auth/v1/logout",
                    "sign out",
                    access_token=session.access_token,
                )
        finally:
            await self._drop_session()
            if clear_cached_credentials:
                for key in await self.session_store.list_keys():
                    await self.session_store.delete(key)
        logger.info("Signed out")

    async def is_authorized_email(self, email: str) -> bool:
        """Row-existence check against the allow-list table."""
        cleaned = normalize_email(email)
        session = self._current
        resp = await self._request(
            "GET",
            f"/rest/v1/{self.allowlist_table}",
            "check authorization",
            access_token=session.access_token if session else None,
            params={
                "select": self.allowlist_column,
                self.allowlist_column: f"eq.{cleaned}",
                "limit": "1",
            },
        )
        try:
            rows = resp.json()
        except ValueError as exc:
            msg = "Authorization check returned invalid JSON"
            raise ProviderError(msg, provider=self.name) from exc
        authorized = isinstance(rows, list) and len(rows) > 0
        logger.debug("Allow-list check for %s: %s", mask_email(cleaned), authorized)
        return authorized


def create_provider_from_settings(settings: ProviderSettings) -> IdentityProvider:
    """Create an IdentityProvider from ``ProviderSettings``.

    Parameters
    ----------
    settings : ProviderSettings
        The provider configuration section.

    Returns
    -------
    IdentityProvider
        A configured provider instance.

    Raises
    ------
    FleetMasterException
        If the URL or API key is missing.
    """
    if not settings.url or not settings.anon_key:
        msg = "Provider requires url and anon_key (FLEETMASTER_PROVIDER__URL / __ANON_KEY)"
        raise FleetMasterException(msg)

    session_store = get_session_store(
        settings.session_store_backend,
        service_name=settings.keyring_service,
    )
    return SupabaseProvider(
        url=settings.url,
        anon_key=settings.anon_key,
        session_store=session_store,
        allowlist_table=settings.allowlist_table,
        allowlist_column=settings.allowlist_column,
        timeout=settings.timeout_seconds,
    )
