"""Fleet Master exception hierarchy.

All Fleet Master exceptions inherit from FleetMasterException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any, ClassVar


class FleetMasterException(Exception):
    """Base exception for all Fleet Master errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize Fleet Master exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (stage, provider, status_code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class AuthFlowError(FleetMasterException):
    """Base exception for failures inside the authentication flow.

    Every subclass names the alert kind the orchestrator shows the user
    when it converts the error into a message.
    """

    alert_kind: ClassVar[str] = "provider_error"

    def __init__(self, message: str, stage: str | None = None, **context: Any) -> None:
        """Initialize auth flow error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        stage : str, optional
            The flow stage the error happened in.
        **context : Any
            Additional context.
        """
        if stage is not None:
            context["stage"] = stage
        super().__init__(message, **context)
        self.stage = stage


class ValidationError(AuthFlowError):
    """Local input is malformed.

    Raised before any network call is made.
    """

    alert_kind = "validation_error"


class AccessDenied(AuthFlowError):
    """The email is not on the fleet manager allow-list."""

    alert_kind = "access_denied"

    def __init__(self, message: str, email: str | None = None, **context: Any) -> None:
        """Initialize access denied error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        email : str, optional
            The rejected email address.
        **context : Any
            Additional context.
        """
        super().__init__(message, **context)
        self.email = email


class AuthenticationFailed(AuthFlowError):
    """The provider rejected the credentials."""

    alert_kind = "authentication_failed"


class OTPInvalid(AuthFlowError):
    """The one-time code is wrong or has expired."""

    alert_kind = "otp_invalid"


class ProviderError(AuthFlowError):
    """The identity provider or the network failed.

    Wraps the underlying message so it can be shown to the user.
    """

    alert_kind = "provider_error"

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        **context: Any,
    ) -> None:
        """Initialize provider error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The provider class name.
        status_code : int, optional
            HTTP status code returned by the provider, if any.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, status_code=status_code, **context)
        self.provider = provider
        self.status_code = status_code


class CorruptLocalState(AuthFlowError):
    """Persisted auth flags are inconsistent.

    Never shown to the user; the orchestrator resolves it by forcing
    a sign-out during startup restore.
    """

    alert_kind = "corrupt_local_state"


class StoreError(FleetMasterException):
    """A local store or session cache operation failed."""

    def __init__(self, message: str, backend: str | None = None, **context: Any) -> None:
        """Initialize store error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        backend : str, optional
            The storage backend name.
        **context : Any
            Additional context.
        """
        super().__init__(message, backend=backend, **context)
        self.backend = backend
