"""Exceptions raised by the backend client services."""

from typing import Any

import httpx
from postgrest.exceptions import APIError
from supabase_auth.errors import AuthError


class BackendError(Exception):
    """A call to the managed identity/data backend failed.

    Covers HTTP error statuses, transport failures and unusable response bodies.
    ``message`` is human readable and safe to show to the signed-in user.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(message={self.message!r}, "
            f"status_code={self.status_code!r}, code={self.code!r})"
        )


class AuthorizationError(BackendError):
    """The sign-in flow could not be started."""


def backend_error(error: AuthError | APIError | httpx.HTTPError) -> BackendError:
    """Translate a client library failure into a :class:`BackendError`."""
    if isinstance(error, AuthError):
        status = getattr(error, "status", None)
        return BackendError(
            error.message or type(error).__name__,
            # 0 marks a transport failure in the auth client
            status_code=status or None,
            code=str(error.code) if error.code else None,
        )

    if isinstance(error, APIError):
        return BackendError(
            error.message or "Data API request failed",
            code=str(error.code) if error.code else None,
            details=error.details,
        )

    return BackendError(str(error) or type(error).__name__)
