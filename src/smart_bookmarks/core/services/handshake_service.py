"""Session handshake: turn a one-time authorization code into a stored session."""

from dataclasses import dataclass

from loguru import logger
from supabase_auth.types import Session

from src.smart_bookmarks.core.security import sanitize_return_url
from src.smart_bookmarks.core.services.auth_client_service import AuthClientService
from src.smart_bookmarks.core.services.exceptions import BackendError
from src.smart_bookmarks.core.storage import SessionStorage


@dataclass(frozen=True)
class HandshakeOutcome:
    """Where to send the caller after the handshake, and whether it signed in."""

    redirect_url: str
    authenticated: bool
    session: Session | None = None


async def complete_handshake(
    auth_client: AuthClientService,
    storage: SessionStorage,
    *,
    origin: str,
    code: str | None,
    next_path: str | None,
    error_path: str,
    default_next: str = "/",
) -> HandshakeOutcome:
    """Exchange ``code`` for a session written into ``storage``.

    Every outcome is a redirect target on ``origin``. Callers must only persist
    the writes made to ``storage`` when ``authenticated`` is true.
    """
    origin = origin.rstrip("/")
    error_url = f"{origin}{error_path}"

    if not code:
        logger.info("Auth callback without code, redirecting to error page")
        return HandshakeOutcome(redirect_url=error_url, authenticated=False)

    destination = sanitize_return_url(next_path, default=default_next)
    if next_path and destination != next_path:
        logger.warning("Rejected unsafe post-login destination")

    try:
        session = await auth_client.exchange_code_for_session(storage, code)
    except BackendError as e:
        # the code itself is never logged
        logger.opt(exception=e).error(
            "Session exchange failed (status={}, code={})", e.status_code, e.code
        )
        return HandshakeOutcome(redirect_url=error_url, authenticated=False)

    return HandshakeOutcome(
        redirect_url=f"{origin}{destination}", authenticated=True, session=session
    )
