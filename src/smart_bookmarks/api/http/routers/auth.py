"""Browser authentication endpoints.

The session lives in cookies written through :class:`CookieSessionStorage`;
every route decides explicitly whether the staged cookie writes reach the
response.
"""

from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import HTMLResponse, RedirectResponse
from loguru import logger
from pydantic import BaseModel

from src.smart_bookmarks.api.http.deps import (
    enforce_origin,
    get_auth_client_service,
    get_cookie_storage,
)
from src.smart_bookmarks.api.http.middleware.limiter import rate_limit
from src.smart_bookmarks.core.security import request_origin, sanitize_return_url
from src.smart_bookmarks.core.services import (
    AuthClientService,
    BackendError,
    complete_handshake,
)
from src.smart_bookmarks.core.storage import CookieSessionStorage
from src.smart_bookmarks.runtime.context import get_config

router_auth = APIRouter(tags=["auth"])


class AuthState(BaseModel):
    """Current authentication state for web clients."""

    authenticated: bool
    user: dict[str, Any] | None = None
    expires_at: int | None = None


_ERROR_PAGE = """<!doctype html>
<html>
  <head><title>Sign-in failed</title></head>
  <body>
    <h1>Sign-in failed</h1>
    <p>The sign-in link was invalid or has expired.</p>
    <p><a href="{login_path}">Try again</a></p>
  </body>
</html>
"""


@router_auth.get("/login", dependencies=[Depends(rate_limit("login"))])
async def initiate_login(
    request: Request,
    next_path: str | None = Query(default=None, alias="next"),
    auth_client: AuthClientService = Depends(get_auth_client_service),
    storage: CookieSessionStorage = Depends(get_cookie_storage),
) -> RedirectResponse:
    """Start the provider sign-in and redirect the browser to it.

    The PKCE code verifier is set as a short-lived cookie; the callback reads
    it back when exchanging the code.
    """
    config = get_config()
    origin = request_origin(request)

    redirect_to = f"{origin}{config.auth.callback_path}"
    destination = sanitize_return_url(next_path, default=config.auth.default_next)
    if destination != config.auth.default_next:
        redirect_to = f"{redirect_to}?{urlencode({'next': destination})}"

    try:
        auth_url = await auth_client.start_authorization(storage, redirect_to)
    except BackendError:
        logger.exception("Could not start sign-in")
        return RedirectResponse(
            url=f"{origin}{config.auth.error_path}", status_code=status.HTTP_302_FOUND
        )

    response = RedirectResponse(url=auth_url, status_code=status.HTTP_302_FOUND)
    storage.apply(response)
    return response


@router_auth.get("/callback", dependencies=[Depends(rate_limit("callback"))])
async def handle_callback(
    request: Request,
    code: str | None = None,
    next_path: str | None = Query(default=None, alias="next"),
    auth_client: AuthClientService = Depends(get_auth_client_service),
    storage: CookieSessionStorage = Depends(get_cookie_storage),
) -> RedirectResponse:
    """Complete the sign-in by exchanging the one-time code for a session.

    Always answers with a redirect: to ``next`` with the session cookies on
    success, or to the error page with no session cookies on any failure.
    """
    config = get_config()
    # Avoid logging the code
    logger.debug("Auth callback received")

    outcome = await complete_handshake(
        auth_client,
        storage,
        origin=request_origin(request),
        code=code,
        next_path=next_path,
        error_path=config.auth.error_path,
        default_next=config.auth.default_next,
    )

    response = RedirectResponse(url=outcome.redirect_url, status_code=status.HTTP_302_FOUND)
    if outcome.authenticated:
        storage.apply(response)
    else:
        storage.discard()
    return response


@router_auth.get("/auth-code-error", response_class=HTMLResponse)
async def auth_code_error() -> HTMLResponse:
    """Fixed landing page for failed handshakes. Carries no error detail."""
    login_path = get_config().auth.login_path
    return HTMLResponse(_ERROR_PAGE.format(login_path=login_path))


@router_auth.get("/session", dependencies=[Depends(rate_limit())])
async def get_auth_state(
    response: Response,
    auth_client: AuthClientService = Depends(get_auth_client_service),
    storage: CookieSessionStorage = Depends(get_cookie_storage),
) -> AuthState:
    """Report who is signed in, refreshing the session cookies when needed."""
    try:
        session = await auth_client.get_session(storage)
    except BackendError as e:
        logger.warning("Session check failed: {}", e.message)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Identity provider unavailable",
        ) from e
    storage.apply(response)

    if session is None:
        return AuthState(authenticated=False)

    return AuthState(
        authenticated=True,
        user={"id": session.user.id, "email": session.user.email},
        expires_at=session.expires_at,
    )


@router_auth.post("/logout", dependencies=[Depends(rate_limit()), Depends(enforce_origin)])
async def logout(
    response: Response,
    auth_client: AuthClientService = Depends(get_auth_client_service),
    storage: CookieSessionStorage = Depends(get_cookie_storage),
) -> dict[str, str]:
    """Invalidate the session upstream and clear the session cookies.

    The cookies are cleared even when the provider call fails.
    """
    try:
        await auth_client.sign_out(storage)
    except BackendError as e:
        logger.warning("Provider sign-out failed: {}", e.message)
    storage.apply(response)
    return {"message": "Logged out"}
