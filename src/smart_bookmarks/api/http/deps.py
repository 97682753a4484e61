"""FastAPI dependency implementations."""

from __future__ import annotations

from functools import lru_cache
from typing import Any
from urllib.parse import urlparse

from fastapi import HTTPException, Request

from src.smart_bookmarks.api.http.app_data import ApplicationDependencies
from src.smart_bookmarks.core.services import AuthClientService
from src.smart_bookmarks.core.storage import CODE_VERIFIER_KEY, CookieSessionStorage
from src.smart_bookmarks.runtime.context import get_config


def get_auth_client_service(request: Request) -> AuthClientService:
    """Get the identity provider client from application dependencies."""
    app_deps: ApplicationDependencies = request.app.state.app_dependencies
    return app_deps.auth_client_service


def get_cookie_settings() -> dict[str, Any]:
    """Cookie attributes for the session and code verifier cookies.

    The callback is a top-level GET navigation from the provider, which
    SameSite=Lax allows.
    """
    config = get_config()
    return {
        "httponly": True,
        "secure": config.app.environment == "production" and config.security.secure_cookies,
        "samesite": config.security.cookie_samesite,
        "path": "/",
    }


def get_cookie_storage(request: Request) -> CookieSessionStorage:
    """Session storage bound to this request's cookies.

    Writes are staged; the route decides whether to apply them to its response.
    """
    config = get_config()
    return CookieSessionStorage(
        request,
        get_cookie_settings(),
        cookie_name=config.backend.storage_key,
        chunk_size=config.security.cookie_chunk_size,
        max_age=config.security.session_cookie_max_age,
        max_age_overrides={CODE_VERIFIER_KEY: config.auth.code_verifier_max_age},
    )


@lru_cache(maxsize=50)
def normalize_origin(origin: str) -> tuple[str, str, int]:
    """Normalize an origin string into a tuple for comparison."""
    parsed = urlparse(origin)
    return (
        parsed.scheme.lower(),
        (parsed.hostname or "").lower(),
        parsed.port or (443 if parsed.scheme == "https" else 80),
    )


def get_allowed_origins() -> set[tuple[str, str, int]]:
    """Origins allowed to make state-changing requests: CORS origins plus our own."""
    cfg = get_config()
    allowed = {normalize_origin(a) for a in cfg.app.cors.origins}
    allowed.add(normalize_origin(cfg.app.base_url))
    return allowed


def is_origin_allowed(origin: str) -> bool:
    """Compare candidate origin against allowed origins."""
    return normalize_origin(origin) in get_allowed_origins()


def enforce_origin(request: Request) -> None:
    """Enforce the Origin/Referer allowlist for state-changing requests.

    Skips CORS preflight, safe methods, and development/test environments.
    """
    if request.method == "OPTIONS":
        return

    if request.method not in {"POST", "PUT", "PATCH", "DELETE"}:
        return

    cfg = get_config()
    if cfg.app.environment in ("development", "test"):
        return

    origin = request.headers.get("origin")
    referer = request.headers.get("referer")

    if origin:
        if origin == "null":
            raise HTTPException(status_code=403, detail="Origin 'null' not allowed")
        if not is_origin_allowed(origin):
            raise HTTPException(status_code=403, detail="Origin not allowed")
        return

    if not referer:
        # Fail closed
        raise HTTPException(status_code=403, detail="Missing or invalid Origin")

    if not is_origin_allowed(referer):
        raise HTTPException(status_code=403, detail="Referer origin not allowed")
