"""Request security helpers: redirect sanitizing and proxy-aware addressing."""

from urllib.parse import urlsplit

from fastapi import Request

from src.smart_bookmarks.runtime.context import get_config


def sanitize_return_url(return_to: str | None, default: str = "/") -> str:
    """Restrict a post-login destination to a same-origin relative path.

    Anything that could leave the origin (absolute URLs, scheme-relative
    ``//host`` paths, backslash tricks, control characters) resolves to
    ``default``.

    Args:
        return_to: User-provided destination (typically the ``next`` parameter)
        default: Path returned when ``return_to`` is unusable

    Returns:
        A path starting with a single ``/``
    """
    if not return_to:
        return default

    candidate = return_to.strip()
    if not candidate.startswith("/") or candidate.startswith("//"):
        return default
    if "\\" in candidate:
        return default
    if any(ord(c) < 32 or ord(c) == 127 for c in candidate):
        return default

    parts = urlsplit(candidate)
    if parts.scheme or parts.netloc:
        return default

    return candidate


def request_origin(request: Request) -> str:
    """Return ``scheme://host[:port]`` of the incoming request.

    Forwarded headers are honoured only when the deployment says a trusted proxy
    sets them.
    """
    scheme = request.url.scheme
    host = request.headers.get("host") or request.url.netloc

    if get_config().app.trust_forwarded_headers:
        forwarded_proto = request.headers.get("x-forwarded-proto")
        forwarded_host = request.headers.get("x-forwarded-host")
        if forwarded_proto:
            scheme = forwarded_proto.split(",")[0].strip()
        if forwarded_host:
            host = forwarded_host.split(",")[0].strip()

    return f"{scheme}://{host}"


def client_address(request: Request) -> str:
    """Address of the calling client.

    The first ``X-Forwarded-For`` hop is used only when the deployment says a
    trusted proxy sets it.
    """
    if get_config().app.trust_forwarded_headers:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
