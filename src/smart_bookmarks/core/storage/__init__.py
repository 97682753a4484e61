"""Session storage adapters shared by the server and the command line client."""

from .session_storage import (
    CODE_VERIFIER_KEY,
    SESSION_KEY,
    CookieSessionStorage,
    FileSessionStorage,
    SessionStorage,
)

__all__ = [
    "CODE_VERIFIER_KEY",
    "SESSION_KEY",
    "SessionStorage",
    "FileSessionStorage",
    "CookieSessionStorage",
]
