"""Core services exports."""

# Backend client services
from .auth_client_service import AuthClientService
from .backend_client import BackendClientFactory
from .bookmark_service import BookmarkService

# Errors
from .exceptions import AuthorizationError, BackendError

# Handshake
from .handshake_service import HandshakeOutcome, complete_handshake

# Change notifications
from .realtime.change_feed import (
    ChangeFeed,
    ChangeHandler,
    ChangeNotification,
    InMemoryChangeFeed,
    Subscription,
)
from .realtime.realtime_feed import RealtimeChangeFeed

__all__ = [
    # Backend client services
    "AuthClientService",
    "BackendClientFactory",
    "BookmarkService",
    # Errors
    "AuthorizationError",
    "BackendError",
    # Handshake
    "HandshakeOutcome",
    "complete_handshake",
    # Change notifications
    "ChangeFeed",
    "ChangeHandler",
    "ChangeNotification",
    "InMemoryChangeFeed",
    "RealtimeChangeFeed",
    "Subscription",
]
