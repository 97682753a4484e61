"""Sign-in, session and sign-out on top of the backend's auth client.

Sign-in is the authorization code flow with PKCE. The session and the code
verifier of a sign-in in progress live in a session storage passed per call,
so one service instance can serve many requests, each with its own cookie jar.
"""

import time

import httpx
from loguru import logger
from pydantic import ValidationError
from supabase import AsyncClient
from supabase_auth.errors import AuthError, AuthRetryableError
from supabase_auth.types import Session, User

from src.smart_bookmarks.core.services.backend_client import BackendClientFactory
from src.smart_bookmarks.core.services.exceptions import (
    AuthorizationError,
    BackendError,
    backend_error,
)
from src.smart_bookmarks.core.storage import CODE_VERIFIER_KEY, SESSION_KEY, SessionStorage
from src.smart_bookmarks.runtime.config.config_data import AuthConfig, BackendConfig
from src.smart_bookmarks.runtime.context import get_config


# the auth client lets transport failures through as raw httpx errors
_AUTH_FAILURES = (AuthError, httpx.HTTPError)


class AuthClientService:
    """Provider sign-in, session exchange/refresh and sign-out."""

    def __init__(
        self,
        backend_config: BackendConfig | None = None,
        auth_config: AuthConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._clients = BackendClientFactory(backend_config, transport)
        self._auth = auth_config or get_config().auth

    @property
    def clients(self) -> BackendClientFactory:
        return self._clients

    async def client(self, storage: SessionStorage) -> AsyncClient:
        return await self._clients.create(storage)

    async def start_authorization(
        self, storage: SessionStorage, redirect_to: str, provider: str | None = None
    ) -> str:
        """Begin a sign-in and return the provider URL to navigate to.

        A fresh PKCE verifier is written to ``storage``; the matching challenge
        goes into the URL. Nothing is sent to the backend here.

        Raises:
            AuthorizationError: If the flow cannot be started.
        """
        provider = provider or self._auth.provider
        if not provider:
            raise AuthorizationError("No identity provider configured")
        if not redirect_to:
            raise AuthorizationError("Missing redirect target for sign-in")

        try:
            client = await self.client(storage)
            response = await client.auth.sign_in_with_oauth(
                {"provider": provider, "options": {"redirect_to": redirect_to}}
            )
        except BackendError as e:
            raise AuthorizationError(e.message, code=e.code) from e
        except AuthError as e:
            raise AuthorizationError(e.message or "Sign-in could not be started") from e
        except httpx.HTTPError as e:
            raise AuthorizationError(f"Sign-in could not be started: {e}") from e

        logger.debug("Starting {} sign-in, redirect_to={}", provider, redirect_to)
        return response.url

    async def exchange_code_for_session(self, storage: SessionStorage, auth_code: str) -> Session:
        """Exchange a one-time authorization code for a session and store it.

        The stored code verifier is consumed whether or not the exchange
        succeeds; a code can only ever be exchanged once.

        Raises:
            BackendError: On a missing verifier or any failed exchange.
        """
        code_verifier = await storage.get_item(CODE_VERIFIER_KEY)
        if not code_verifier:
            raise BackendError("PKCE code verifier not found in storage", code="missing_verifier")

        try:
            client = await self.client(storage)
            response = await client.auth.exchange_code_for_session(
                {"auth_code": auth_code, "code_verifier": code_verifier}
            )
        except _AUTH_FAILURES as e:
            raise backend_error(e) from e
        except ValidationError as e:
            raise BackendError("Malformed session from identity provider") from e
        finally:
            await storage.remove_item(CODE_VERIFIER_KEY)

        if response.session is None:
            raise BackendError("Code exchange returned no session")
        logger.info("Signed in user {}", response.session.user.id)
        return response.session

    async def open_session(self, storage: SessionStorage) -> tuple[AsyncClient, Session | None]:
        """Return a client plus the current session, refreshed when close to expiry.

        When there is a session, the client's data calls carry its access
        token. A stored session that cannot be refreshed is removed and the
        session comes back as ``None``.
        """
        client = await self.client(storage)
        try:
            session = await client.auth.get_session()
            if session is not None and _expires_within(session, self._auth.refresh_margin_seconds):
                session = (await client.auth.refresh_session(session.refresh_token)).session
                logger.debug("Refreshed session for user {}", session.user.id if session else None)
        except (AuthRetryableError, httpx.HTTPError) as e:
            raise backend_error(e) from e
        except AuthError as e:
            logger.info("Session refresh failed, signing out locally: {}", e.message)
            await storage.remove_item(SESSION_KEY)
            return client, None

        if session is not None:
            client.postgrest.auth(session.access_token)
        return client, session

    async def get_session(self, storage: SessionStorage) -> Session | None:
        """The current session, refreshed when close to expiry (see :meth:`open_session`)."""
        _, session = await self.open_session(storage)
        return session

    async def refresh_session(self, storage: SessionStorage) -> Session:
        """Trade the stored refresh token for a new session and store it.

        Raises:
            BackendError: If there is no session or the refresh is refused.
        """
        client = await self.client(storage)
        try:
            response = await client.auth.refresh_session()
        except _AUTH_FAILURES as e:
            raise backend_error(e) from e
        if response.session is None:
            raise BackendError("Refresh returned no session")
        return response.session

    async def get_user(self, storage: SessionStorage) -> User | None:
        """Fetch the account of the stored session from the provider."""
        client = await self.client(storage)
        try:
            response = await client.auth.get_user()
        except _AUTH_FAILURES as e:
            raise backend_error(e) from e
        return response.user if response else None

    async def sign_out(self, storage: SessionStorage) -> None:
        """Invalidate the session remotely and remove it from ``storage``.

        The local session is removed even when the remote call fails; the
        failure is re-raised afterwards.
        """
        client = await self.client(storage)
        try:
            await client.auth.sign_out({"scope": "local"})
        except _AUTH_FAILURES as e:
            await storage.remove_item(SESSION_KEY)
            raise backend_error(e) from e
        finally:
            await storage.remove_item(CODE_VERIFIER_KEY)
        logger.info("Signed out")

    async def health_check(self) -> bool:
        """True when the identity provider answers its health endpoint."""
        backend = self._clients.backend
        try:
            async with self._clients.http_client() as http:
                response = await http.get(
                    f"{backend.auth_url}/health", headers={"apikey": backend.anon_key}
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Identity provider health check failed: {}", type(e).__name__)
            return False
        return True


def _expires_within(session: Session, seconds: int) -> bool:
    return session.expires_at is not None and time.time() + seconds >= session.expires_at
