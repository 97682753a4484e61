"""Client-side session and bookmark state.

``BookmarkController`` is the single source of truth for who is signed in and
which bookmarks they have. It is UI agnostic; the command line client drives
it, and any other front end can read its attributes after each awaited call.

Every remote call happens at most once per action. Failures never raise out
of the controller; they end up in ``error_message``.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from supabase import AsyncClient
from supabase_auth.types import Session, User

from src.smart_bookmarks.core.services import (
    AuthClientService,
    BackendError,
    BookmarkService,
    ChangeFeed,
    ChangeNotification,
    Subscription,
)
from src.smart_bookmarks.core.storage import SessionStorage
from src.smart_bookmarks.entities.bookmark import Bookmark, BookmarkCreate
from src.smart_bookmarks.runtime.context import get_config


@dataclass(frozen=True)
class SessionContext:
    """Authentication state, replaced as a whole on every sign-in or sign-out."""

    user: User | None = None

    @property
    def authenticated(self) -> bool:
        return self.user is not None


class BookmarkController:
    """Reconciles local state with the remote session and bookmark list."""

    def __init__(
        self,
        auth_client: AuthClientService,
        bookmark_service: BookmarkService,
        storage: SessionStorage,
        change_feed: ChangeFeed | None = None,
        *,
        redirect_to: str | None = None,
    ):
        config = get_config()
        self._auth = auth_client
        self._bookmarks = bookmark_service
        self._storage = storage
        self._feed = change_feed
        self._redirect_to = redirect_to or f"{config.app.base_url}{config.auth.callback_path}"
        self._table = config.backend.bookmarks_table
        self._subscription: Subscription | None = None
        self._feed_token: str | None = None

        self.context = SessionContext()
        self.bookmarks: list[Bookmark] = []
        self.url = ""
        self.title = ""
        self.loading = True
        self.error_message: str | None = None

    @property
    def user(self) -> User | None:
        return self.context.user

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    async def __aenter__(self) -> BookmarkController:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def initialize(self) -> None:
        """Load the current session and, when signed in, bookmarks plus live updates."""
        self.loading = True
        try:
            try:
                session = await self._auth.get_session(self._storage)
            except BackendError as e:
                self.error_message = f"Failed to load session: {e.message}"
                session = None
            if session is None:
                await self._set_signed_out()
                return

            if self.user is not None and self.user.id != session.user.id:
                await self._unsubscribe()
                self.bookmarks = []
            self.context = SessionContext(user=session.user)

            await self.refetch()
            await self._subscribe(session)
        finally:
            self.loading = False

    async def sign_in(self) -> str | None:
        """Start the provider sign-in and return the URL to open.

        Nothing else changes locally; completing the flow is the handshake
        handler's job, followed by another :meth:`initialize`.
        """
        try:
            return await self._auth.start_authorization(self._storage, self._redirect_to)
        except BackendError as e:
            self.error_message = f"Error signing in: {e.message}"
            logger.warning("Sign-in could not be started: {}", e.message)
            return None

    async def sign_out(self) -> None:
        """Invalidate the session remotely, then clear local state regardless."""
        try:
            await self._auth.sign_out(self._storage)
        except BackendError as e:
            logger.warning("Remote sign-out failed: {}", e.message)
        finally:
            await self._set_signed_out()

    async def create_bookmark(self) -> bool:
        """Insert the pending url/title for the current user.

        Blank input is rejected without a call; otherwise both values are
        submitted exactly as typed.

        Returns:
            True when the insert succeeded.
        """
        if not self.url.strip() or not self.title.strip() or self.user is None:
            return False

        try:
            client = await self._data_client()
            await self._bookmarks.create_bookmark(
                client, BookmarkCreate(url=self.url, title=self.title, user_id=self.user.id)
            )
        except BackendError as e:
            self.error_message = f"Error adding bookmark: {e.message}"
            return False

        self.url = ""
        self.title = ""
        await self.refetch()
        return True

    async def delete_bookmark(self, bookmark_id: int) -> bool:
        """Delete one bookmark; ownership is checked by the backend."""
        if self.user is None:
            return False

        try:
            client = await self._data_client()
            await self._bookmarks.delete_bookmark(client, bookmark_id)
        except BackendError as e:
            self.error_message = f"Error deleting bookmark: {e.message}"
            return False

        await self.refetch()
        return True

    async def refetch(self) -> None:
        """Replace the list with the backend's current one. Last response wins.

        A response that arrives after the signed-in user changed (or signed
        out) is dropped.
        """
        if self.user is None:
            return
        user_id = self.user.id

        try:
            client = await self._data_client()
            bookmarks = await self._bookmarks.list_bookmarks(client)
        except BackendError as e:
            if self._is_current(user_id):
                self.error_message = f"Failed to load bookmarks: {e.message}"
            return

        if not self._is_current(user_id):
            logger.debug("Dropping bookmark list fetched for a previous session")
            return
        self.bookmarks = bookmarks
        self.error_message = None

    async def keep_alive(self) -> None:
        """Refresh a session close to expiry and keep live updates attached.

        Long-running clients call this periodically. A refreshed access token
        is handed to the change subscription. A dropped subscription is
        re-established, followed by a refetch to pick up changes missed
        meanwhile.
        """
        if self.user is None:
            return

        try:
            session = await self._auth.get_session(self._storage)
        except BackendError as e:
            logger.warning("Session check failed: {}", e.message)
            return
        if session is None or session.user.id != self.user.id:
            await self.initialize()
            return

        if self._feed is None:
            return
        if not self.subscribed:
            logger.info("Live updates dropped, resubscribing")
            await self._subscribe(session)
            if self.subscribed:
                await self.refetch()
            return

        if session.access_token != self._feed_token:
            try:
                await self._subscription.set_access_token(session.access_token)
            except BackendError as e:
                logger.warning("Could not refresh live update token: {}", e.message)
                return
            self._feed_token = session.access_token

    async def close(self) -> None:
        """Tear down the change subscription."""
        await self._unsubscribe()

    async def _on_change(self, notification: ChangeNotification) -> None:
        logger.debug("Change notification: {} on {}", notification.event, notification.table)
        await self.refetch()

    def _is_current(self, user_id: str) -> bool:
        return self.user is not None and self.user.id == user_id

    async def _data_client(self) -> AsyncClient:
        client, session = await self._auth.open_session(self._storage)
        if session is None:
            raise BackendError("Not signed in", status_code=401)
        return client

    async def _subscribe(self, session: Session) -> None:
        if self._feed is None or self.subscribed:
            return
        await self._unsubscribe()
        try:
            self._subscription = await self._feed.subscribe(
                self._table,
                self._on_change,
                row_filter=f"user_id=eq.{session.user.id}",
                access_token=session.access_token,
            )
        except BackendError as e:
            logger.warning("Live updates unavailable: {}", e.message)
            return
        self._feed_token = session.access_token

    async def _unsubscribe(self) -> None:
        subscription, self._subscription = self._subscription, None
        self._feed_token = None
        if subscription is not None:
            await subscription.unsubscribe()

    async def _set_signed_out(self) -> None:
        await self._unsubscribe()
        self.context = SessionContext()
        self.bookmarks = []
