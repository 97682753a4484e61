"""Change feed over the backend's realtime channel.

Each subscription is one ``postgres_changes`` channel on the ``supabase``
client's realtime connection, filtered to the subscriber's rows. A closed
channel stops delivering; the subscriber notices through ``active`` and
resubscribes if it wants to.
"""

from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger
from realtime import RealtimeSubscribeStates
from supabase import AsyncClient
from supabase_auth import AsyncMemoryStorage

from src.smart_bookmarks.core.services.backend_client import BackendClientFactory
from src.smart_bookmarks.core.services.exceptions import BackendError
from src.smart_bookmarks.core.services.realtime.change_feed import (
    ChangeFeed,
    ChangeHandler,
    ChangeNotification,
    Subscription,
    dispatch,
)
from src.smart_bookmarks.runtime.config.config_data import BackendConfig, RealtimeConfig
from src.smart_bookmarks.runtime.context import get_config


class _RealtimeSubscription(Subscription):
    def __init__(self, client: AsyncClient, table: str, row_filter: str | None, handler: ChangeHandler):
        super().__init__(table, row_filter)
        self._client = client
        self._handler = handler
        self._channel: Any = None
        self._state: RealtimeSubscribeStates | None = None
        self._error: Exception | None = None
        self._settled = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return self._channel is not None and self._state == RealtimeSubscribeStates.SUBSCRIBED

    def on_state(self, state: RealtimeSubscribeStates, error: Exception | None = None) -> None:
        if state != RealtimeSubscribeStates.SUBSCRIBED and self._state == RealtimeSubscribeStates.SUBSCRIBED:
            logger.warning("Realtime channel for {} left the subscribed state: {}", self.table, state)
        self._state = state
        self._error = error
        self._settled.set()

    def on_change(self, payload: dict[str, Any]) -> None:
        notification = ChangeNotification.from_payload(payload)
        if notification is None:
            return
        task = asyncio.get_running_loop().create_task(dispatch(self._handler, notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def join(self, channel: Any, timeout: float) -> None:
        self._channel = channel
        await channel.subscribe(self.on_state)
        try:
            await asyncio.wait_for(self._settled.wait(), timeout)
        except asyncio.TimeoutError as e:
            raise BackendError("Realtime subscription timed out") from e
        if self._state != RealtimeSubscribeStates.SUBSCRIBED:
            reason = self._error or self._state
            raise BackendError(f"Realtime join rejected: {reason}")

    async def set_access_token(self, access_token: str) -> None:
        try:
            await self._client.realtime.set_auth(access_token)
        except Exception as e:
            raise BackendError(f"Could not refresh realtime token: {e}") from e

    async def unsubscribe(self) -> None:
        channel, self._channel = self._channel, None
        if channel is None:
            return
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._client.remove_channel(channel)
        logger.debug("Unsubscribed from {} changes", self.table)


class RealtimeChangeFeed(ChangeFeed):
    """:class:`ChangeFeed` on the ``supabase`` client's realtime connection.

    The client is built on first use with an in-memory session storage; the
    caller's access token is handed to the connection with every subscribe.
    """

    def __init__(
        self,
        backend_config: BackendConfig | None = None,
        realtime_config: RealtimeConfig | None = None,
        client: AsyncClient | None = None,
    ):
        config = get_config()
        self._backend = backend_config or config.backend
        self._realtime = realtime_config or config.realtime
        self._client = client

    async def _connected_client(self, access_token: str | None) -> AsyncClient:
        if self._client is None:
            self._client = await BackendClientFactory(self._backend).create(AsyncMemoryStorage())
        client = self._client
        await client.realtime.set_auth(access_token or self._backend.anon_key)
        if not client.realtime.is_connected:
            await client.realtime.connect()
        return client

    async def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        *,
        row_filter: str | None = None,
        access_token: str | None = None,
    ) -> Subscription:
        try:
            client = await self._connected_client(access_token)
        except BackendError:
            raise
        except Exception as e:
            # the realtime client reports connection failures as plain exceptions
            raise BackendError(f"Could not connect to realtime channel: {e}") from e

        subscription = _RealtimeSubscription(client, table, row_filter, handler)
        channel = client.channel(f"{table}:{row_filter}" if row_filter else table)
        channel.on_postgres_changes(
            "*",
            subscription.on_change,
            table=table,
            schema=self._backend.db_schema,
            filter=row_filter,
        )

        try:
            await subscription.join(channel, self._realtime.join_timeout_seconds)
        except BackendError:
            await subscription.unsubscribe()
            raise

        logger.info("Subscribed to {} changes ({})", table, row_filter or "all rows")
        return subscription
