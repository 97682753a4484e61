"""Change notification feed interface and an in-process implementation."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

ChangeEvent = Literal["INSERT", "UPDATE", "DELETE"]


class ChangeNotification(BaseModel):
    """A row in a subscribed table changed.

    Only a wake-up signal: subscribers refetch rather than trust the payload.
    Subscriptions always cover every event kind; a notification carries the
    concrete one.
    """

    event: ChangeEvent
    table: str
    db_schema: str = Field(default="public", alias="schema")
    commit_timestamp: datetime | None = None
    record: dict[str, Any] = Field(default_factory=dict)
    old_record: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ChangeNotification | None:
        """Parse a realtime ``postgres_changes`` payload; None when unusable."""
        data = payload.get("data") or payload
        try:
            return cls(
                event=data.get("type") or data.get("eventType"),
                table=data.get("table"),
                schema=data.get("schema") or "public",
                commit_timestamp=data.get("commit_timestamp"),
                record=data.get("record") or data.get("new") or {},
                old_record=data.get("old_record") or data.get("old") or {},
            )
        except ValidationError:
            logger.debug("Ignoring malformed change payload")
            return None


ChangeHandler = Callable[[ChangeNotification], Awaitable[None]]


def parse_row_filter(row_filter: str | None) -> tuple[str, str] | None:
    """Split a ``column=eq.value`` filter into ``(column, value)``."""
    if not row_filter:
        return None
    column, sep, condition = row_filter.partition("=")
    if not sep or not condition.startswith("eq."):
        raise ValueError(f"Unsupported row filter: {row_filter!r}")
    return column, condition[len("eq."):]


class Subscription(ABC):
    """Handle returned by :meth:`ChangeFeed.subscribe`."""

    def __init__(self, table: str, row_filter: str | None):
        self.table = table
        self.row_filter = row_filter

    @property
    @abstractmethod
    def active(self) -> bool:
        """True until the subscription is torn down or its channel closes."""

    @abstractmethod
    async def set_access_token(self, access_token: str) -> None:
        """Hand a refreshed access token to the channel.

        Raises:
            BackendError: If the token could not be delivered.
        """

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop delivering notifications. Calling it twice is harmless."""


class ChangeFeed(ABC):
    """Source of change notifications for one table, filtered per subscriber."""

    @abstractmethod
    async def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        *,
        row_filter: str | None = None,
        access_token: str | None = None,
    ) -> Subscription:
        """Start delivering notifications for ``table`` rows matching ``row_filter``.

        Raises:
            BackendError: If the subscription could not be established.
        """


async def dispatch(handler: ChangeHandler, notification: ChangeNotification) -> None:
    """Run ``handler``; a failing handler is logged and never stops the feed."""
    try:
        await handler(notification)
    except Exception:
        logger.exception("Change handler failed for {} on {}", notification.event, notification.table)


class _InMemorySubscription(Subscription):
    def __init__(
        self,
        feed: InMemoryChangeFeed,
        table: str,
        row_filter: str | None,
        handler: ChangeHandler,
        access_token: str | None,
    ):
        super().__init__(table, row_filter)
        self._feed = feed
        self._filter = parse_row_filter(row_filter)
        self.handler = handler
        self.access_token = access_token
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def matches(self, notification: ChangeNotification) -> bool:
        if notification.table != self.table:
            return False
        if self._filter is None:
            return True
        column, value = self._filter
        row = notification.record or notification.old_record
        return str(row.get(column)) == value

    async def set_access_token(self, access_token: str) -> None:
        self.access_token = access_token

    async def unsubscribe(self) -> None:
        if self._active:
            self._active = False
            self._feed._subscriptions.remove(self)


class InMemoryChangeFeed(ChangeFeed):
    """Feed driven by :meth:`publish`, for tests and single-process use."""

    def __init__(self):
        self._subscriptions: list[_InMemorySubscription] = []

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    @property
    def subscriptions(self) -> list[_InMemorySubscription]:
        return list(self._subscriptions)

    async def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        *,
        row_filter: str | None = None,
        access_token: str | None = None,
    ) -> Subscription:
        subscription = _InMemorySubscription(self, table, row_filter, handler, access_token)
        self._subscriptions.append(subscription)
        logger.debug("In-memory subscription on {} ({})", table, row_filter)
        return subscription

    async def publish(self, notification: ChangeNotification) -> int:
        """Deliver ``notification`` to every matching subscriber.

        Returns:
            Number of subscribers notified.
        """
        targets = [s for s in list(self._subscriptions) if s.matches(notification)]
        await asyncio.gather(*(dispatch(s.handler, notification) for s in targets))
        return len(targets)

    def close_all(self) -> None:
        """Close every channel, as a server dropping the connection would."""
        for subscription in self._subscriptions:
            subscription._active = False
        self._subscriptions.clear()
