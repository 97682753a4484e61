"""Tests for the in-process change feed."""

import pytest

from src.smart_bookmarks.core.services import ChangeNotification, InMemoryChangeFeed
from src.smart_bookmarks.core.services.realtime.change_feed import parse_row_filter


def _change(event: str, user_id: str, table: str = "bookmarks") -> ChangeNotification:
    record = {"id": 1, "user_id": user_id}
    if event == "DELETE":
        return ChangeNotification(event=event, table=table, old_record=record)
    return ChangeNotification(event=event, table=table, record=record)


class TestParseRowFilter:
    def test_eq_filter(self):
        assert parse_row_filter("user_id=eq.abc") == ("user_id", "abc")

    def test_no_filter(self):
        assert parse_row_filter(None) is None

    @pytest.mark.parametrize("value", ["user_id", "user_id=gt.5"])
    def test_unsupported(self, value):
        with pytest.raises(ValueError):
            parse_row_filter(value)


class TestInMemoryChangeFeed:
    @pytest.mark.asyncio
    async def test_delivers_matching_changes(self):
        feed = InMemoryChangeFeed()
        received = []

        async def handler(notification):
            received.append(notification.event)

        await feed.subscribe("bookmarks", handler, row_filter="user_id=eq.user-a")

        assert await feed.publish(_change("INSERT", "user-a")) == 1
        assert await feed.publish(_change("DELETE", "user-a")) == 1
        assert await feed.publish(_change("INSERT", "user-b")) == 0
        assert await feed.publish(_change("INSERT", "user-a", table="other")) == 0

        assert received == ["INSERT", "DELETE"]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self):
        feed = InMemoryChangeFeed()
        received = []

        async def handler(notification):
            received.append(notification)

        subscription = await feed.subscribe("bookmarks", handler)
        assert subscription.active

        await subscription.unsubscribe()
        await subscription.unsubscribe()

        assert not subscription.active
        assert feed.subscription_count == 0
        assert await feed.publish(_change("INSERT", "user-a")) == 0
        assert received == []

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_break_others(self):
        feed = InMemoryChangeFeed()
        received = []

        async def broken(notification):
            raise RuntimeError("boom")

        async def working(notification):
            received.append(notification)

        await feed.subscribe("bookmarks", broken)
        await feed.subscribe("bookmarks", working)

        assert await feed.publish(_change("UPDATE", "user-a")) == 2
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_close_all_deactivates_subscriptions(self):
        feed = InMemoryChangeFeed()

        async def handler(notification):
            pass

        subscription = await feed.subscribe("bookmarks", handler)
        feed.close_all()

        assert not subscription.active
        assert feed.subscription_count == 0
        assert await feed.publish(_change("INSERT", "user-a")) == 0

    @pytest.mark.asyncio
    async def test_set_access_token(self):
        feed = InMemoryChangeFeed()

        async def handler(notification):
            pass

        subscription = await feed.subscribe("bookmarks", handler, access_token="old")
        await subscription.set_access_token("new")

        assert feed.subscriptions[0].access_token == "new"


class TestChangeNotificationFromPayload:
    def test_realtime_payload(self):
        notification = ChangeNotification.from_payload(
            {
                "ids": [1],
                "data": {
                    "schema": "public",
                    "table": "bookmarks",
                    "commit_timestamp": "2024-01-01T00:00:00Z",
                    "type": "INSERT",
                    "record": {"id": 1},
                    "old_record": {},
                },
            }
        )

        assert notification.event == "INSERT"
        assert notification.table == "bookmarks"
        assert notification.record == {"id": 1}
        assert notification.commit_timestamp is not None

    def test_flat_payload_with_event_type(self):
        notification = ChangeNotification.from_payload(
            {"eventType": "DELETE", "table": "bookmarks", "schema": "public", "old": {"id": 2}}
        )

        assert notification.event == "DELETE"
        assert notification.old_record == {"id": 2}

    @pytest.mark.parametrize(
        "payload",
        [
            {"data": {"type": "BOGUS", "table": "bookmarks"}},
            {"data": {"type": "INSERT"}},
            {},
        ],
    )
    def test_unusable_payloads(self, payload):
        assert ChangeNotification.from_payload(payload) is None

    def test_wildcard_is_not_a_delivered_event(self):
        # "*" only selects events when subscribing; every delivery names one kind
        assert ChangeNotification.from_payload({"type": "*", "table": "bookmarks"}) is None
