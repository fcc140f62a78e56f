import redis

from medcheck.services.change_feed import (
    ChangeEvent,
    ChangeFeed,
    FallbackChangeFeed,
    InMemoryChangeFeed,
    RedisChangeFeed,
    channel_name,
)

FIELDS = ("id", "passport_number", "email")


class UnreachableFeed(ChangeFeed):
    def publish(self, event, fields):
        raise redis.ConnectionError("Connection refused")

    def subscribe(self, table, event, field, value, on_event=None):
        raise redis.ConnectionError("Connection refused")

    def unsubscribe(self, subscription):
        raise redis.ConnectionError("Connection refused")

    def reset(self):
        raise redis.ConnectionError("Connection refused")


def _event(passport_number: str, event: str = "update", status: str = "approved") -> ChangeEvent:
    return ChangeEvent(
        table="bookings",
        event=event,
        record={"id": 1, "passport_number": passport_number, "email": "a@example.com", "status": status},
    )


def test_channel_name_includes_table_event_and_filter():
    assert channel_name("bookings", "update", "passport_number", "P123") == "bookings:update:passport_number:P123"


def test_subscriber_only_receives_matching_passport():
    feed = InMemoryChangeFeed()
    subscription = feed.subscribe("bookings", "update", "passport_number", "P123")

    feed.publish(_event("P999"), FIELDS)
    feed.publish(_event("P123"), FIELDS)

    received = subscription.get(timeout=1)
    assert received.record["passport_number"] == "P123"
    assert subscription.get(timeout=0.01) is None
    subscription.close()


def test_subscriber_only_receives_its_event_type():
    feed = InMemoryChangeFeed()
    subscription = feed.subscribe("bookings", "update", "passport_number", "P123")

    feed.publish(_event("P123", event="insert", status="pending"), FIELDS)

    assert subscription.get(timeout=0.01) is None
    subscription.close()


def test_iteration_stops_when_subscription_is_closed():
    feed = InMemoryChangeFeed()
    subscription = feed.subscribe("bookings", "update", "passport_number", "P123")
    feed.publish(_event("P123", status="pending"), FIELDS)
    feed.publish(_event("P123"), FIELDS)

    received = []
    for event in subscription:
        received.append(event.record["status"])
        if len(received) == 2:
            subscription.close()

    assert received == ["pending", "approved"]
    assert feed.subscriber_count() == 0


def test_closed_subscription_receives_nothing():
    feed = InMemoryChangeFeed()
    calls = []
    with feed.subscribe("bookings", "update", "passport_number", "P123", on_event=calls.append):
        feed.publish(_event("P123"), FIELDS)

    feed.publish(_event("P123"), FIELDS)

    assert len(calls) == 1


def test_failing_callback_does_not_break_other_subscribers():
    feed = InMemoryChangeFeed()
    received = []

    def broken(_event):
        raise RuntimeError("subscriber bug")

    feed.subscribe("bookings", "update", "passport_number", "P123", on_event=broken)
    feed.subscribe("bookings", "update", "passport_number", "P123", on_event=received.append)

    feed.publish(_event("P123"), FIELDS)

    assert len(received) == 1


def test_fallback_feed_serves_from_memory_when_primary_is_down():
    memory = InMemoryChangeFeed()
    feed = FallbackChangeFeed(primary=UnreachableFeed(), fallback=memory)
    received = []

    subscription = feed.subscribe("bookings", "update", "passport_number", "P123", on_event=received.append)
    feed.publish(_event("P123"), FIELDS)

    assert len(received) == 1
    feed.unsubscribe(subscription)
    assert memory.subscriber_count() == 0
    feed.reset()


def test_redis_feed_bounds_connect_and_read_waits():
    feed = RedisChangeFeed("redis://localhost:6379/0")

    connection_kwargs = feed._client.connection_pool.connection_kwargs
    assert connection_kwargs["socket_connect_timeout"] == 0.2
    assert connection_kwargs["socket_timeout"] == 0.2
