"""Publish/subscribe feed carrying row changes out of the booking store.

Channels are named ``<table>:<event>:<field>:<value>``; a published event fans
out to one channel per filterable field of the changed record, so a subscriber
listening on ``bookings:update:passport_number:P123`` only ever sees updates
of bookings with that passport number.
"""

import logging
import queue
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator
from typing import Any

import redis
from pydantic import BaseModel

from medcheck.core.config import settings

logger = logging.getLogger("medcheck.change_feed")


class ChangeEvent(BaseModel):
    table: str
    event: str
    record: dict[str, Any]


EventHandler = Callable[[ChangeEvent], None]


def channel_name(table: str, event: str, field: str, value: Any) -> str:
    return f"{table}:{event}:{field}:{value}"


class Subscription:
    """Cancellable handle on one feed channel.

    With ``on_event`` events are pushed to the callback as they arrive;
    without it they are queued and can be consumed with ``get()`` or by
    iterating, which stops once the subscription is closed.
    """

    def __init__(self, channel: str, on_event: EventHandler | None = None) -> None:
        self.channel = channel
        self._on_event = on_event
        self._events: queue.Queue[ChangeEvent | None] = queue.Queue()
        self._closed = threading.Event()
        self._feed: "ChangeFeed | None" = None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def deliver(self, event: ChangeEvent) -> None:
        if self.closed:
            return
        if self._on_event is None:
            self._events.put(event)
            return
        try:
            self._on_event(event)
        except Exception:
            logger.exception("subscriber_callback_failed channel=%s", self.channel)

    def get(self, timeout: float | None = None) -> ChangeEvent | None:
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    def __iter__(self) -> Iterator[ChangeEvent]:
        while not self.closed:
            event = self._events.get()
            if event is None:
                return
            yield event

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        self._events.put(None)
        if self._feed is not None:
            self._feed.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ChangeFeed(ABC):
    @abstractmethod
    def publish(self, event: ChangeEvent, fields: Iterable[str]) -> None:
        raise NotImplementedError

    @abstractmethod
    def subscribe(
        self,
        table: str,
        event: str,
        field: str,
        value: Any,
        on_event: EventHandler | None = None,
    ) -> Subscription:
        raise NotImplementedError

    @abstractmethod
    def unsubscribe(self, subscription: Subscription) -> None:
        raise NotImplementedError

    @abstractmethod
    def reset(self) -> None:
        raise NotImplementedError


class InMemoryChangeFeed(ChangeFeed):
    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscription]] = defaultdict(list)
        self._lock = threading.Lock()

    def publish(self, event: ChangeEvent, fields: Iterable[str]) -> None:
        targets: list[Subscription] = []
        with self._lock:
            for field in fields:
                if field not in event.record:
                    continue
                channel = channel_name(event.table, event.event, field, event.record[field])
                targets.extend(self._subscribers.get(channel, ()))

        for subscription in targets:
            subscription.deliver(event)

    def subscribe(
        self,
        table: str,
        event: str,
        field: str,
        value: Any,
        on_event: EventHandler | None = None,
    ) -> Subscription:
        subscription = Subscription(channel_name(table, event, field, value), on_event=on_event)
        subscription._feed = self
        with self._lock:
            self._subscribers[subscription.channel].append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.channel)
            if subscribers and subscription in subscribers:
                subscribers.remove(subscription)
                if not subscribers:
                    del self._subscribers[subscription.channel]
        if not subscription.closed:
            subscription.close()

    def subscriber_count(self, channel: str | None = None) -> int:
        with self._lock:
            if channel is not None:
                return len(self._subscribers.get(channel, ()))
            return sum(len(subscribers) for subscribers in self._subscribers.values())

    def reset(self) -> None:
        with self._lock:
            subscriptions = [s for subscribers in self._subscribers.values() for s in subscribers]
            self._subscribers.clear()
        for subscription in subscriptions:
            subscription.close()


class RedisChangeFeed(ChangeFeed):
    def __init__(self, redis_url: str, poll_interval: float = 0.1) -> None:
        self._client = redis.Redis.from_url(
            redis_url,
            socket_connect_timeout=0.2,
            socket_timeout=0.2,
            decode_responses=True,
        )
        self._poll_interval = poll_interval
        self._listeners: dict[int, tuple[Any, Any]] = {}
        self._lock = threading.Lock()

    def publish(self, event: ChangeEvent, fields: Iterable[str]) -> None:
        payload = event.model_dump_json()
        pipe = self._client.pipeline()
        for field in fields:
            if field in event.record:
                pipe.publish(channel_name(event.table, event.event, field, event.record[field]), payload)
        pipe.execute()

    def subscribe(
        self,
        table: str,
        event: str,
        field: str,
        value: Any,
        on_event: EventHandler | None = None,
    ) -> Subscription:
        subscription = Subscription(channel_name(table, event, field, value), on_event=on_event)
        subscription._feed = self

        def handle_message(message: dict[str, Any]) -> None:
            subscription.deliver(ChangeEvent.model_validate_json(message["data"]))

        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(**{subscription.channel: handle_message})
        worker = pubsub.run_in_thread(sleep_time=self._poll_interval, daemon=True)
        with self._lock:
            self._listeners[id(subscription)] = (pubsub, worker)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            listener = self._listeners.pop(id(subscription), None)
        if listener is not None:
            pubsub, worker = listener
            worker.stop()
            pubsub.close()
        if not subscription.closed:
            subscription.close()

    def reset(self) -> None:
        with self._lock:
            listeners = list(self._listeners.values())
            self._listeners.clear()
        for pubsub, worker in listeners:
            worker.stop()
            pubsub.close()


class FallbackChangeFeed(ChangeFeed):
    """Uses ``primary`` while it is reachable, ``fallback`` otherwise."""

    def __init__(self, primary: ChangeFeed, fallback: ChangeFeed) -> None:
        self._primary = primary
        self._fallback = fallback

    def publish(self, event: ChangeEvent, fields: Iterable[str]) -> None:
        fields = tuple(fields)
        try:
            self._primary.publish(event, fields)
        except redis.RedisError:
            logger.warning("change_feed_primary_unavailable operation=publish table=%s", event.table)
            self._fallback.publish(event, fields)

    def subscribe(
        self,
        table: str,
        event: str,
        field: str,
        value: Any,
        on_event: EventHandler | None = None,
    ) -> Subscription:
        try:
            return self._primary.subscribe(table, event, field, value, on_event=on_event)
        except redis.RedisError:
            logger.warning("change_feed_primary_unavailable operation=subscribe table=%s", table)
            return self._fallback.subscribe(table, event, field, value, on_event=on_event)

    def unsubscribe(self, subscription: Subscription) -> None:
        # the subscription is bound to whichever backend accepted it
        subscription.close()

    def reset(self) -> None:
        try:
            self._primary.reset()
        except redis.RedisError:
            logger.warning("change_feed_primary_unavailable operation=reset")
        self._fallback.reset()


def _build_change_feed() -> ChangeFeed:
    backend = settings.change_feed_backend.strip().lower()
    memory = InMemoryChangeFeed()
    if backend == "redis":
        redis_feed = RedisChangeFeed(redis_url=settings.change_feed_redis_url)
        return FallbackChangeFeed(primary=redis_feed, fallback=memory)
    return memory


change_feed: ChangeFeed = _build_change_feed()
