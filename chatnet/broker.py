"""Publish/subscribe brokers that relay chat messages between server instances."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

import redis

log = logging.getLogger(__name__)

NotifyHandler = Callable[[int, str], None]


class LocalBroker:
    """An in-process broker: published messages reach this broker's handler
    when their channel is subscribed."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._channels: set[int] = set()
        self._handler: NotifyHandler | None = None
        self._connected = False

    @property
    def channels(self) -> frozenset[int]:
        """The channels currently subscribed."""
        with self._lock:
            return frozenset(self._channels)

    def connect(self) -> bool:
        """Make the broker ready for use."""
        with self._lock:
            self._connected = True
        return True

    def publish(self, channel: int, message: str) -> bool:
        """Deliver a message on a channel; False if the broker is not connected."""
        with self._lock:
            if not self._connected:
                log.error("publish command failed: broker not connected")
                return False
            handler = self._handler if channel in self._channels else None
        if handler is not None:
            handler(channel, message)
        return True

    def subscribe(self, channel: int) -> bool:
        """Start receiving messages of a channel."""
        with self._lock:
            if not self._connected:
                log.error("subscribe command failed: broker not connected")
                return False
            self._channels.add(channel)
        return True

    def unsubscribe(self, channel: int) -> bool:
        """Stop receiving messages of a channel."""
        with self._lock:
            if not self._connected:
                log.error("unsubscribe command failed: broker not connected")
                return False
            self._channels.discard(channel)
        return True

    def set_notify_handler(self, handler: NotifyHandler) -> None:
        """Set the callable that receives (channel, message) for each delivery."""
        with self._lock:
            self._handler = handler

    def close(self) -> None:
        """Drop all subscriptions and stop delivering."""
        with self._lock:
            self._connected = False
            self._channels.clear()


class RedisBroker:
    """A broker backed by Redis publish/subscribe.

    One connection publishes; a pub/sub connection, read by a background
    thread, hands incoming channel messages to the notify handler.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 6379) -> None:
        self.host = host
        self.port = port
        self._client: redis.Redis | None = None
        self._pubsub: Any = None
        self._thread: Any = None
        self._handler: NotifyHandler | None = None

    def connect(self) -> bool:
        """Connect to the Redis server and start listening; False on failure."""
        try:
            client = redis.Redis(
                host=self.host,
                port=self.port,
                decode_responses=True,
                socket_connect_timeout=2,
            )
            client.ping()
        except redis.RedisError as exc:
            log.error("connect redis failed! %s", exc)
            return False
        self._client = client
        self._pubsub = client.pubsub()
        self._thread = self._pubsub.run_in_thread(sleep_time=0.1, daemon=True)
        log.info("connect redis-server success!")
        return True

    def _on_message(self, message: dict[str, Any]) -> None:
        handler = self._handler
        channel = message.get("channel")
        data = message.get("data")
        if handler is None or channel is None or data is None:
            return
        handler(int(channel), data)

    def publish(self, channel: int, message: str) -> bool:
        """Publish a message on a channel; False on failure."""
        if self._client is None:
            log.error("publish command failed: not connected")
            return False
        try:
            self._client.publish(str(channel), message)
        except redis.RedisError as exc:
            log.error("publish command failed! %s", exc)
            return False
        return True

    def subscribe(self, channel: int) -> bool:
        """Subscribe to a channel; messages arrive on the listening thread."""
        if self._pubsub is None:
            log.error("subscribe command failed: not connected")
            return False
        try:
            self._pubsub.subscribe(**{str(channel): self._on_message})
        except redis.RedisError as exc:
            log.error("subscribe command failed! %s", exc)
            return False
        return True

    def unsubscribe(self, channel: int) -> bool:
        """Unsubscribe from a channel."""
        if self._pubsub is None:
            log.error("unsubscribe command failed: not connected")
            return False
        try:
            self._pubsub.unsubscribe(str(channel))
        except redis.RedisError as exc:
            log.error("unsubscribe command failed! %s", exc)
            return False
        return True

    def set_notify_handler(self, handler: NotifyHandler) -> None:
        """Set the callable that receives (channel, message) for each delivery."""
        self._handler = handler

    def close(self) -> None:
        """Stop the listening thread and close the connections."""
        if self._thread is not None:
            self._thread.stop()
            self._thread = None
        if self._pubsub is not None:
            self._pubsub.close()
            self._pubsub = None
        if self._client is not None:
            self._client.close()
            self._client = None