from __future__ import annotations

import asyncio
import threading
import uuid
from collections.abc import Iterable
from typing import Any

from media_pipeline.config import get_settings
from media_pipeline.jobs.models import SensitivityResult
from media_pipeline.utils.log import logger


def item_topic(media_id: str) -> str:
    return f"item:{media_id}"


def user_topic(user_id: str) -> str:
    return f"user:{user_id}"


def complete_event(media_id: str, sensitivity: SensitivityResult) -> dict[str, Any]:
    return {"type": "complete", "id": media_id, "sensitivity": sensitivity.to_dict()}


def error_event(media_id: str, error: str) -> dict[str, Any]:
    return {"type": "error", "id": media_id, "error": str(error or "Processing failed")}


class Subscriber:
    """
    Outbound mailbox for one transport connection.

    Bound to the event loop it was created on; `offer` may be called from any thread.
    A full mailbox marks the subscriber closed so the broadcaster drops it.
    """

    def __init__(self, *, maxsize: int, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self.id = uuid.uuid4().hex
        self.loop = loop or asyncio.get_running_loop()
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max(1, int(maxsize)))
        self.closed = False

    def __repr__(self) -> str:
        return f"Subscriber({self.id})"

    def offer(self, event: dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            return self._put(event)
        try:
            self.loop.call_soon_threadsafe(self._put, event)
        except RuntimeError:
            # loop already closed
            self.closed = True
            return False
        return True

    def _put(self, event: dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.closed = True
            return False
        return True

    async def get(self) -> dict[str, Any]:
        return await self.queue.get()

    def close(self) -> None:
        self.closed = True


class ProgressBroadcaster:
    """
    Topic fan-out for pipeline events (best-effort, never blocks the publisher).

    Topics are `item:<media_id>` and `user:<owner_id>`. Connections register via
    `connect()` and (un)subscribe idempotently; slow or closed subscribers are
    dropped on the next publish.
    """

    def __init__(self, *, queue_size: int | None = None) -> None:
        self.queue_size = int(queue_size or get_settings().subscriber_queue_size)
        self._lock = threading.Lock()
        self._topics: dict[str, set[Subscriber]] = {}
        self._by_conn: dict[Subscriber, set[str]] = {}

    def connect(self) -> Subscriber:
        conn = Subscriber(maxsize=self.queue_size)
        with self._lock:
            self._by_conn[conn] = set()
        return conn

    def subscribe(self, conn: Subscriber, topic: str) -> None:
        with self._lock:
            self._topics.setdefault(topic, set()).add(conn)
            self._by_conn.setdefault(conn, set()).add(topic)

    def unsubscribe(self, conn: Subscriber, topic: str) -> None:
        with self._lock:
            subs = self._topics.get(topic)
            if subs is not None:
                subs.discard(conn)
                if not subs:
                    del self._topics[topic]
            topics = self._by_conn.get(conn)
            if topics is not None:
                topics.discard(topic)

    def disconnect(self, conn: Subscriber) -> None:
        conn.close()
        with self._lock:
            for topic in self._by_conn.pop(conn, set()):
                subs = self._topics.get(topic)
                if subs is None:
                    continue
                subs.discard(conn)
                if not subs:
                    del self._topics[topic]

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(topic, ()))

    def connection_count(self) -> int:
        with self._lock:
            return len(self._by_conn)

    def publish(self, topic: str, event: dict[str, Any]) -> int:
        return self.publish_many((topic,), event)

    def publish_many(self, topics: Iterable[str], event: dict[str, Any]) -> int:
        """Deliver one copy per connection, however many of `topics` it follows."""
        topics = tuple(topics)
        with self._lock:
            subs: set[Subscriber] = set()
            for topic in topics:
                subs.update(self._topics.get(topic, ()))
        if not subs:
            return 0
        delivered = 0
        dead: list[Subscriber] = []
        for conn in subs:
            if conn.offer(event):
                delivered += 1
            else:
                dead.append(conn)
        for conn in dead:
            self.disconnect(conn)
            logger.info("subscriber_dropped", subscriber=conn.id, topics=list(topics))
        return delivered

    def publish_item_event(self, media_id: str, owner_id: str, event: dict[str, Any]) -> int:
        topics = [item_topic(media_id)]
        if owner_id:
            topics.append(user_topic(owner_id))
        return self.publish_many(topics, event)

    def close(self) -> None:
        with self._lock:
            conns = list(self._by_conn)
            self._topics.clear()
            self._by_conn.clear()
        for conn in conns:
            conn.close()
