from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DATA_CHANGED_EVENT = "update"


def format_event(event_type: str, payload: Optional[Dict[str, Any]] = None) -> str:
    """Encode one Server-Sent Events message."""
    data = json.dumps(payload) if payload is not None else "{}"
    return f"event: {event_type}\ndata: {data}\n\n"


class Subscriber:
    """A bounded outbound queue for one live-update connection."""

    def __init__(self, maxsize: int = 10):
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def pending(self) -> int:
        return self._queue.qsize()

    async def send(self, message: str, timeout: float) -> bool:
        """Queue ``message``, waiting at most ``timeout`` seconds for room."""
        if self.closed:
            return False
        try:
            await asyncio.wait_for(self._queue.put(message), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def receive(self, timeout: Optional[float] = None) -> Optional[str]:
        """Next queued message, or None once the subscriber is closed and drained.

        Raises ``asyncio.TimeoutError`` if nothing arrives within ``timeout``
        seconds; a message is never dequeued and then dropped.
        """
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self.closed:
            return None

        getter = asyncio.ensure_future(self._queue.get())
        closer = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({getter, closer}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closer.cancel()
            if not getter.done():
                getter.cancel()
        if getter.done() and not getter.cancelled():
            return getter.result()
        if self.closed:
            return None
        raise asyncio.TimeoutError

    def close(self) -> None:
        self._closed.set()


class Broadcaster:
    """Fans a single event out to every connected live-update subscriber.

    The registry lock is only held to add, remove or snapshot subscribers,
    never while sending, so a slow subscriber cannot hold up a subscribe or
    another publish.
    """

    def __init__(self, queue_size: int = 10, send_timeout: float = 1.0):
        self.queue_size = queue_size
        self.send_timeout = send_timeout
        self._subscribers: set[Subscriber] = set()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> Subscriber:
        subscriber = Subscriber(maxsize=self.queue_size)
        with self._lock:
            if self._closed:
                # shutting down: the stream ends right after its connected event
                subscriber.close()
                return subscriber
            self._subscribers.add(subscriber)
            total = len(self._subscribers)
        logger.info(f"SSE client registered. Total clients: {total}")
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber not in self._subscribers:
                return
            self._subscribers.discard(subscriber)
            total = len(self._subscribers)
        subscriber.close()
        logger.info(f"SSE client unregistered. Total clients: {total}")

    def _snapshot(self) -> List[Subscriber]:
        with self._lock:
            return list(self._subscribers)

    async def publish(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> int:
        """Send one event to every subscriber; returns how many accepted it.

        A subscriber whose queue stays full past ``send_timeout`` misses this
        event but stays registered; its own connection cleans it up.
        """
        subscribers = self._snapshot()
        if not subscribers:
            return 0

        message = format_event(event_type, payload)
        results = await asyncio.gather(*(s.send(message, self.send_timeout) for s in subscribers))
        delivered = sum(1 for ok in results if ok)
        skipped = len(subscribers) - delivered
        if skipped:
            logger.debug(f"Skipped {skipped} unresponsive client(s) for {event_type} event")
        logger.info(f"Broadcasted {event_type} event to {delivered} clients")
        return delivered

    async def publish_data_changed(self) -> int:
        return await self.publish(
            DATA_CHANGED_EVENT,
            {"timestamp": int(time.time()), "message": "Data has been updated"},
        )

    def close(self) -> None:
        with self._lock:
            self._closed = True
            subscribers = list(self._subscribers)
            self._subscribers.clear()
        for subscriber in subscribers:
            subscriber.close()
        if subscribers:
            logger.info(f"Closed {len(subscribers)} SSE client(s)")
