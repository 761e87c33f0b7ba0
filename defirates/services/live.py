from __future__ import annotations

import asyncio
from typing import AsyncIterator, Awaitable, Callable

from defirates.services.broadcaster import Broadcaster, format_event

CONNECTED_EVENT = "connected"
KEEP_ALIVE = ": keep-alive\n\n"


async def stream_events(
    broadcaster: Broadcaster,
    is_disconnected: Callable[[], Awaitable[bool]],
    heartbeat: float = 15.0,
) -> AsyncIterator[str]:
    """Yield SSE messages for one live-update connection.

    Starts with a ``connected`` event, then relays broadcasts until the
    client goes away or the broadcaster is closed. The subscription is
    dropped however the generator ends, including cancellation.
    """
    subscriber = broadcaster.subscribe()
    try:
        yield format_event(CONNECTED_EVENT, {"message": "Connected to real-time updates"})
        while True:
            try:
                message = await subscriber.receive(timeout=heartbeat)
            except asyncio.TimeoutError:
                if await is_disconnected():
                    break
                yield KEEP_ALIVE
                continue
            if message is None:
                break
            yield message
    finally:
        broadcaster.unsubscribe(subscriber)
