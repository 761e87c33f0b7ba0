from __future__ import annotations

import asyncio

import pytest

from defirates.services.broadcaster import Broadcaster
from defirates.services.live import KEEP_ALIVE, stream_events


async def _connected() -> bool:
    return False


async def _disconnected() -> bool:
    return True


@pytest.mark.asyncio
async def test_stream_starts_with_connected_event() -> None:
    broadcaster = Broadcaster()
    stream = stream_events(broadcaster, _connected, heartbeat=1)

    first = await stream.__anext__()

    assert first.startswith("event: connected\n")
    assert "Connected to real-time updates" in first
    assert broadcaster.subscriber_count == 1
    await stream.aclose()
    assert broadcaster.subscriber_count == 0


@pytest.mark.asyncio
async def test_stream_relays_published_events() -> None:
    broadcaster = Broadcaster()
    stream = stream_events(broadcaster, _connected, heartbeat=1)
    await stream.__anext__()

    await broadcaster.publish_data_changed()
    message = await asyncio.wait_for(stream.__anext__(), timeout=1)

    assert message.startswith("event: update\n")
    await stream.aclose()


@pytest.mark.asyncio
async def test_stream_sends_keep_alive_while_idle() -> None:
    broadcaster = Broadcaster()
    stream = stream_events(broadcaster, _connected, heartbeat=0.05)
    await stream.__anext__()

    assert await asyncio.wait_for(stream.__anext__(), timeout=1) == KEEP_ALIVE
    await stream.aclose()


@pytest.mark.asyncio
async def test_stream_ends_when_client_disconnects() -> None:
    broadcaster = Broadcaster()
    messages = []

    async for message in stream_events(broadcaster, _disconnected, heartbeat=0.05):
        messages.append(message)

    assert len(messages) == 1
    assert broadcaster.subscriber_count == 0


@pytest.mark.asyncio
async def test_stream_ends_when_broadcaster_closes() -> None:
    broadcaster = Broadcaster()
    stream = stream_events(broadcaster, _connected, heartbeat=1)
    await stream.__anext__()

    broadcaster.close()

    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
    assert broadcaster.subscriber_count == 0


@pytest.mark.asyncio
async def test_stream_opened_during_shutdown_ends_after_connected() -> None:
    broadcaster = Broadcaster()
    broadcaster.close()

    messages = [message async for message in stream_events(broadcaster, _connected, heartbeat=30)]

    assert len(messages) == 1
    assert messages[0].startswith("event: connected\n")
