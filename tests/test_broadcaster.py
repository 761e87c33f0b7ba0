from __future__ import annotations

import asyncio
import json

import pytest

from defirates.services.broadcaster import Broadcaster, format_event


def test_format_event() -> None:
    assert format_event("update", {"a": 1}) == 'event: update\ndata: {"a": 1}\n\n'
    assert format_event("ping") == "event: ping\ndata: {}\n\n"


@pytest.mark.asyncio
async def test_publish_reaches_every_subscriber() -> None:
    broadcaster = Broadcaster()
    subscribers = [broadcaster.subscribe() for _ in range(3)]

    delivered = await broadcaster.publish("test", {"n": 1})

    assert delivered == 3
    for subscriber in subscribers:
        message = await asyncio.wait_for(subscriber.receive(), timeout=1)
        assert message == 'event: test\ndata: {"n": 1}\n\n'
        assert subscriber.pending() == 0


@pytest.mark.asyncio
async def test_publish_without_subscribers_is_a_noop() -> None:
    broadcaster = Broadcaster()

    assert await broadcaster.publish("test") == 0
    assert await broadcaster.publish_data_changed() == 0


@pytest.mark.asyncio
async def test_data_changed_payload() -> None:
    broadcaster = Broadcaster()
    subscriber = broadcaster.subscribe()

    await broadcaster.publish_data_changed()

    message = await asyncio.wait_for(subscriber.receive(), timeout=1)
    header, data, _, _ = message.split("\n")
    payload = json.loads(data[len("data: "):])
    assert header == "event: update"
    assert payload["message"] == "Data has been updated"
    assert isinstance(payload["timestamp"], int)


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent() -> None:
    broadcaster = Broadcaster()
    subscriber = broadcaster.subscribe()

    broadcaster.unsubscribe(subscriber)
    broadcaster.unsubscribe(subscriber)

    assert broadcaster.subscriber_count == 0
    assert subscriber.closed
    assert await subscriber.receive() is None
    assert await broadcaster.publish("test") == 0


@pytest.mark.asyncio
async def test_stalled_subscriber_does_not_block_others() -> None:
    broadcaster = Broadcaster(queue_size=1, send_timeout=0.1)
    stalled = broadcaster.subscribe()
    await broadcaster.publish("warmup")
    healthy = [broadcaster.subscribe() for _ in range(2)]

    loop = asyncio.get_running_loop()
    started = loop.time()
    delivered = await broadcaster.publish("test", {"n": 2})
    elapsed = loop.time() - started

    assert delivered == 2
    assert elapsed < 1.0
    assert broadcaster.subscriber_count == 3
    assert stalled.pending() == 1
    for subscriber in healthy:
        assert "event: test" in await asyncio.wait_for(subscriber.receive(), timeout=1)


@pytest.mark.asyncio
async def test_close_wakes_waiting_receivers() -> None:
    broadcaster = Broadcaster()
    subscriber = broadcaster.subscribe()
    waiting = asyncio.create_task(subscriber.receive())
    await asyncio.sleep(0)

    broadcaster.close()

    assert await asyncio.wait_for(waiting, timeout=1) is None
    assert broadcaster.subscriber_count == 0


@pytest.mark.asyncio
async def test_queued_messages_drain_after_close() -> None:
    broadcaster = Broadcaster()
    subscriber = broadcaster.subscribe()
    await broadcaster.publish("test")

    broadcaster.close()

    assert await subscriber.receive() == "event: test\ndata: {}\n\n"
    assert await subscriber.receive() is None


@pytest.mark.asyncio
async def test_receive_timeout_keeps_later_messages() -> None:
    broadcaster = Broadcaster()
    subscriber = broadcaster.subscribe()

    with pytest.raises(asyncio.TimeoutError):
        await subscriber.receive(timeout=0.01)
    await broadcaster.publish("test")

    assert await subscriber.receive(timeout=1) == "event: test\ndata: {}\n\n"


@pytest.mark.asyncio
async def test_receive_with_timeout_returns_message_published_while_waiting() -> None:
    broadcaster = Broadcaster()
    subscriber = broadcaster.subscribe()
    waiting = asyncio.create_task(subscriber.receive(timeout=1))
    await asyncio.sleep(0)

    await broadcaster.publish("test")

    assert await waiting == "event: test\ndata: {}\n\n"
    assert subscriber.pending() == 0


@pytest.mark.asyncio
async def test_subscribe_after_close_is_already_closed() -> None:
    broadcaster = Broadcaster()
    broadcaster.close()

    subscriber = broadcaster.subscribe()

    assert subscriber.closed
    assert broadcaster.subscriber_count == 0
    assert await subscriber.receive(timeout=1) is None
    assert await broadcaster.publish("test") == 0
