from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, List

import pytest

from defirates.background import BackgroundRefresher
from defirates.clients.base import Source, SourceUnavailable
from defirates.db import Database, DatabaseNotInitialized
from defirates.models import Protocol, YieldRate
from defirates.services.broadcaster import Broadcaster
from defirates.services.storage import RecordStore


def _adapt(record: Dict[str, Any], protocol_id: int) -> YieldRate:
    return YieldRate(protocol_id=protocol_id, **record)


def _source(name: str, protocol: str, records: List[Dict[str, Any]] | Exception) -> Source:
    async def fetch(_http) -> List[Dict[str, Any]]:
        if isinstance(records, Exception):
            raise records
        return records

    return Source(name=name, protocol=Protocol(name=protocol), fetch=fetch, adapt=_adapt)


def _record(pool_name: str, apy: float, chain: str = "Ethereum") -> Dict[str, Any]:
    return {"asset": "X", "chain": chain, "apy": apy, "tvl": 1_000.0, "pool_name": pool_name}


async def _drain(subscriber) -> List[str]:
    messages = []
    while subscriber.pending():
        messages.append(await subscriber.receive())
    return messages


@pytest.mark.asyncio
async def test_refresh_updates_existing_row_and_notifies_once(store: RecordStore, pendle: Protocol) -> None:
    existing = YieldRate(protocol_id=pendle.id, asset="X", chain="Ethereum", apy=10.0, tvl=1_000.0, pool_name="PoolX")
    existing_id = store.upsert_yield_rate(existing)
    broadcaster = Broadcaster()
    subscriber = broadcaster.subscribe()
    refresher = BackgroundRefresher(
        store, broadcaster, http=None, sources=[_source("pendle", "Pendle", [_record("PoolX", 12.5)])]
    )

    result = await refresher.run_cycle()

    updated = store.get_by_natural_key(pendle.id, "PoolX", "Ethereum")
    assert updated.id == existing_id
    assert updated.apy == 12.5
    assert store.count() == 1
    assert result.stored == 1
    assert refresher.last_refresh_at == result.finished_at

    messages = await _drain(subscriber)
    assert len(messages) == 1
    assert messages[0].startswith("event: update\n")


@pytest.mark.asyncio
async def test_one_notification_per_cycle_across_sources(store: RecordStore) -> None:
    broadcaster = Broadcaster()
    subscriber = broadcaster.subscribe()
    sources = [
        _source("pendle", "Pendle", [_record("A", 1.0), _record("B", 2.0)]),
        _source("beefy", "Beefy", [_record("C", 3.0, "Base")]),
    ]
    refresher = BackgroundRefresher(store, broadcaster, http=None, sources=sources)

    result = await refresher.run_cycle()

    assert [s.stored for s in result.sources] == [2, 1]
    assert store.protocol_names() == ["Beefy", "Pendle"]
    assert len(await _drain(subscriber)) == 1


@pytest.mark.asyncio
async def test_failing_source_does_not_stop_others(store: RecordStore) -> None:
    broadcaster = Broadcaster()
    subscriber = broadcaster.subscribe()
    sources = [
        _source("pendle", "Pendle", SourceUnavailable("no markets fetched from any chain")),
        _source("beefy", "Beefy", [_record("C", 3.0)]),
    ]
    refresher = BackgroundRefresher(store, broadcaster, http=None, sources=sources)

    result = await refresher.run_cycle()

    pendle_result, beefy_result = result.sources
    assert pendle_result.stored == 0
    assert pendle_result.error == "no markets fetched from any chain"
    assert beefy_result.stored == 1
    assert beefy_result.error is None
    assert len(await _drain(subscriber)) == 1


@pytest.mark.asyncio
async def test_unavailable_source_keeps_existing_rows(store: RecordStore, pendle: Protocol) -> None:
    store.upsert_yield_rate(YieldRate(protocol_id=pendle.id, asset="X", chain="Base", apy=3.0, tvl=1.0, pool_name="P"))
    refresher = BackgroundRefresher(
        store, Broadcaster(), http=None, sources=[_source("pendle", "Pendle", RuntimeError("boom"))]
    )

    await refresher.run_cycle()

    assert store.count(protocol_id=pendle.id) == 1


@pytest.mark.asyncio
async def test_malformed_records_are_counted(store: RecordStore) -> None:
    records = [_record("A", 1.0), {"asset": "X", "chain": "", "apy": 1.0, "tvl": 0.0, "pool_name": "B"}, {"asset": "Y"}]
    refresher = BackgroundRefresher(store, Broadcaster(), http=None, sources=[_source("pendle", "Pendle", records)])

    result = await refresher.run_cycle()

    assert result.stored == 1
    assert result.failed == 2


@pytest.mark.asyncio
async def test_storage_failure_aborts_cycle_without_notifying(tmp_path: Path) -> None:
    store = RecordStore(Database(f"sqlite:///{tmp_path / 'never-connected.db'}"))
    broadcaster = Broadcaster()
    subscriber = broadcaster.subscribe()
    refresher = BackgroundRefresher(store, broadcaster, http=None, sources=[_source("pendle", "Pendle", [])])

    with pytest.raises(DatabaseNotInitialized):
        await refresher.run_cycle()

    assert subscriber.pending() == 0
    assert refresher.last_refresh_at is None


@pytest.mark.asyncio
async def test_loop_survives_failed_cycles(tmp_path: Path) -> None:
    store = RecordStore(Database(f"sqlite:///{tmp_path / 'never-connected.db'}"))
    refresher = BackgroundRefresher(
        store, Broadcaster(), http=None, sources=[_source("pendle", "Pendle", [])], interval=0.01
    )

    await refresher.start()
    await asyncio.sleep(0.1)

    assert refresher._task is not None
    assert not refresher._task.done()
    await refresher.stop()
    assert refresher._task is None
