from __future__ import annotations

import asyncio
import logging
import time
from functools import partial
from typing import List, Sequence

from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from defirates.clients import beefy, pendle
from defirates.clients.base import Source, SourceUnavailable
from defirates.config import Settings
from defirates.http import HttpClient
from defirates.models import CycleResult, SourceResult, YieldRate
from defirates.services.broadcaster import Broadcaster
from defirates.services.merge import merge_records
from defirates.services.storage import RecordStore

logger = logging.getLogger(__name__)


def build_sources(settings: Settings) -> List[Source]:
    return [
        Source(
            name="pendle",
            protocol=pendle.PENDLE_PROTOCOL,
            fetch=partial(pendle.fetch_pendle_markets, base_url=settings.PENDLE_BASE_URL, chain_ids=settings.PENDLE_CHAIN_IDS),
            adapt=pendle.to_yield_rate,
        ),
        Source(
            name="beefy",
            protocol=beefy.BEEFY_PROTOCOL,
            fetch=partial(beefy.fetch_beefy_vaults, base_url=settings.BEEFY_BASE_URL, chains=settings.BEEFY_CHAINS),
            adapt=beefy.to_yield_rate,
        ),
    ]


class BackgroundRefresher:
    def __init__(
        self,
        store: RecordStore,
        broadcaster: Broadcaster,
        http: HttpClient,
        sources: Sequence[Source],
        interval: float = 300,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.http = http
        self.sources = list(sources)
        self.interval = interval
        self.last_refresh_at: int | None = None
        self.last_result: CycleResult | None = None
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()
        self._cycle_lock = asyncio.Lock()

    async def start(self) -> None:
        # Refresh once before serving so the first page load has data
        try:
            result = await self.run_cycle()
            logger.info(f"✅ DeFi Rates ready – stored: {result.stored}, failed: {result.failed}")
        except Exception as e:
            logger.exception(f"Initial refresh failed: {e}")
        if self._task is None:
            self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        self._stopping.set()
        if self._task:
            await self._task
            self._task = None

    async def _run_loop(self) -> None:
        logger.info(f"Background refresher started (interval={self.interval}s)")
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            if self._stopping.is_set():
                break
            try:
                result = await self.run_cycle()
                logger.info(f"Refreshed yield rates: stored={result.stored} failed={result.failed}")
            except Exception as e:
                logger.exception(f"Refresh iteration failed: {e}")
        logger.info("Background refresher stopped")

    async def _refresh_source(self, source: Source) -> SourceResult:
        result = SourceResult(source=source.name)
        # Storage errors here are not per-record: let them abort the cycle
        protocol = await run_in_threadpool(self.store.upsert_protocol, source.protocol.model_copy())

        try:
            native = await source.fetch(self.http)
        except SourceUnavailable as e:
            native = []
            result.error = str(e)
            logger.warning(f"{source.protocol.name} API unavailable: {e}")
        except Exception as e:
            native = []
            result.error = str(e)
            logger.warning(f"Failed to fetch {source.protocol.name} data: {e}")

        result.fetched = len(native)
        if not native:
            existing = await run_in_threadpool(self.store.count, protocol.id)
            if existing:
                logger.info(f"Keeping {existing} existing {source.protocol.name} rates")
            return result

        rates: List[YieldRate] = []
        for record in native:
            try:
                rates.append(source.adapt(record, protocol.id))
            except (KeyError, TypeError, ValueError, ValidationError) as e:
                result.failed += 1
                logger.debug(f"Skipping malformed {source.name} record: {e}")

        merged = await run_in_threadpool(merge_records, self.store, rates)
        result.stored = merged.stored
        result.failed += merged.failed
        logger.info(f"Successfully stored {result.stored} {source.protocol.name} yield rates")
        return result

    async def run_cycle(self) -> CycleResult:
        """Fetch every source, merge into the store, then notify subscribers once."""
        async with self._cycle_lock:
            started = int(time.time())
            results: List[SourceResult] = []
            for source in self.sources:
                logger.info(f"Fetching {source.protocol.name} data...")
                results.append(await self._refresh_source(source))

            cycle = CycleResult(started_at=started, finished_at=int(time.time()), sources=results)
            self.last_result = cycle
            self.last_refresh_at = cycle.finished_at

            logger.info("Broadcasting data update event...")
            await self.broadcaster.publish_data_changed()
            return cycle
