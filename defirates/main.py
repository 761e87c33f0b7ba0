from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from defirates.background import BackgroundRefresher, build_sources
from defirates.config import Settings, get_settings
from defirates.db import Database
from defirates.http import HttpClient
from defirates.models import CycleResult, FilterOptions, FilterParams, ServiceStatus, YieldRate
from defirates.services.broadcaster import Broadcaster
from defirates.services.live import stream_events
from defirates.services.sample_data import load_sample_data
from defirates.services.storage import RecordStore
from defirates.utils.logging import setup_logging
from defirates.utils.loki import loki_log

logger = logging.getLogger(__name__)

router = APIRouter()


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_broadcaster(request: Request) -> Broadcaster:
    return request.app.state.broadcaster


def get_refresher(request: Request) -> BackgroundRefresher:
    return request.app.state.refresher


def parse_ids(raw: str) -> List[int]:
    """Parse ``"1, 2,x,3"`` into ``[1, 2, 3]``, skipping anything non-numeric."""
    ids: List[int] = []
    for token in raw.split(","):
        token = token.strip()
        if token.isdigit():
            ids.append(int(token))
    return ids


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/api/yields", response_model=List[YieldRate])
async def get_yields(
    min_apy: float = Query(0.0, ge=0.0),
    max_apy: float = Query(0.0, ge=0.0),
    min_tvl: float = Query(0.0, ge=0.0),
    asset: str = "",
    chain: str = "",
    protocol: str = "",
    categories: str = "",
    sort_by: str = "apy",
    sort_order: str = "desc",
    store: RecordStore = Depends(get_store),
):
    filters = FilterParams(
        min_apy=min_apy,
        max_apy=max_apy,
        min_tvl=min_tvl,
        asset=asset,
        chain=chain,
        protocol_name=protocol,
        categories=categories,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return await run_in_threadpool(store.query, filters)


@router.get("/api/rates", response_model=List[YieldRate])
async def get_rates(ids: str = "", store: RecordStore = Depends(get_store)):
    # Live-view re-sync: ids the client has on screen; unknown ones are omitted
    wanted = parse_ids(ids)
    if not wanted:
        return []
    return await run_in_threadpool(store.get_by_ids, wanted)


@router.get("/api/filters", response_model=FilterOptions)
async def get_filters(store: RecordStore = Depends(get_store)):
    return FilterOptions(
        assets=await run_in_threadpool(store.distinct_assets),
        chains=await run_in_threadpool(store.distinct_chains),
        categories=await run_in_threadpool(store.distinct_categories),
    )


@router.get("/api/status", response_model=ServiceStatus)
async def get_status(
    store: RecordStore = Depends(get_store),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    refresher: Optional[BackgroundRefresher] = Depends(get_refresher),
):
    count, avg_apy, total_tvl = await run_in_threadpool(store.stats)
    return ServiceStatus(
        last_refresh_at=refresher.last_refresh_at if refresher else None,
        rates_tracked=count,
        protocols=await run_in_threadpool(store.protocol_names),
        chains_tracked=await run_in_threadpool(store.distinct_chains),
        avg_apy=avg_apy,
        aggregated_tvl_usd=total_tvl,
        subscribers=broadcaster.subscriber_count,
    )


@router.post("/api/refresh", response_model=CycleResult)
async def post_refresh(refresher: BackgroundRefresher = Depends(get_refresher)):
    return await refresher.run_cycle()


@router.get("/events")
async def get_events(request: Request, broadcaster: Broadcaster = Depends(get_broadcaster)):
    settings: Settings = request.app.state.settings
    return StreamingResponse(
        stream_events(broadcaster, request.is_disconnected, heartbeat=settings.SSE_HEARTBEAT_SECONDS),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
            "Access-Control-Allow-Origin": "*",
        },
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="DeFi Rates", version="1.0.0")

    db = Database(settings.DATABASE_URL)
    app.state.settings = settings
    app.state.db = db
    app.state.store = RecordStore(db)
    app.state.broadcaster = Broadcaster(
        queue_size=settings.SSE_QUEUE_SIZE,
        send_timeout=settings.SSE_SEND_TIMEOUT_SECONDS,
    )
    app.state.http = None
    app.state.refresher = None

    if settings.ENABLE_LOKI:
        @app.middleware("http")
        async def _loki_logger(request, call_next):
            response = await call_next(request)
            http = app.state.http
            if http is not None:
                await loki_log(
                    http.client,
                    settings.LOKI_URL,
                    "request",
                    level="ERROR" if response.status_code >= 500 else "INFO",
                    env=settings.ENV,
                    extra={
                        "path": str(request.url.path),
                        "method": request.method,
                        "status": response.status_code,
                        "client_ip": request.client.host if request.client else None,
                    },
                )
            return response

    @app.on_event("startup")
    async def startup_event() -> None:
        setup_logging(settings.LOG_LEVEL)
        await run_in_threadpool(db.connect)

        if settings.LOAD_SAMPLE_DATA:
            try:
                await run_in_threadpool(load_sample_data, app.state.store)
            except SQLAlchemyError as e:
                logger.warning(f"Failed to load sample data: {e}")

        app.state.http = HttpClient(timeout=settings.HTTP_TIMEOUT_SECONDS, debug=settings.HTTP_DEBUG)
        app.state.refresher = BackgroundRefresher(
            app.state.store,
            app.state.broadcaster,
            app.state.http,
            build_sources(settings),
            interval=settings.FETCH_INTERVAL_SECONDS,
        )
        if settings.ENABLE_FETCHER:
            await app.state.refresher.start()
            logger.info(f"Data fetcher started (interval: {settings.FETCH_INTERVAL_SECONDS}s)")

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        # ends every open /events stream
        app.state.broadcaster.close()
        if app.state.refresher is not None:
            await app.state.refresher.stop()
        if app.state.http is not None:
            await app.state.http.aclose()
        db.close()

    app.include_router(router)
    return app


app = create_app()
