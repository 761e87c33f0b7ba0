from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

import httpx

from defirates.clients.base import SourceUnavailable
from defirates.http import HttpClient
from defirates.models import Protocol, YieldRate

logger = logging.getLogger(__name__)

PENDLE_PROTOCOL = Protocol(
    name="Pendle",
    url="https://www.pendle.finance",
    description="Pendle is a protocol that enables the tokenization and trading of future yield",
)

PENDLE_HEADERS = {
    "Origin": "https://app.pendle.finance",
    "Referer": "https://app.pendle.finance/",
}

CHAIN_NAMES = {
    1: "Ethereum",
    10: "Optimism",
    56: "BSC",
    146: "Sonic",
    999: "Zora",
    5000: "Mantle",
    8453: "Base",
    9745: "Taiko",
    42161: "Arbitrum",
    80094: "Berachain",
}


def chain_name(chain_id: int) -> str:
    return CHAIN_NAMES.get(chain_id, f"Chain-{chain_id}")


def parse_expiry(value: Any) -> datetime | None:
    """Parse a Pendle expiry (``2025-12-26T00:00:00.000Z``) as naive UTC."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


async def fetch_markets_for_chain(http: HttpClient, base_url: str, chain_id: int) -> List[Dict[str, Any]]:
    url = f"{base_url.rstrip('/')}/v1/{chain_id}/markets/active"
    data = await http.get_json(url, headers=PENDLE_HEADERS)
    markets = data.get("markets", []) if isinstance(data, dict) else []
    # chain id is not part of the payload
    for m in markets:
        m["chainId"] = chain_id
    return markets


async def fetch_pendle_markets(
    http: HttpClient,
    base_url: str,
    chain_ids: Iterable[int],
    now: datetime | None = None,
) -> List[Dict[str, Any]]:
    """Fetch active, unexpired markets across ``chain_ids``.

    A chain that fails is skipped; if no chain returns any market the whole
    source is reported unavailable.
    """
    markets: List[Dict[str, Any]] = []
    for chain_id in chain_ids:
        try:
            markets.extend(await fetch_markets_for_chain(http, base_url, chain_id))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Pendle markets fetch failed for chain {chain_id}: {e}")

    if not markets:
        raise SourceUnavailable("no markets fetched from any chain")

    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    active: List[Dict[str, Any]] = []
    unparseable = expired = 0
    for m in markets:
        expiry = parse_expiry(m.get("expiry"))
        if expiry is None:
            unparseable += 1
        elif expiry <= now:
            expired += 1
        else:
            active.append(m)

    logger.info(f"Pendle: {len(active)} active, {expired} expired, {unparseable} unparseable markets")
    return active


def to_yield_rate(market: Dict[str, Any], protocol_id: int) -> YieldRate:
    chain_id = int(market["chainId"])
    name = market["name"]
    details = market.get("details") or {}
    return YieldRate(
        protocol_id=protocol_id,
        asset=name,
        chain=chain_name(chain_id),
        apy=float(details.get("impliedApy") or 0.0) * 100,
        tvl=float(details.get("liquidity") or 0.0),
        maturity_date=parse_expiry(market.get("expiry")),
        pool_name=f"{name}-{chain_id}",
        categories=market.get("categoryIds") or [],
        external_url=f"https://app.pendle.finance/trade/pools/{market.get('address', '')}/",
    )
