from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

import httpx

from defirates.clients.base import SourceUnavailable
from defirates.http import HttpClient
from defirates.models import Protocol, YieldRate

logger = logging.getLogger(__name__)

BEEFY_PROTOCOL = Protocol(
    name="Beefy",
    url="https://beefy.finance",
    description="Beefy is a Decentralized, Multichain Yield Optimizer",
)

BEEFY_HEADERS = {
    "Origin": "https://app.beefy.finance",
    "Referer": "https://app.beefy.finance/",
}

CHAIN_NAMES = {
    "arbitrum": "Arbitrum",
    "aurora": "Aurora",
    "avax": "Avalanche",
    "base": "Base",
    "bsc": "BSC",
    "canto": "Canto",
    "celo": "Celo",
    "cronos": "Cronos",
    "emerald": "Emerald",
    "ethereum": "Ethereum",
    "fantom": "Fantom",
    "fuse": "Fuse",
    "harmony": "Harmony",
    "heco": "Heco",
    "kava": "Kava",
    "metis": "Metis",
    "moonbeam": "Moonbeam",
    "moonriver": "Moonriver",
    "optimism": "Optimism",
    "polygon": "Polygon",
    "zkevm": "Polygon zkEVM",
    "zksync": "zkSync",
}

MAX_ASSET_CATEGORIES = 3


def chain_name(chain: str) -> str:
    if chain in CHAIN_NAMES:
        return CHAIN_NAMES[chain]
    return chain[:1].upper() + chain[1:]


async def fetch_apy_breakdown(http: HttpClient, base_url: str) -> Dict[str, Dict[str, Any]]:
    data = await http.get_json(f"{base_url.rstrip('/')}/apy/breakdown", headers=BEEFY_HEADERS)
    return {k: v for k, v in data.items() if isinstance(v, dict)}


async def fetch_tvl(http: HttpClient, base_url: str) -> Dict[str, float]:
    """Vault id -> TVL in USD.

    The endpoint groups vaults under numeric chain ids; flat payloads are
    accepted as well.
    """
    data = await http.get_json(f"{base_url.rstrip('/')}/tvl", headers=BEEFY_HEADERS)
    out: Dict[str, float] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            for vault_id, tvl in value.items():
                if isinstance(tvl, (int, float)):
                    out[vault_id] = float(tvl)
        elif isinstance(value, (int, float)):
            out[key] = float(value)
    return out


async def fetch_vaults(http: HttpClient, base_url: str, chain: str) -> List[Dict[str, Any]]:
    data = await http.get_json(f"{base_url.rstrip('/')}/vaults/{chain}", headers=BEEFY_HEADERS)
    return [v for v in data if isinstance(v, dict)] if isinstance(data, list) else []


async def fetch_beefy_vaults(http: HttpClient, base_url: str, chains: Iterable[str]) -> List[Dict[str, Any]]:
    """Fetch active vaults on ``chains`` joined with their APY and TVL."""
    try:
        apy_data = await fetch_apy_breakdown(http, base_url)
    except (httpx.HTTPError, ValueError, AttributeError) as e:
        logger.warning(f"Beefy APY fetch failed: {e}")
        apy_data = {}
    try:
        tvl_data = await fetch_tvl(http, base_url)
    except (httpx.HTTPError, ValueError, AttributeError) as e:
        logger.warning(f"Beefy TVL fetch failed: {e}")
        tvl_data = {}

    out: List[Dict[str, Any]] = []
    reachable = 0
    for chain in chains:
        try:
            vaults = await fetch_vaults(http, base_url, chain)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Beefy vaults fetch failed for chain {chain}: {e}")
            continue
        reachable += 1
        for vault in vaults:
            if vault.get("status") != "active":
                continue
            breakdown = apy_data.get(vault.get("id"), {})
            out.append(
                {
                    "vault": vault,
                    "chain": chain_name(chain),
                    # raw fraction; converted per record by to_yield_rate
                    "total_apy": breakdown.get("totalApy"),
                    "tvl": tvl_data.get(vault.get("id"), 0.0),
                }
            )

    if not reachable:
        raise SourceUnavailable("no vaults fetched from any chain")
    logger.info(f"Beefy: {len(out)} active vaults, APY for {len(apy_data)}, TVL for {len(tvl_data)}")
    return out


def to_yield_rate(item: Dict[str, Any], protocol_id: int) -> YieldRate:
    vault = item["vault"]
    assets = [a for a in (vault.get("assets") or []) if a][:MAX_ASSET_CATEGORIES]
    return YieldRate(
        protocol_id=protocol_id,
        asset=vault.get("name") or vault["id"],
        chain=item["chain"],
        apy=float(item.get("total_apy") or 0.0) * 100,
        tvl=float(item.get("tvl") or 0.0),
        maturity_date=None,
        pool_name=f"{vault.get('platformId', '')}-{vault['id']}",
        categories=["Beefy", *assets],
        external_url=f"https://app.beefy.finance/vault/{vault['id']}",
    )
