from __future__ import annotations

import logging
from datetime import datetime

from defirates.clients.pendle import PENDLE_PROTOCOL
from defirates.models import YieldRate
from defirates.services.merge import MergeResult, merge_records
from defirates.services.storage import RecordStore

logger = logging.getLogger(__name__)

# (asset, chain, apy, tvl, maturity, pool_name, categories, market address)
SAMPLE_RATES = [
    ("eETH", "Ethereum", 12.45, 15_234_567.89, datetime(2025, 12, 26), "PT-eETH-26DEC2025", "PT, LRT, Liquidity",
     "0xf32e58f2f85714a65d2dcbb753e00ce58434f000"),
    ("ezETH", "Ethereum", 15.23, 8_945_123.45, datetime(2025, 12, 26), "PT-ezETH-26DEC2025", "PT, LRT",
     "0xd1d7d99764f8a52aff007b7831cc02748b2013b5"),
    ("sUSDe", "Ethereum", 25.67, 45_123_456.78, datetime(2026, 1, 29), "PT-sUSDe-29JAN2026", "PT, Stablecoin",
     "0x4a8e8befd2cf1480032a6f8a5c45d8c3ae1e8829"),
    ("LBTC", "Ethereum", 8.92, 23_456_789.01, datetime(2025, 12, 26), "PT-LBTC-26DEC2025", "PT, BTC",
     "0x8a47b431a7d947c6a3ed6e42d501803615a97eaa"),
    ("USDe", "Arbitrum", 18.23, 34_567_890.12, datetime(2026, 1, 29), "PT-USDe-29JAN2026", "PT, Stablecoin, Liquidity",
     "0xbfef9183b47b3dd89a025f7dbfb44c58f4e0b68f"),
    ("rsETH", "Arbitrum", 14.56, 7_890_123.45, datetime(2025, 12, 26), "PT-rsETH-26DEC2025-ARB", "PT, LRT",
     "0xed99fc8bdb8e9e7b8240f62f69609a125a0fbf14"),
    ("wstETH", "Optimism", 11.78, 9_876_543.21, datetime(2025, 12, 26), "PT-wstETH-26DEC2025", "PT, LST, Liquidity",
     "0x1c27ad8a19ba026adabd615f6bc77158130cfbe4"),
    ("cbBTC", "Base", 9.87, 18_234_567.89, datetime(2025, 12, 26), "PT-cbBTC-26DEC2025", "PT, BTC, Liquidity",
     "0x94caeb3b9a1b7c61ef364f6c52260cf89b3bc667"),
]


def load_sample_data(store: RecordStore) -> MergeResult:
    """Seed the store with a few Pendle markets for demos and local work."""
    logger.info("Loading sample data...")
    protocol = store.upsert_protocol(PENDLE_PROTOCOL.model_copy())
    rates = [
        YieldRate(
            protocol_id=protocol.id,
            asset=asset,
            chain=chain,
            apy=apy,
            tvl=tvl,
            maturity_date=maturity,
            pool_name=pool_name,
            categories=categories,
            external_url=f"https://app.pendle.finance/trade/pools/{address}/",
        )
        for asset, chain, apy, tvl, maturity, pool_name, categories, address in SAMPLE_RATES
    ]
    result = merge_records(store, rates)
    logger.info(f"Loaded {result.stored} sample yield rates")
    return result
