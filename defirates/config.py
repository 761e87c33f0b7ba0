from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Runtime
    ENV: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8080)

    # Datastore
    DATABASE_URL: str = Field(default="sqlite:///defirates.db")
    LOAD_SAMPLE_DATA: bool = Field(default=False)

    # Observability
    ENABLE_LOKI: bool = Field(default=False)
    LOKI_URL: str = Field(default="http://localhost:3100")

    # Refresh
    ENABLE_FETCHER: bool = Field(default=True)
    FETCH_INTERVAL_SECONDS: int = Field(default=300)

    # External APIs
    PENDLE_BASE_URL: str = Field(default="https://api-v2.pendle.finance/api/core")
    PENDLE_CHAIN_IDS: List[int] = Field(default=[1, 10, 56, 146, 999, 5000, 8453, 9745, 42161, 80094])
    BEEFY_BASE_URL: str = Field(default="https://api.beefy.finance")
    BEEFY_CHAINS: List[str] = Field(
        default=[
            "arbitrum", "aurora", "avax", "base", "bsc", "canto", "celo",
            "cronos", "emerald", "ethereum", "fantom", "fuse", "harmony",
            "heco", "kava", "metis", "moonbeam", "moonriver", "optimism",
            "polygon", "zkevm", "zksync",
        ]
    )
    HTTP_TIMEOUT_SECONDS: float = Field(default=30.0)
    HTTP_DEBUG: bool = Field(default=False)

    # Live updates
    SSE_QUEUE_SIZE: int = Field(default=10)
    SSE_SEND_TIMEOUT_SECONDS: float = Field(default=1.0)
    SSE_HEARTBEAT_SECONDS: float = Field(default=15.0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
