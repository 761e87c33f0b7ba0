from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SORT_FIELDS = ("apy", "tvl", "updated_at")


def normalize_categories(value: str | List[str] | None) -> str:
    """Collapse a tag list or comma-joined string into ``"A, B, C"``.

    Tags are trimmed, empties and repeats are dropped, first occurrence wins.
    """
    if not value:
        return ""
    parts = value.split(",") if isinstance(value, str) else value
    seen: List[str] = []
    for part in parts:
        tag = str(part).strip()
        if tag and tag not in seen:
            seen.append(tag)
    return ", ".join(seen)


class Protocol(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    name: str
    url: str = ""
    description: str = ""
    created_at: Optional[datetime] = None


class YieldRate(BaseModel):
    """One yield-bearing pool or market as last observed.

    ``(protocol_id, pool_name, chain)`` is the natural key; ``id`` is the
    surrogate handle assigned by the store and stable across refreshes.
    """

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    protocol_id: int
    protocol_name: str = ""
    asset: str
    chain: str
    apy: float = Field(..., description="Annual percentage yield, in %")
    tvl: float = Field(..., description="Total value locked, in USD")
    maturity_date: Optional[datetime] = None
    pool_name: str
    categories: str = ""
    external_url: str = ""
    updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("categories", mode="before")
    @classmethod
    def _join_categories(cls, v):
        return normalize_categories(v)

    @field_validator("pool_name", "chain")
    @classmethod
    def _natural_key_required(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("natural key fields must be non-empty")
        return v

    def category_list(self) -> List[str]:
        return [c for c in self.categories.split(", ") if c]


class FilterParams(BaseModel):
    min_apy: float = 0.0
    max_apy: float = 0.0
    min_tvl: float = 0.0
    asset: str = ""
    chain: str = ""
    protocol_name: str = ""
    categories: str = ""
    sort_by: str = "apy"
    sort_order: str = "desc"

    @field_validator("sort_by", mode="before")
    @classmethod
    def _known_sort_field(cls, v):
        return v if v in SORT_FIELDS else "apy"

    @field_validator("sort_order", mode="before")
    @classmethod
    def _sort_direction(cls, v):
        return "asc" if str(v or "").lower() == "asc" else "desc"


class FilterOptions(BaseModel):
    assets: List[str]
    chains: List[str]
    categories: List[str]


class SourceResult(BaseModel):
    source: str
    fetched: int = 0
    stored: int = 0
    failed: int = 0
    error: Optional[str] = None


class CycleResult(BaseModel):
    started_at: int
    finished_at: int
    sources: List[SourceResult]

    @property
    def stored(self) -> int:
        return sum(s.stored for s in self.sources)

    @property
    def failed(self) -> int:
        return sum(s.failed for s in self.sources)


class ServiceStatus(BaseModel):
    last_refresh_at: Optional[int]
    rates_tracked: int
    protocols: List[str]
    chains_tracked: List[str]
    avg_apy: float
    aggregated_tvl_usd: float
    subscribers: int
