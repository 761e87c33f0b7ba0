from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from defirates.db import Database
from defirates.models import FilterParams, Protocol, YieldRate, normalize_categories
from defirates.tables import MUTABLE_FIELDS, NATURAL_KEY, ProtocolRow, YieldRateRow

logger = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}

_SORT_COLUMNS = {
    "apy": YieldRateRow.apy,
    "tvl": YieldRateRow.tvl,
    "updated_at": YieldRateRow.updated_at,
}


def _utcnow() -> datetime:
    # naive UTC, matching what the DateTime columns round-trip on SQLite
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_model(row: YieldRateRow, protocol_name: str) -> YieldRate:
    return YieldRate(
        id=row.id,
        protocol_id=row.protocol_id,
        protocol_name=protocol_name,
        asset=row.asset,
        chain=row.chain,
        apy=row.apy,
        tvl=row.tvl,
        maturity_date=row.maturity_date,
        pool_name=row.pool_name,
        categories=row.categories or "",
        external_url=row.external_url or "",
        updated_at=row.updated_at,
        created_at=row.created_at,
    )


class RecordStore:
    """Relational storage for protocols and their yield rates.

    Every method opens its own session and commits before returning, so a
    call is atomic on its own; nothing here spans several records.
    Methods are blocking and are meant to be run in a threadpool from async code.
    """

    def __init__(self, db: Database):
        self.db = db

    def _insert(self):
        try:
            return _INSERTS[self.db.dialect]
        except KeyError:
            raise NotImplementedError(f"Upserts are not supported on dialect '{self.db.dialect}'")

    # Protocols

    def upsert_protocol(self, protocol: Protocol) -> Protocol:
        insert = self._insert()
        stmt = insert(ProtocolRow).values(
            name=protocol.name,
            url=protocol.url,
            description=protocol.description,
            created_at=_utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["name"],
            set_={"url": stmt.excluded.url, "description": stmt.excluded.description},
        ).returning(ProtocolRow.id, ProtocolRow.created_at)

        with self.db.session() as session:
            row = session.execute(stmt).one()
        protocol.id, protocol.created_at = row.id, row.created_at
        return protocol

    def protocol_names(self) -> List[str]:
        with self.db.session() as session:
            return list(session.scalars(select(ProtocolRow.name).order_by(ProtocolRow.name)))

    # Yield rates

    def upsert_yield_rate(self, rate: YieldRate) -> int:
        """Insert ``rate`` or refresh the row that shares its natural key.

        Runs as one ``INSERT ... ON CONFLICT DO UPDATE`` so concurrent calls
        for the same key can never create a second row. The resolved id is
        written back onto ``rate`` and returned.
        """
        insert = self._insert()
        now = _utcnow()
        values = {
            "protocol_id": rate.protocol_id,
            "pool_name": rate.pool_name,
            "chain": rate.chain,
            "asset": rate.asset,
            "apy": rate.apy,
            "tvl": rate.tvl,
            "maturity_date": rate.maturity_date,
            "categories": normalize_categories(rate.categories),
            "external_url": rate.external_url,
            "updated_at": now,
            "created_at": now,
        }
        stmt = insert(YieldRateRow).values(**values)
        update = {name: stmt.excluded[name] for name in MUTABLE_FIELDS}
        update["updated_at"] = stmt.excluded.updated_at
        stmt = stmt.on_conflict_do_update(
            index_elements=list(NATURAL_KEY),
            set_=update,
        ).returning(YieldRateRow.id)

        with self.db.session() as session:
            rate_id = session.execute(stmt).scalar_one()
        rate.id = rate_id
        return rate_id

    def _select_rates(self):
        return select(YieldRateRow, ProtocolRow.name).join(ProtocolRow, YieldRateRow.protocol_id == ProtocolRow.id)

    def query(self, filters: FilterParams | None = None) -> List[YieldRate]:
        filters = filters or FilterParams()
        stmt = self._select_rates()

        if filters.min_apy > 0:
            stmt = stmt.where(YieldRateRow.apy >= filters.min_apy)
        if filters.max_apy > 0:
            stmt = stmt.where(YieldRateRow.apy <= filters.max_apy)
        if filters.min_tvl > 0:
            stmt = stmt.where(YieldRateRow.tvl >= filters.min_tvl)
        if filters.asset:
            stmt = stmt.where(YieldRateRow.asset == filters.asset)
        if filters.chain:
            stmt = stmt.where(YieldRateRow.chain == filters.chain)
        if filters.protocol_name:
            stmt = stmt.where(ProtocolRow.name == filters.protocol_name)
        if filters.categories:
            stmt = stmt.where(YieldRateRow.categories.like(f"%{filters.categories}%"))

        column = _SORT_COLUMNS[filters.sort_by]
        order = column.asc() if filters.sort_order == "asc" else column.desc()
        stmt = stmt.order_by(order, YieldRateRow.id.asc())

        with self.db.session() as session:
            return [_to_model(row, name) for row, name in session.execute(stmt)]

    def get_by_ids(self, ids: Iterable[int]) -> List[YieldRate]:
        """Return the rates whose ids are in ``ids``; unknown ids are skipped."""
        wanted = sorted(set(ids))
        if not wanted:
            return []
        stmt = self._select_rates().where(YieldRateRow.id.in_(wanted)).order_by(YieldRateRow.id)
        with self.db.session() as session:
            return [_to_model(row, name) for row, name in session.execute(stmt)]

    def get_by_natural_key(self, protocol_id: int, pool_name: str, chain: str) -> Optional[YieldRate]:
        stmt = self._select_rates().where(
            YieldRateRow.protocol_id == protocol_id,
            YieldRateRow.pool_name == pool_name,
            YieldRateRow.chain == chain,
        )
        with self.db.session() as session:
            found = session.execute(stmt).one_or_none()
            return _to_model(*found) if found is not None else None

    def count(self, protocol_id: int | None = None) -> int:
        stmt = select(func.count(YieldRateRow.id))
        if protocol_id is not None:
            stmt = stmt.where(YieldRateRow.protocol_id == protocol_id)
        with self.db.session() as session:
            return session.scalar(stmt) or 0

    def stats(self) -> Tuple[int, float, float]:
        """(row count, average APY, total TVL)."""
        stmt = select(func.count(YieldRateRow.id), func.avg(YieldRateRow.apy), func.sum(YieldRateRow.tvl))
        with self.db.session() as session:
            count, avg_apy, total_tvl = session.execute(stmt).one()
        return int(count or 0), float(avg_apy or 0.0), float(total_tvl or 0.0)

    # Facets for the filter controls

    def distinct_assets(self) -> List[str]:
        with self.db.session() as session:
            return list(session.scalars(select(YieldRateRow.asset).distinct().order_by(YieldRateRow.asset)))

    def distinct_chains(self) -> List[str]:
        with self.db.session() as session:
            return list(session.scalars(select(YieldRateRow.chain).distinct().order_by(YieldRateRow.chain)))

    def distinct_categories(self) -> List[str]:
        stmt = select(YieldRateRow.categories).distinct().where(
            YieldRateRow.categories.is_not(None), YieldRateRow.categories != ""
        )
        tags = set()
        with self.db.session() as session:
            for joined in session.scalars(stmt):
                tags.update(t.strip() for t in joined.split(",") if t.strip())
        return sorted(tags)
