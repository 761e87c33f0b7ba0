# tables.py
from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class ProtocolRow(Base):
    __tablename__ = "protocols"

    id          = Column(Integer, primary_key=True, autoincrement=True)
    name        = Column(String(128), nullable=False, unique=True)
    url         = Column(Text,        nullable=True)
    description = Column(Text,        nullable=True)
    created_at  = Column(DateTime,    nullable=False, server_default=func.current_timestamp())

    def __repr__(self) -> str:
        return f"<Protocol {self.id} {self.name}>"


class YieldRateRow(Base):
    __tablename__ = "yield_rates"

    id            = Column(Integer, primary_key=True, autoincrement=True)
    protocol_id   = Column(Integer, ForeignKey("protocols.id"), nullable=False)
    asset         = Column(String(255), nullable=False)
    chain         = Column(String(64),  nullable=False)
    apy           = Column(Float,       nullable=False)
    tvl           = Column(Float,       nullable=False)
    maturity_date = Column(DateTime,    nullable=True)
    pool_name     = Column(String(255), nullable=False)
    categories    = Column(Text,        nullable=True)
    external_url  = Column(Text,        nullable=True)
    updated_at    = Column(DateTime,    nullable=False, server_default=func.current_timestamp())
    created_at    = Column(DateTime,    nullable=False, server_default=func.current_timestamp())

    # one live row per (protocol, pool, chain); the upsert conflicts on this
    __table_args__ = (
        UniqueConstraint("protocol_id", "pool_name", "chain", name="uq_yield_rates_natural_key"),
        Index("idx_yield_rates_apy", "apy"),
        Index("idx_yield_rates_asset", "asset"),
        Index("idx_yield_rates_chain", "chain"),
    )

    def __repr__(self) -> str:
        return f"<YieldRate {self.id} {self.pool_name}@{self.chain} apy={self.apy}>"


NATURAL_KEY = ("protocol_id", "pool_name", "chain")
MUTABLE_FIELDS = ("asset", "apy", "tvl", "maturity_date", "categories", "external_url")
