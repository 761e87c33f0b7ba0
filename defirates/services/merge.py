from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from sqlalchemy.exc import SQLAlchemyError

from defirates.models import YieldRate
from defirates.services.storage import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    stored: int = 0
    failed: int = 0
    ids: List[int] = field(default_factory=list)


def merge_records(store: RecordStore, records: Iterable[YieldRate]) -> MergeResult:
    """Upsert ``records`` in order, skipping any that the store rejects."""
    result = MergeResult()
    for rate in records:
        try:
            rate_id = store.upsert_yield_rate(rate)
        except SQLAlchemyError as e:
            result.failed += 1
            logger.warning(f"Failed to store yield rate {rate.pool_name}@{rate.chain}: {e}")
            continue
        result.stored += 1
        result.ids.append(rate_id)
    if result.failed:
        logger.warning(f"Merged {result.stored} yield rates, {result.failed} failed")
    return result
