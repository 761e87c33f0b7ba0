from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from defirates.db import Database
from defirates.models import Protocol
from defirates.services.storage import RecordStore


@pytest.fixture
def db(tmp_path: Path) -> Iterator[Database]:
    database = Database(f"sqlite:///{tmp_path / 'rates.db'}")
    database.connect()
    yield database
    database.close()


@pytest.fixture
def store(db: Database) -> RecordStore:
    return RecordStore(db)


@pytest.fixture
def pendle(store: RecordStore) -> Protocol:
    return store.upsert_protocol(Protocol(name="Pendle", url="https://www.pendle.finance"))
