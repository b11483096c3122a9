from __future__ import annotations

import mongomock
import pytest

from chatledger.config import Settings
from chatledger.store.reader import MongoDocumentReader


@pytest.fixture()
def settings() -> Settings:
    return Settings(environment="test", max_export_rows=1000, pause_ms=0)


@pytest.fixture()
def database():
    client = mongomock.MongoClient()
    yield client["logdb"]
    client.close()


@pytest.fixture()
def reader(database) -> MongoDocumentReader:
    return MongoDocumentReader(database, timeout_ms=1000)
