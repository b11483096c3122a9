"""Read-only document store access."""

from __future__ import annotations

import time
from typing import Any, Iterable, Mapping, Protocol, Sequence

from pymongo import MongoClient, ReadPreference
from pymongo.database import Database
from pymongo.errors import PyMongoError

from chatledger.config import Settings
from chatledger.errors import UpstreamReadFailure
from chatledger.metrics.observability import PipelineMetrics, TimedSection, get_logger

Document = Mapping[str, Any]
SortSpec = Sequence[tuple[str, int]]


class DocumentReader(Protocol):
    """Protocol for the read operations the core performs against the datastore."""

    def find(
        self,
        collection: str,
        filter: Mapping[str, Any],
        *,
        projection: Mapping[str, Any] | None = None,
        sort: SortSpec | None = None,
        limit: int = 0,
    ) -> list[Document]:
        """Return documents matching ``filter``."""

    def distinct(self, collection: str, field: str, filter: Mapping[str, Any]) -> list[Any]:
        """Return distinct values of ``field`` among matching documents."""

    def ping(self) -> float:
        """Round-trip the datastore, returning latency in milliseconds."""


class MongoDocumentReader:
    """pymongo-backed reader; every operation carries the per-query timeout."""

    def __init__(self, database: Database, *, timeout_ms: int = 30000) -> None:
        self._database = database
        self._timeout_ms = timeout_ms
        self._logger = get_logger("store")

    def find(
        self,
        collection: str,
        filter: Mapping[str, Any],
        *,
        projection: Mapping[str, Any] | None = None,
        sort: SortSpec | None = None,
        limit: int = 0,
    ) -> list[Document]:
        start = time.perf_counter()
        try:
            cursor = self._database[collection].find(dict(filter), dict(projection) if projection else None)
            if sort:
                cursor = cursor.sort(list(sort))
            if limit:
                cursor = cursor.limit(limit)
            documents = list(cursor.max_time_ms(self._timeout_ms))
        except PyMongoError as exc:
            self._logger.warning("store.find.failed", collection=collection, detail=str(exc))
            raise UpstreamReadFailure(f"find on {collection} failed: {exc}") from exc
        PipelineMetrics.observe_store_read("find", time.perf_counter() - start)
        return documents

    def distinct(self, collection: str, field: str, filter: Mapping[str, Any]) -> list[Any]:
        start = time.perf_counter()
        try:
            cursor = self._database[collection].find(dict(filter)).max_time_ms(self._timeout_ms)
            values = list(cursor.distinct(field))
        except PyMongoError as exc:
            self._logger.warning("store.distinct.failed", collection=collection, field=field, detail=str(exc))
            raise UpstreamReadFailure(f"distinct {field} on {collection} failed: {exc}") from exc
        PipelineMetrics.observe_store_read("distinct", time.perf_counter() - start)
        return values

    def ping(self) -> float:
        timer = TimedSection(lambda duration: PipelineMetrics.observe_store_read("ping", duration))
        try:
            with timer:
                self._database.command("ping")
        except PyMongoError as exc:
            raise UpstreamReadFailure(f"ping failed: {exc}") from exc
        return timer.elapsed * 1000


def create_client(settings: Settings) -> MongoClient:
    """Long-lived shared client preferring secondary reads."""

    if not settings.mongodb_uri:
        raise RuntimeError("CHATLEDGER_MONGODB_URI is required to connect to MongoDB")
    return MongoClient(
        settings.mongodb_uri,
        appname=settings.mongodb_app_name,
        maxPoolSize=settings.mongodb_max_pool_size,
        minPoolSize=0,
        retryReads=True,
        read_preference=ReadPreference.SECONDARY_PREFERRED,
        serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
    )


def build_reader(settings: Settings, client: MongoClient | None = None) -> MongoDocumentReader:
    client = client or create_client(settings)
    return MongoDocumentReader(client[settings.mongodb_db_name], timeout_ms=settings.query_timeout_ms)


def first_text(document: Document, fields: Iterable[str]) -> str | None:
    """First non-blank string among ``fields`` of ``document``."""

    for name in fields:
        value = document.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
