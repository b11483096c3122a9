"""Datastore access."""

from .identifiers import StructuredId, TextId, id_candidates, normalize_id, unique_ids
from .reader import DocumentReader, MongoDocumentReader, build_reader, create_client

__all__ = [
    "DocumentReader",
    "MongoDocumentReader",
    "StructuredId",
    "TextId",
    "build_reader",
    "create_client",
    "id_candidates",
    "normalize_id",
    "unique_ids",
]
