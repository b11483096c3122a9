"""Field catalog describing each log type and the filters it accepts."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence

from chatledger.errors import InvalidRequest
from chatledger.store.identifiers import id_candidates

FilterType = Literal["id", "search", "select", "range"]
ColumnType = Literal["string", "number", "boolean", "datetime", "object"]


@dataclass(frozen=True)
class SchemaFilter:
    key: str
    label: str
    type: FilterType
    options: Sequence[str] = ()


@dataclass(frozen=True)
class SchemaColumn:
    key: str
    label: str
    type: ColumnType


@dataclass(frozen=True)
class DataTypeSchema:
    data_type: str
    collection: str
    customer_field: str
    timestamp_field: str
    filters: Sequence[SchemaFilter] = field(default_factory=tuple)
    columns: Sequence[SchemaColumn] = field(default_factory=tuple)

    @property
    def filter_keys(self) -> tuple[str, ...]:
        return tuple(item.key for item in self.filters)

    def get_filter(self, key: str) -> SchemaFilter | None:
        for item in self.filters:
            if item.key == key:
                return item
        return None


CONVERSATIONS = DataTypeSchema(
    data_type="conversations",
    collection="chats",
    customer_field="creator",
    timestamp_field="createdAt",
    filters=(
        SchemaFilter(key="channel", label="Channel", type="id"),
        SchemaFilter(key="session", label="Session", type="id"),
        SchemaFilter(
            key="creatorType",
            label="Creator Type",
            type="select",
            options=("user", "guest", "customer", "human"),
        ),
        SchemaFilter(key="text", label="Text", type="search"),
    ),
    columns=(
        SchemaColumn(key="createdAt", label="Time", type="datetime"),
        SchemaColumn(key="channel", label="Channel", type="string"),
        SchemaColumn(key="session", label="Session", type="string"),
        SchemaColumn(key="creatorType", label="Creator Type", type="string"),
        SchemaColumn(key="text", label="Text", type="string"),
    ),
)

USAGE_LOGS = DataTypeSchema(
    data_type="usage_logs",
    collection="usagelogs",
    customer_field="creator",
    timestamp_field="createdAt",
    filters=(
        SchemaFilter(key="channel", label="Channel", type="id"),
        SchemaFilter(key="amount", label="Amount", type="range"),
        SchemaFilter(key="aiModel", label="Model", type="search"),
    ),
    columns=(
        SchemaColumn(key="createdAt", label="Time", type="datetime"),
        SchemaColumn(key="channel", label="Channel", type="string"),
        SchemaColumn(key="amount", label="Amount", type="number"),
        SchemaColumn(key="aiModel", label="Model", type="string"),
    ),
)

SCHEMA_REGISTRY: dict[str, DataTypeSchema] = {
    CONVERSATIONS.data_type: CONVERSATIONS,
    USAGE_LOGS.data_type: USAGE_LOGS,
}


def get_schema(data_type: str) -> DataTypeSchema:
    schema = SCHEMA_REGISTRY.get(data_type)
    if schema is None:
        raise InvalidRequest(f"Unsupported dataType: {data_type}")
    return schema


def channel_key(schema: DataTypeSchema) -> str | None:
    """Field holding the channel id: filters before columns, exact key before channel-like keys."""

    for keys in (schema.filter_keys, tuple(column.key for column in schema.columns)):
        if "channel" in keys:
            return "channel"
        for key in keys:
            if "channel" in key.lower():
                return key
    return None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_filters(schema: DataTypeSchema, filters: Mapping[str, Any] | None) -> dict[str, Any]:
    """Reject unknown keys and mistyped values, dropping blank entries."""

    if not filters:
        return {}
    cleaned: dict[str, Any] = {}
    for key, raw in filters.items():
        if _is_blank(raw):
            continue
        schema_filter = schema.get_filter(key)
        if schema_filter is None:
            raise InvalidRequest(f"Unsupported filter key for {schema.data_type}: {key}")
        if schema_filter.type == "range":
            if not isinstance(raw, Mapping) or not ({"min", "max"} & set(raw.keys())):
                raise InvalidRequest(f"range filter '{key}' must include min or max")
            cleaned[key] = {bound: raw[bound] for bound in ("min", "max") if raw.get(bound) is not None}
            continue
        if schema_filter.type in ("id", "search") and not isinstance(raw, str):
            raise InvalidRequest(f"{schema_filter.type} filter '{key}' must be a string")
        if schema_filter.type == "select" and schema_filter.options and raw not in schema_filter.options:
            raise InvalidRequest(f"select filter '{key}' must be one of: {list(schema_filter.options)}")
        cleaned[key] = raw.strip() if isinstance(raw, str) else raw
    return cleaned


def filter_conditions(schema: DataTypeSchema, filters: Mapping[str, Any] | None) -> dict[str, Any]:
    """Translate validated filters into datastore match conditions."""

    conditions: dict[str, Any] = {}
    for key, value in validate_filters(schema, filters).items():
        filter_type = schema.get_filter(key).type  # type: ignore[union-attr]
        if filter_type == "id":
            conditions[key] = {"$in": id_candidates([value])}
        elif filter_type == "search":
            conditions[key] = {"$regex": re.escape(value), "$options": "i"}
        elif filter_type == "range":
            bounds = {}
            if "min" in value:
                bounds["$gte"] = value["min"]
            if "max" in value:
                bounds["$lte"] = value["max"]
            conditions[key] = bounds
        else:
            conditions[key] = value
    return conditions


def sanitize_filters(schema: DataTypeSchema, candidate: Mapping[str, Any] | None) -> dict[str, Any]:
    """Keep only stored filter inputs the schema still knows about."""

    sanitized: dict[str, Any] = {}
    for key, value in (candidate or {}).items():
        schema_filter = schema.get_filter(key)
        if schema_filter is None:
            continue
        if schema_filter.type == "range":
            bounds = value if isinstance(value, Mapping) else {}
            kept = {bound: bounds[bound] for bound in ("min", "max") if isinstance(bounds.get(bound), str) and bounds[bound]}
            if kept:
                sanitized[key] = kept
            continue
        if isinstance(value, str):
            sanitized[key] = value
    return sanitized


def build_filters(schema: DataTypeSchema | None, values: Mapping[str, Any]) -> dict[str, Any] | None:
    """Request filters from raw inputs, walking the schema's filter list only."""

    if schema is None:
        return None
    filters: dict[str, Any] = {}
    for schema_filter in schema.filters:
        raw = values.get(schema_filter.key)
        if schema_filter.type == "range":
            bounds = raw if isinstance(raw, Mapping) else {}
            minimum = str(bounds.get("min") or "").strip()
            maximum = str(bounds.get("max") or "").strip()
            if minimum or maximum:
                filters[schema_filter.key] = {
                    **({"min": minimum} if minimum else {}),
                    **({"max": maximum} if maximum else {}),
                }
            continue
        if isinstance(raw, str) and raw.strip():
            filters[schema_filter.key] = raw.strip()
    return filters or None
