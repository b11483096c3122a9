"""Identifiers that may be stored either as plain text or as ObjectIds."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union

from bson import ObjectId


@dataclass(frozen=True)
class TextId:
    value: str

    def to_query(self) -> str:
        return self.value


@dataclass(frozen=True)
class StructuredId:
    raw: bytes

    @classmethod
    def from_hex(cls, value: str) -> "StructuredId":
        return cls(ObjectId(value).binary)

    def to_query(self) -> ObjectId:
        return ObjectId(self.raw)

    @property
    def hex(self) -> str:
        return self.raw.hex()


Identifier = Union[TextId, StructuredId]


def normalize_id(value: object) -> str:
    """Canonical string form of an identifier, or ``""`` when unusable."""

    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, StructuredId):
        return value.hex
    if isinstance(value, TextId):
        return value.value.strip()
    if isinstance(value, str):
        return value.strip()
    return ""


def expand_identifier(value: str) -> list[Identifier]:
    """Both representations a text id may have been written with."""

    text = value.strip()
    if not text:
        return []
    forms: list[Identifier] = [TextId(text)]
    if ObjectId.is_valid(text):
        forms.append(StructuredId.from_hex(text))
    return forms


def id_candidates(values: Iterable[str]) -> list[str | ObjectId]:
    """Expand ids into every queryable form, de-duplicated and order-preserving."""

    seen: set[Identifier] = set()
    expanded: list[str | ObjectId] = []
    for value in values:
        for form in expand_identifier(value):
            if form in seen:
                continue
            seen.add(form)
            expanded.append(form.to_query())
    return expanded


def unique_ids(values: Iterable[object]) -> list[str]:
    """Normalize raw ids, dropping blanks and duplicates while keeping order."""

    ordered: list[str] = []
    seen: set[str] = set()
    for value in values:
        normalized = normalize_id(value)
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        ordered.append(normalized)
    return ordered
