"""Customer and channel directory lookups against the users/channels collections."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Protocol

from bson import ObjectId

from chatledger.catalog import channel_key, get_schema
from chatledger.config import Settings
from chatledger.errors import InvalidRequest, PartnerNotFound
from chatledger.store.identifiers import id_candidates, normalize_id, unique_ids
from chatledger.store.reader import DocumentReader, first_text

CHANNEL_NAME_FIELDS = ("displayName", "name", "title")
SEARCH_LIMIT = 20
MIN_SEARCH_LENGTH = 2
NEWEST_FIRST = [("createdAt", -1), ("_id", -1)]


@dataclass(frozen=True)
class Customer:
    customer_id: str
    name: str
    email: str


@dataclass(frozen=True)
class CustomerChannel:
    channel_id: str
    channel_name: str = ""


class CustomerDirectory(Protocol):
    """External lookup of partner membership and display names."""

    def resolve_partner_members(self, partner_id: str) -> list[Customer]:
        """Return the partner's customers, raising ``PartnerNotFound`` when there are none."""

    def customer_names(self, customer_ids: Iterable[str]) -> Mapping[str, str]:
        """Map customer id to display name."""

    def channel_names(self, channel_ids: Iterable[str]) -> Mapping[str, str]:
        """Map channel id to display name."""

    def search_customers(self, query: str) -> list[Customer]:
        """Customers whose id, name or email matches ``query``."""

    def list_customer_channels(self, customer_id: str, data_type: str = "conversations") -> list[CustomerChannel]:
        """Channels the customer has records in for ``data_type``."""


def _member_ids(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return unique_ids(item if isinstance(item, (str, ObjectId)) else str(item) for item in value if item is not None)


def customer_from_document(document: Mapping[str, object]) -> Customer | None:
    customer_id = normalize_id(document.get("_id"))
    if not customer_id:
        return None
    email = document.get("email")
    email = email.strip() if isinstance(email, str) else ""
    return Customer(customer_id=customer_id, name=first_text(document, ("name",)) or email, email=email)


class MongoCustomerDirectory:
    def __init__(self, reader: DocumentReader, settings: Settings) -> None:
        self._reader = reader
        self._users = settings.users_collection
        self._channels = settings.channels_collection

    def resolve_partner_members(self, partner_id: str) -> list[Customer]:
        partner_id = partner_id.strip()
        owners = self._reader.find(
            self._users,
            {"_id": {"$in": id_candidates([partner_id])}},
            projection={"_id": 1, "members": 1},
            limit=1,
        )
        members = _member_ids(owners[0].get("members")) if owners else []
        documents = self._reader.find(
            self._users,
            {"_id": {"$in": id_candidates(unique_ids([partner_id, *members]))}},
            projection={"_id": 1, "name": 1, "email": 1},
        )
        customers = [customer for customer in map(customer_from_document, documents) if customer is not None]
        if not customers:
            raise PartnerNotFound(partner_id)
        return customers

    def customer_names(self, customer_ids: Iterable[str]) -> dict[str, str]:
        ids = unique_ids(customer_ids)
        if not ids:
            return {}
        documents = self._reader.find(
            self._users,
            {"_id": {"$in": id_candidates(ids)}},
            projection={"_id": 1, "name": 1, "email": 1},
        )
        names: dict[str, str] = {}
        for customer in map(customer_from_document, documents):
            if customer is not None and customer.name:
                names[customer.customer_id] = customer.name
        return names

    def channel_names(self, channel_ids: Iterable[str]) -> dict[str, str]:
        ids = unique_ids(channel_ids)
        if not ids:
            return {}
        candidates = id_candidates(ids)
        conditions: list[dict[str, object]] = [{"channel": {"$in": candidates}}]
        object_ids = [value for value in candidates if isinstance(value, ObjectId)]
        if object_ids:
            conditions.insert(0, {"_id": {"$in": object_ids}})
        documents = self._reader.find(
            self._channels,
            {"$or": conditions},
            projection={"_id": 1, "channel": 1, **{name: 1 for name in CHANNEL_NAME_FIELDS}},
        )
        names: dict[str, str] = {}
        for document in documents:
            name = first_text(document, CHANNEL_NAME_FIELDS)
            if not name:
                continue
            for key in (normalize_id(document.get("_id")), normalize_id(document.get("channel"))):
                if key:
                    names[key] = name
        return names

    def search_customers(self, query: str) -> list[Customer]:
        keyword = (query or "").strip()
        if len(keyword) < MIN_SEARCH_LENGTH:
            raise InvalidRequest(f"Query must be at least {MIN_SEARCH_LENGTH} characters")
        pattern = {"$regex": re.escape(keyword), "$options": "i"}
        conditions: list[dict[str, object]] = [{"name": pattern}, {"email": pattern}]
        object_ids = [value for value in id_candidates([keyword]) if isinstance(value, ObjectId)]
        if object_ids:
            conditions.insert(0, {"_id": object_ids[0]})
        documents = self._reader.find(
            self._users,
            {"$or": conditions},
            projection={"_id": 1, "name": 1, "email": 1},
            sort=NEWEST_FIRST,
            limit=SEARCH_LIMIT,
        )
        return [customer for customer in map(customer_from_document, documents) if customer and customer.name]

    def list_customer_channels(self, customer_id: str, data_type: str = "conversations") -> list[CustomerChannel]:
        customer_id = (customer_id or "").strip()
        if not customer_id:
            raise InvalidRequest("customerId is required")
        schema = get_schema(data_type)
        key = channel_key(schema)
        if key is None:
            return []
        values = self._reader.distinct(
            schema.collection,
            key,
            {schema.customer_field: {"$in": id_candidates([customer_id])}},
        )
        channel_ids = unique_ids(values)
        names = self.channel_names(channel_ids)
        return [CustomerChannel(channel_id=channel_id, channel_name=names.get(channel_id, "")) for channel_id in channel_ids]
