"""Resolve which customers and channels a batch request covers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from chatledger.config import Settings
from chatledger.dates import to_store_datetime
from chatledger.errors import InvalidRequest
from chatledger.metrics.observability import get_logger
from chatledger.models import BatchRequest
from chatledger.orchestration.directory import CustomerDirectory
from chatledger.store.identifiers import id_candidates, unique_ids
from chatledger.store.reader import DocumentReader


@dataclass(frozen=True)
class CustomerScope:
    partner_id: str | None
    customer_ids: Sequence[str]


class ScopeResolver:
    """Turns a partner or explicit filters into customer ids and their active channels."""

    def __init__(self, reader: DocumentReader, directory: CustomerDirectory, settings: Settings) -> None:
        self._reader = reader
        self._directory = directory
        self._chats = settings.chats_collection
        self._logger = get_logger("scope")

    def resolve(self, request: BatchRequest, start: datetime, end: datetime) -> CustomerScope:
        partner_id = (request.partner_id or "").strip() or None
        explicit = unique_ids(request.customer_ids)
        if explicit:
            return CustomerScope(partner_id=partner_id, customer_ids=explicit)
        if partner_id:
            members = self._directory.resolve_partner_members(partner_id)
            self._logger.info("scope.partner_resolved", partner_id=partner_id, member_count=len(members))
            return CustomerScope(partner_id=partner_id, customer_ids=unique_ids(m.customer_id for m in members))
        channel_ids = unique_ids(request.channel_ids)
        if not channel_ids:
            raise InvalidRequest("partnerId, customerIds or channelIds is required")
        creators = self._reader.distinct(
            self._chats,
            "creator",
            {
                "channel": {"$in": id_candidates(channel_ids)},
                "createdAt": {"$gte": to_store_datetime(start), "$lte": to_store_datetime(end)},
            },
        )
        return CustomerScope(partner_id=None, customer_ids=unique_ids(creators))

    def channels_for(
        self,
        customer_id: str,
        start: datetime,
        end: datetime,
        channel_ids: Sequence[str] = (),
    ) -> list[str]:
        """Distinct channels the customer wrote in during the range, optionally restricted."""

        match: dict[str, object] = {
            "creator": {"$in": id_candidates([customer_id])},
            "createdAt": {"$gte": to_store_datetime(start), "$lte": to_store_datetime(end)},
        }
        restrict = unique_ids(channel_ids)
        if restrict:
            match["channel"] = {"$in": id_candidates(restrict)}
        return unique_ids(self._reader.distinct(self._chats, "channel", match))
