"""Error taxonomy shared by the report and workflow layers."""

from __future__ import annotations


class ChatLedgerError(RuntimeError):
    """Base class for errors surfaced by chatledger services."""


class InvalidRequest(ChatLedgerError):
    """Raised when a request is malformed; never retried."""


class UpstreamReadFailure(ChatLedgerError):
    """Raised when a datastore read fails or exceeds its timeout."""


class PartnerNotFound(ChatLedgerError):
    """Raised when a partner id resolves to zero customers."""

    def __init__(self, partner_id: str) -> None:
        super().__init__(f"No customers found for partner: {partner_id}")
        self.partner_id = partner_id


__all__ = ["ChatLedgerError", "InvalidRequest", "PartnerNotFound", "UpstreamReadFailure"]
