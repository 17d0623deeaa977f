"""
errors.py — Audit Error Taxonomy
===================================
Node-level errors (ledger reads, contact lookup, index queries) abort
the audit of one node. Shard-level errors (negotiation, pointer,
transfer) are absorbed into the node's result as a failed shard.
"""


class AuditError(Exception):
    """Base class for all auditor errors."""


class LedgerError(AuditError):
    """Storage-layer failure in the completion ledger."""


class LedgerReadError(LedgerError):
    """The ledger could not tell whether a node was already audited."""


class LedgerWriteError(LedgerError):
    """A node's result could not be committed to the ledger."""


class ContactNotFoundError(AuditError):
    """No contact information could be located for a node."""

    def __init__(self, node_id: str, reason: str = "contact not found"):
        super().__init__(f"{reason}: {node_id}")
        self.node_id = node_id


class IndexQueryError(AuditError):
    """The contract/shard index failed while being paged."""


class NegotiationError(AuditError):
    """A retrieval pointer could not be obtained for a shard."""


class InvalidPointerError(NegotiationError):
    """A retrieval pointer was returned without a usable token."""


class TransferError(AuditError):
    """Streaming a shard from a node failed or timed out."""
