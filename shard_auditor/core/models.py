"""
models.py — Audit Data Model
===============================
Pydantic models for the records exchanged with the contract index,
the bridge and the storage nodes.
"""

import string
import time
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from shard_auditor.core.paths import normalize_digest

# Shard digest (hex) -> verified
AuditResult = Dict[str, bool]

_HEX = frozenset(string.hexdigits.lower())


def is_node_id(value: str) -> bool:
    """True if value looks like a hex node identity (e.g. 40 hex chars)."""
    if not isinstance(value, str):
        return False
    return len(value) >= 8 and len(value) % 2 == 0 and set(value.lower()) <= _HEX


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


class Contact(BaseModel):
    """Network reachability record for a storage node."""

    node_id: str
    address: str
    port: int
    protocol: Optional[str] = None

    @property
    def base_url(self) -> str:
        return f"http://{self.address}:{self.port}"


class Contract(BaseModel):
    """Storage agreement binding one shard to one node for a time window."""

    node_id: str
    data_hash: str
    store_begin: int = 0         # ms since epoch
    store_end: int               # ms since epoch

    def is_active(self, at_ms: Optional[int] = None) -> bool:
        """A contract is active until the end of its storage window."""
        if at_ms is None:
            at_ms = now_ms()
        return self.store_end >= at_ms


class ShardDescriptor(BaseModel):
    """A shard and every contract that references it."""

    hash: str
    contracts: List[Contract] = Field(default_factory=list)

    @field_validator("hash")
    @classmethod
    def _normalize_hash(cls, value: str) -> str:
        return normalize_digest(value)

    def contract_for(self, node_id: str) -> Optional[Contract]:
        """Return the contract naming the given node, if any."""
        node_id = node_id.lower()
        for contract in self.contracts:
            if contract.node_id.lower() == node_id:
                return contract
        return None


class RetrievalPointer(BaseModel):
    """Short-lived credential authorizing download of one shard."""

    token: Optional[str] = None

    @property
    def is_usable(self) -> bool:
        return bool(self.token)
