"""
schemas.py — Pydantic Response Models
========================================
Data models for the read-only ledger report API.
"""

from typing import Dict, List

from pydantic import BaseModel


class NodeSummary(BaseModel):
    """Pass/fail totals for one audited node."""

    node_id: str
    total_shards: int
    passed: int
    failed: int


class NodeReport(NodeSummary):
    """Full per-shard result for one audited node."""

    shards: Dict[str, bool]      # shard hash -> verified


class NodeListResponse(BaseModel):
    """All audited nodes."""

    total_nodes: int
    nodes: List[NodeSummary]


class HealthResponse(BaseModel):
    """Report service health check response."""

    status: str
    service: str
    audited_nodes: int
