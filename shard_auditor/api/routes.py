"""
routes.py — Ledger Report API Endpoints
==========================================
Read-only view of the completion ledger.

Endpoints:
    GET /health             — Health check
    GET /nodes              — Totals for every audited node
    GET /nodes/{node_id}    — Per-shard results for one node
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from shard_auditor.api.schemas import (
    HealthResponse,
    NodeListResponse,
    NodeReport,
    NodeSummary,
)
from shard_auditor.config import settings
from shard_auditor.core.errors import LedgerReadError
from shard_auditor.core.models import AuditResult, is_node_id
from shard_auditor.services.ledger import LedgerStore

logger = logging.getLogger(__name__)

router = APIRouter()

_ledger: Optional[LedgerStore] = None


def get_ledger() -> LedgerStore:
    """Get or create the ledger singleton."""
    global _ledger
    if _ledger is None:
        _ledger = LedgerStore(settings.ledger_dir)
    return _ledger


def _summary(node_id: str, result: AuditResult) -> NodeSummary:
    passed = sum(1 for ok in result.values() if ok)
    return NodeSummary(
        node_id=node_id,
        total_shards=len(result),
        passed=passed,
        failed=len(result) - passed,
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(ledger: LedgerStore = Depends(get_ledger)):
    """Health check endpoint for the report service."""
    return HealthResponse(
        status="healthy",
        service="shard-auditor",
        audited_nodes=len(ledger.node_ids()),
    )


@router.get("/nodes", response_model=NodeListResponse)
async def list_nodes(ledger: LedgerStore = Depends(get_ledger)):
    """List every audited node with its pass/fail totals."""
    nodes = []
    for node_id in ledger.node_ids():
        try:
            result = ledger.get(node_id)
        except LedgerReadError as e:
            logger.warning("Skipping unreadable ledger entry: %s", e)
            continue
        if result is not None:
            nodes.append(_summary(node_id, result))
    return NodeListResponse(total_nodes=len(nodes), nodes=nodes)


@router.get("/nodes/{node_id}", response_model=NodeReport)
async def get_node(node_id: str, ledger: LedgerStore = Depends(get_ledger)):
    """Per-shard results for one audited node."""
    if not is_node_id(node_id):
        raise HTTPException(status_code=400, detail="Invalid node id")
    try:
        result = ledger.get(node_id)
    except LedgerReadError as e:
        logger.error("Ledger read failed for %s: %s", node_id, e)
        raise HTTPException(status_code=500, detail="Ledger entry unreadable")
    if result is None:
        raise HTTPException(status_code=404, detail="Node not audited")

    summary = _summary(node_id, result)
    return NodeReport(**summary.model_dump(), shards=result)
