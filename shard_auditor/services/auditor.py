"""
auditor.py — Audit Orchestrator
==================================
Audits the shards held by a set of storage nodes and records one
pass/fail map per node in the completion ledger.

Per node, the audit is a small state machine:

    CHECK_LEDGER ──(entry exists)──────────────────────► SKIPPED
        │  └──────(read error)─────────────────────────► FAILED
        ▼
    ENUMERATE ────(contact not found)──────────────────► FAILED
        ▼
    AUDIT_SHARDS ─(index failure)──────────────────────► FAILED
        ▼
    COMMIT ───────(write error)────────────────────────► FAILED
        └──────────────────────────────────────────────► AUDITED

Concurrency is bounded at two levels: a node semaphore limits how
many nodes are audited at once, and within a node a shard semaphore
gates how far the shard cursor may run ahead of finished
verifications.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncGenerator, Dict, Iterable, List, Optional, Set

from shard_auditor.core.errors import (
    AuditError,
    ContactNotFoundError,
    IndexQueryError,
    LedgerReadError,
    LedgerWriteError,
    NegotiationError,
)
from shard_auditor.core.models import AuditResult, Contact, ShardDescriptor
from shard_auditor.services.index_client import ShardIndexClient
from shard_auditor.services.ledger import LedgerStore
from shard_auditor.services.retrieval import RetrievalClient
from shard_auditor.services.verifier import ShardVerifier

logger = logging.getLogger(__name__)

DEFAULT_NODE_CONCURRENCY = 10
DEFAULT_SHARD_CONCURRENCY = 10


class NodeState(str, Enum):
    CHECK_LEDGER = "check_ledger"
    ENUMERATE = "enumerate"
    AUDIT_SHARDS = "audit_shards"
    COMMIT = "commit"
    SKIPPED = "skipped"
    AUDITED = "audited"
    FAILED = "failed"


TERMINAL_STATES = frozenset({NodeState.SKIPPED, NodeState.AUDITED, NodeState.FAILED})


@dataclass
class NodeOutcome:
    """Final state of one node's audit."""

    node_id: str
    state: NodeState
    result: Optional[AuditResult] = None
    error: Optional[str] = None


@dataclass
class AuditSummary:
    """Totals for one orchestrator run."""

    audited: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    shards_passed: int = 0
    shards_failed: int = 0

    def add(self, outcome: NodeOutcome) -> None:
        if outcome.state == NodeState.AUDITED:
            self.audited.append(outcome.node_id)
            results = outcome.result or {}
            passed = sum(1 for ok in results.values() if ok)
            self.shards_passed += passed
            self.shards_failed += len(results) - passed
        elif outcome.state == NodeState.SKIPPED:
            self.skipped.append(outcome.node_id)
        else:
            self.failed[outcome.node_id] = outcome.error or "unknown error"

    def to_dict(self) -> dict:
        return {
            "audited": self.audited,
            "skipped": self.skipped,
            "failed": self.failed,
            "shards_passed": self.shards_passed,
            "shards_failed": self.shards_failed,
        }


class NodeAudit:
    """
    Drives one node through the audit state machine.

    The in-progress result belongs to this instance and is only handed
    to the ledger once every dispatched shard has finished.
    """

    def __init__(
        self,
        node_id: str,
        ledger: LedgerStore,
        index: ShardIndexClient,
        retrieval: RetrievalClient,
        verifier: ShardVerifier,
        shard_concurrency: int = DEFAULT_SHARD_CONCURRENCY,
        start_hash: Optional[str] = None,
    ):
        if shard_concurrency <= 0:
            raise ValueError("Shard concurrency must be a positive integer")
        self.node_id = node_id.lower()
        self.ledger = ledger
        self.index = index
        self.retrieval = retrieval
        self.verifier = verifier
        self.shard_concurrency = shard_concurrency
        self.start_hash = start_hash

        self.state = NodeState.CHECK_LEDGER
        self.contact: Optional[Contact] = None
        self.results: AuditResult = {}
        self.error: Optional[str] = None

    async def run(self) -> NodeOutcome:
        handlers = {
            NodeState.CHECK_LEDGER: self._check_ledger,
            NodeState.ENUMERATE: self._enumerate,
            NodeState.AUDIT_SHARDS: self._audit_shards,
            NodeState.COMMIT: self._commit,
        }
        while self.state not in TERMINAL_STATES:
            previous = self.state
            self.state = await handlers[self.state]()
            logger.debug("Node %s: %s -> %s", self.node_id, previous.value, self.state.value)

        return NodeOutcome(
            node_id=self.node_id,
            state=self.state,
            result=self.results if self.state == NodeState.AUDITED else None,
            error=self.error,
        )

    def _fail(self, message: str) -> NodeState:
        self.error = message
        logger.error("Audit of node %s failed: %s", self.node_id, message)
        return NodeState.FAILED

    async def _check_ledger(self) -> NodeState:
        try:
            done = await asyncio.to_thread(self.ledger.has, self.node_id)
        except LedgerReadError as e:
            return self._fail(str(e))
        if done:
            logger.info("Node %s already audited, skipping", self.node_id)
            return NodeState.SKIPPED
        return NodeState.ENUMERATE

    async def _enumerate(self) -> NodeState:
        try:
            self.contact = await self.index.find_contact(self.node_id)
        except ContactNotFoundError as e:
            return self._fail(str(e))
        return NodeState.AUDIT_SHARDS

    async def _check_shard(self, shard: ShardDescriptor) -> bool:
        contract = shard.contract_for(self.node_id)
        if contract is None:
            logger.warning(
                "Shard %s has no contract for node %s", shard.hash[:16], self.node_id
            )
            return False
        try:
            pointer = await self.retrieval.negotiate(self.contact, contract)
        except NegotiationError as e:
            logger.warning("No pointer for shard %s: %s", shard.hash[:16], e)
            return False
        return await self.verifier.verify(self.contact, shard, pointer)

    async def _run_shard(self, shard: ShardDescriptor, slots: asyncio.Semaphore) -> None:
        try:
            self.results[shard.hash] = await self._check_shard(shard)
        except Exception:
            logger.exception(
                "Unexpected error checking shard %s on %s", shard.hash[:16], self.node_id
            )
            self.results[shard.hash] = False
        finally:
            slots.release()

    async def _audit_shards(self) -> NodeState:
        slots = asyncio.Semaphore(self.shard_concurrency)
        pending: Set[asyncio.Task] = set()
        seen: Set[str] = set()
        cursor: AsyncGenerator[ShardDescriptor, None] = self.index.enumerate_shards(
            self.node_id, start_hash=self.start_hash
        )
        try:
            while True:
                # A permit is taken before the cursor moves, so the cursor
                # never runs more than shard_concurrency ahead of completions.
                await slots.acquire()
                try:
                    shard = await cursor.__anext__()
                except StopAsyncIteration:
                    slots.release()
                    break
                except BaseException:
                    slots.release()
                    raise

                if shard.hash in seen:
                    slots.release()
                    continue
                seen.add(shard.hash)

                task = asyncio.create_task(self._run_shard(shard, slots))
                pending.add(task)
                task.add_done_callback(pending.discard)

            if pending:
                await asyncio.gather(*pending)
        except IndexQueryError as e:
            self._cancel(pending)
            await asyncio.gather(*pending, return_exceptions=True)
            return self._fail(f"shard enumeration failed: {e}")
        except BaseException:
            self._cancel(pending)
            raise
        finally:
            await cursor.aclose()

        logger.info(
            "Node %s: verified %d shard(s), %d failed",
            self.node_id,
            len(self.results),
            sum(1 for ok in self.results.values() if not ok),
        )
        return NodeState.COMMIT

    @staticmethod
    def _cancel(tasks: Iterable[asyncio.Task]) -> None:
        for task in list(tasks):
            task.cancel()

    async def _commit(self) -> NodeState:
        try:
            await asyncio.to_thread(self.ledger.commit, self.node_id, dict(self.results))
        except LedgerWriteError as e:
            return self._fail(f"{e}; node left unaudited for retry")
        return NodeState.AUDITED


class AuditOrchestrator:
    """
    Audits many nodes with bounded concurrency.

    One node's failure never affects the others; every node ends in
    exactly one of the terminal states and is reported in the summary.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        index: ShardIndexClient,
        retrieval: RetrievalClient,
        verifier: ShardVerifier,
        node_concurrency: int = DEFAULT_NODE_CONCURRENCY,
        shard_concurrency: int = DEFAULT_SHARD_CONCURRENCY,
        start_hash: Optional[str] = None,
    ):
        if node_concurrency <= 0:
            raise ValueError("Node concurrency must be a positive integer")
        if shard_concurrency <= 0:
            raise ValueError("Shard concurrency must be a positive integer")
        self.ledger = ledger
        self.index = index
        self.retrieval = retrieval
        self.verifier = verifier
        self.node_concurrency = node_concurrency
        self.shard_concurrency = shard_concurrency
        self.start_hash = start_hash

    def node_audit(self, node_id: str) -> NodeAudit:
        return NodeAudit(
            node_id=node_id,
            ledger=self.ledger,
            index=self.index,
            retrieval=self.retrieval,
            verifier=self.verifier,
            shard_concurrency=self.shard_concurrency,
            start_hash=self.start_hash,
        )

    async def audit_node(self, node_id: str) -> NodeOutcome:
        """Audit a single node, converting any escaped error into FAILED."""
        try:
            return await self.node_audit(node_id).run()
        except (AuditError, ValueError) as e:
            logger.error("Audit of node %s failed: %s", node_id, e)
            return NodeOutcome(node_id=node_id, state=NodeState.FAILED, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error auditing node %s", node_id)
            return NodeOutcome(
                node_id=node_id, state=NodeState.FAILED, error=f"unexpected error: {e}"
            )

    async def run(self, node_ids: Iterable[str]) -> AuditSummary:
        """
        Audit every node in node_ids.

        Args:
            node_ids: Node identities to audit. Ids are case-insensitive and
                duplicates are audited once.

        Returns:
            Summary of audited, skipped and failed nodes.
        """
        unique: List[str] = []
        for node_id in node_ids:
            node_id = node_id.lower()
            if node_id not in unique:
                unique.append(node_id)

        slots = asyncio.Semaphore(self.node_concurrency)

        async def bounded(node_id: str) -> NodeOutcome:
            async with slots:
                return await self.audit_node(node_id)

        logger.info(
            "Auditing %d node(s) (node concurrency=%d, shard concurrency=%d)",
            len(unique),
            self.node_concurrency,
            self.shard_concurrency,
        )
        outcomes = await asyncio.gather(*(bounded(n) for n in unique))

        summary = AuditSummary()
        for outcome in outcomes:
            summary.add(outcome)

        logger.info(
            "Audit finished: %d audited, %d skipped, %d failed "
            "(%d shard(s) passed, %d failed)",
            len(summary.audited),
            len(summary.skipped),
            len(summary.failed),
            summary.shards_passed,
            summary.shards_failed,
        )
        return summary
