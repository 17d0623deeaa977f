"""
ledger.py — Completion Ledger
================================
Persistent per-node record of shard verification results.

Each audited node gets one JSON document named by its node id:

    <root>/<node_id>.json   ->   {"<shard hash>": true | false, ...}

Presence of a document means the node's audit is complete and must
not be re-run. Documents are written once, via a temporary file that
is hard-linked into place (failing if the entry exists), and are
never updated by the auditor.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from shard_auditor.core.errors import LedgerReadError, LedgerWriteError
from shard_auditor.core.models import AuditResult, is_node_id

logger = logging.getLogger(__name__)

_SUFFIX = ".json"


class LedgerStore:
    """
    Filesystem key-value store keyed by node identity.
    """

    def __init__(self, root_dir: str):
        """
        Initialize the ledger.

        Args:
            root_dir: Directory holding one document per audited node.
        """
        self.root_dir = Path(root_dir)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        logger.info("LedgerStore initialized at %s", self.root_dir)

    def _entry_path(self, node_id: str) -> Path:
        if not is_node_id(node_id):
            raise ValueError(f"Invalid node id: {node_id!r}")
        return self.root_dir / f"{node_id.lower()}{_SUFFIX}"

    def has(self, node_id: str) -> bool:
        """
        Check whether a node already has a committed result.

        Returns:
            True if an entry exists, False if it is absent.

        Raises:
            LedgerReadError: If the store could not be inspected. A read
                failure is never reported as "absent".
        """
        path = self._entry_path(node_id)
        try:
            os.stat(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise LedgerReadError(f"Cannot read ledger entry for {node_id}: {e}") from e
        return True

    def get(self, node_id: str) -> Optional[AuditResult]:
        """
        Load a node's committed result.

        Returns:
            The shard hash -> verified map, or None if not audited.

        Raises:
            LedgerReadError: If the entry exists but cannot be read or parsed.
        """
        path = self._entry_path(node_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise LedgerReadError(f"Cannot read ledger entry for {node_id}: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise LedgerReadError(f"Corrupt ledger entry for {node_id}: {e}") from e
        if not isinstance(data, dict) or not all(
            isinstance(v, bool) for v in data.values()
        ):
            raise LedgerReadError(f"Corrupt ledger entry for {node_id}: not a result map")
        return data

    def commit(self, node_id: str, result: AuditResult) -> None:
        """
        Persist a node's complete result as a single unit.

        Args:
            node_id: Node that was audited.
            result: Shard hash -> verified map.

        Raises:
            LedgerWriteError: If the entry already exists or the write fails.
                Nothing is left behind on failure.
        """
        path = self._entry_path(node_id)
        if path.exists():
            raise LedgerWriteError(f"Ledger entry for {node_id} already exists")

        payload = json.dumps(
            {str(k): bool(v) for k, v in result.items()}, sort_keys=True
        )
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self.root_dir, prefix=f".{node_id.lower()}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            # link() fails if the target exists, so a concurrent commit
            # for the same node can never replace this one.
            os.link(tmp_name, path)
        except FileExistsError as e:
            raise LedgerWriteError(f"Ledger entry for {node_id} already exists") from e
        except OSError as e:
            raise LedgerWriteError(f"Cannot commit ledger entry for {node_id}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.debug("Could not remove temporary ledger file %s", tmp_name)

        logger.info(
            "Committed ledger entry for %s (%d shards)", node_id, len(result)
        )

    def node_ids(self) -> List[str]:
        """List all node ids with a committed entry."""
        return sorted(
            f.name[: -len(_SUFFIX)]
            for f in self.root_dir.iterdir()
            if f.is_file() and f.name.endswith(_SUFFIX) and not f.name.startswith(".")
        )
