"""
verifier.py — Shard Fetch-and-Verify Worker
==============================================
Downloads one shard from a node and checks it against its expected
digest. Bytes are hashed and written to the local shard store as
they arrive.

A failed verification is a result, not an error: every failure mode
(no token, stream error, timeout, digest mismatch) yields False.
"""

import asyncio
import logging
from pathlib import Path

from shard_auditor.core.errors import InvalidPointerError, TransferError
from shard_auditor.core.hashing import DEFAULT_ALGORITHM, DigestVerifier
from shard_auditor.core.models import Contact, RetrievalPointer, ShardDescriptor
from shard_auditor.core.paths import ensure_shard_path
from shard_auditor.services.retrieval import RetrievalClient

logger = logging.getLogger(__name__)


class ShardVerifier:
    """
    Streams shards into the local store and verifies their digests.
    """

    def __init__(
        self,
        shard_dir: str,
        retrieval: RetrievalClient,
        transfer_timeout: float = 300,
        algorithm: str = DEFAULT_ALGORITHM,
    ):
        """
        Args:
            shard_dir: Root of the local content-addressed shard store.
            retrieval: Client used to stream shard bytes.
            transfer_timeout: Seconds allowed for one complete transfer.
            algorithm: Hash algorithm of the expected digests.
        """
        self.shard_dir = Path(shard_dir)
        self.shard_dir.mkdir(parents=True, exist_ok=True)
        self.retrieval = retrieval
        self.transfer_timeout = transfer_timeout
        self.algorithm = algorithm
        DigestVerifier(algorithm)  # fail fast on an unknown algorithm

    async def _download(
        self, contact: Contact, shard: ShardDescriptor, token: str, path: Path
    ) -> DigestVerifier:
        verifier = DigestVerifier(self.algorithm)
        with open(path, "wb") as fh:
            async for chunk in self.retrieval.stream_shard(contact, shard.hash, token):
                verifier.update(chunk)
                await asyncio.to_thread(fh.write, chunk)
        return verifier

    async def verify(
        self, contact: Contact, shard: ShardDescriptor, pointer: RetrievalPointer
    ) -> bool:
        """
        Fetch a shard from a node and verify it.

        Args:
            contact: Node serving the shard.
            shard: Shard being checked; its hash is the expected digest.
            pointer: Retrieval pointer negotiated for this shard.

        Returns:
            True if the streamed bytes hash to the shard's digest.
        """
        try:
            if not pointer.is_usable:
                raise InvalidPointerError(
                    f"No usable token for shard {shard.hash[:16]} on {contact.node_id}"
                )
            path = ensure_shard_path(self.shard_dir, shard.hash)
            # Create the file before the stream opens so a failed transfer
            # still leaves an artifact at the expected path.
            path.touch()
            verifier = await asyncio.wait_for(
                self._download(contact, shard, pointer.token, path),
                timeout=self.transfer_timeout,
            )
        except InvalidPointerError as e:
            logger.warning("%s", e)
            return False
        except asyncio.TimeoutError:
            logger.warning(
                "Transfer of shard %s from %s timed out after %.1fs",
                shard.hash[:16],
                contact.node_id,
                self.transfer_timeout,
            )
            return False
        except TransferError as e:
            logger.warning("%s", e)
            return False
        except OSError as e:
            logger.error("Cannot write shard %s locally: %s", shard.hash[:16], e)
            return False

        ok = verifier.matches(shard.hash)
        if ok:
            logger.info(
                "Shard %s on %s verified (%d bytes)",
                shard.hash[:16],
                contact.node_id,
                verifier.bytes_seen,
            )
        else:
            logger.warning(
                "Shard %s on %s failed verification: got %s",
                shard.hash[:16],
                contact.node_id,
                verifier.hexdigest()[:16],
            )
        return ok
