"""
hashing.py — Streaming Digest Verification
=============================================
Incremental hashing for shard content. Bytes are fed to the
verifier as they arrive from the network so a shard never has to
be held in memory to be checked against its expected digest.

Default hash function: SHA-256
"""

import hashlib
import logging

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "sha256"


def digest_size(algorithm: str = DEFAULT_ALGORITHM) -> int:
    """Size in bytes of digests produced by the given algorithm."""
    return DigestVerifier(algorithm).digest_size


class DigestVerifier:
    """
    Incremental hash over a stream of byte chunks.

    Usage:
        verifier = DigestVerifier()
        for chunk in stream:
            verifier.update(chunk)
        verifier.matches(expected_hex)
    """

    def __init__(self, algorithm: str = DEFAULT_ALGORITHM):
        """
        Args:
            algorithm: Any hashlib algorithm name (e.g. "sha256").

        Raises:
            ValueError: If the algorithm is not available.
        """
        try:
            self._hash = hashlib.new(algorithm)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Unsupported digest algorithm: {algorithm!r}") from e
        self.algorithm = algorithm
        self.bytes_seen = 0

    @property
    def digest_size(self) -> int:
        return self._hash.digest_size

    def update(self, data: bytes) -> None:
        """Feed the next chunk of content into the hash."""
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError(f"Expected bytes, got {type(data).__name__}")
        self._hash.update(data)
        self.bytes_seen += len(data)

    def hexdigest(self) -> str:
        """Lowercase hex digest of everything fed so far."""
        return self._hash.hexdigest()

    def matches(self, expected: str) -> bool:
        """
        Compare the computed digest against an expected hex digest.

        The comparison is case-insensitive on the expected value; the
        computed digest is always lowercase hex.
        """
        actual = self.hexdigest()
        ok = actual == expected.strip().lower()
        if not ok:
            logger.debug(
                "Digest mismatch: expected %s, got %s (%d bytes)",
                expected[:16],
                actual[:16],
                self.bytes_seen,
            )
        return ok
