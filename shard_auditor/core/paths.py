"""
paths.py — Shard Store Path Resolver
=======================================
Maps a shard's expected digest to its location on the local
filesystem. Shards are content-addressed by the digest they are
*supposed* to have, under two levels of two-hex-character
directories to bound directory fan-out:

    <root>/<digest[0:2]>/<digest[2:4]>/<digest>
"""

import logging
import string
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

_HEX = frozenset(string.hexdigits.lower())


def normalize_digest(digest: str) -> str:
    """
    Lowercase a hex digest and check it can be used as a path.

    Raises:
        ValueError: If the digest is shorter than 4 characters or not hex.
    """
    if not isinstance(digest, str):
        raise ValueError(f"Digest must be a string, got {type(digest).__name__}")
    value = digest.strip().lower()
    if len(value) < 4 or not set(value) <= _HEX:
        raise ValueError(f"Invalid shard digest: {digest!r}")
    return value


def shard_path(root: Union[str, Path], digest: str) -> Path:
    """Resolve the local path for a shard without touching the filesystem."""
    value = normalize_digest(digest)
    return Path(root) / value[0:2] / value[2:4] / value


def ensure_shard_path(root: Union[str, Path], digest: str) -> Path:
    """Resolve the local path for a shard, creating parent directories."""
    path = shard_path(root, digest)
    path.parent.mkdir(parents=True, exist_ok=True)
    logger.debug("Shard %s -> %s", path.name[:16], path)
    return path
