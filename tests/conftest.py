"""
conftest.py — Shared Test Fixtures
=====================================
An in-memory stand-in for the contract index, the bridge and the
storage nodes, served through httpx.MockTransport.
"""

import asyncio
import hashlib
import json
import os
from typing import Dict, List, Optional, Set, Tuple

import httpx
import pytest

from shard_auditor.config import Settings

INDEX_URL = "http://index.test"
BRIDGE_URL = "http://bridge.test"

NODE_A = "8046d7daaa9f9c18c0dd12ddfa2a0f88edf1b17d"
NODE_B = "1f0e3dad99908345f7439f8ffabdffc4d4a1b3c2"
NODE_C = "a94a8fe5ccb19ba61c4c0873d391e987982fbbd3"

FAR_FUTURE = 4_102_444_800_000   # 2100-01-01
LONG_AGO = 946_684_800_000       # 2000-01-01


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in chunks, optionally slow or failing."""

    def __init__(self, data: bytes, chunk_size: int = 1024,
                 delay: float = 0, fail_after: Optional[int] = None):
        self.data = data
        self.chunk_size = chunk_size
        self.delay = delay
        self.fail_after = fail_after

    async def __aiter__(self):
        for i, offset in enumerate(range(0, len(self.data), self.chunk_size)):
            if self.fail_after is not None and i >= self.fail_after:
                raise httpx.ReadError("connection reset by peer")
            if self.delay:
                await asyncio.sleep(self.delay)
            yield self.data[offset: offset + self.chunk_size]


class FakeNetwork:
    """
    Routes requests to the fake index, bridge and nodes.

    Shards are added with add_shard(); each node serves the bytes
    registered for it (which may differ from the shard's true content).
    """

    def __init__(self):
        self.contacts: Dict[str, dict] = {}
        self.shards: Dict[str, dict] = {}
        self.served: Dict[Tuple[str, str], bytes] = {}
        self.no_token: Set[str] = set()
        self.bridge_errors: Set[str] = set()
        self.broken_streams: Set[str] = set()
        self.stream_delay: float = 0
        self.index_fail_after_pages: Optional[int] = None
        self.index_max_limit: Optional[int] = None
        self.requests: List[httpx.Request] = []
        self.pointer_requests: List[dict] = []
        self._index_pages = 0

    # ── setup ──────────────────────────────────────────────

    def add_node(self, node_id: str, port: int = 4000) -> None:
        self.contacts[node_id] = {
            "node_id": node_id,
            "address": f"{node_id[:8]}.node.test",
            "port": port,
            "protocol": "1.2.0",
        }

    def add_shard(self, data: bytes, node_ids: List[str],
                  store_end: int = FAR_FUTURE, served: Optional[bytes] = None) -> str:
        digest = hashlib.sha256(data).hexdigest()
        shard = self.shards.setdefault(digest, {"hash": digest, "contracts": []})
        for node_id in node_ids:
            shard["contracts"].append({
                "node_id": node_id,
                "data_hash": digest,
                "store_begin": LONG_AGO,
                "store_end": store_end,
            })
            self.served[(node_id, digest)] = data if served is None else served
        return digest

    def add_random_shards(self, node_id: str, count: int, size: int = 2048) -> List[str]:
        return [self.add_shard(os.urandom(size), [node_id]) for _ in range(count)]

    # ── routing ────────────────────────────────────────────

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host == "index.test":
            return self._index(request)
        if host == "bridge.test":
            return self._bridge(request)
        if host.endswith(".node.test"):
            return self._node(request)
        return httpx.Response(502)

    def _index(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith("/contacts/"):
            node_id = path.rsplit("/", 1)[-1]
            if node_id not in self.contacts:
                return httpx.Response(404, json={"detail": "not found"})
            return httpx.Response(200, json=self.contacts[node_id])

        if path == "/shards":
            self._index_pages += 1
            if (self.index_fail_after_pages is not None
                    and self._index_pages > self.index_fail_after_pages):
                return httpx.Response(503, json={"detail": "index unavailable"})
            params = request.url.params
            node_id = params["node_id"]
            cutoff = int(params["store_end_gte"])
            limit = int(params["limit"])
            if self.index_max_limit is not None:
                limit = min(limit, self.index_max_limit)
            matching = sorted(
                (s for s in self.shards.values()
                 if any(c["node_id"] == node_id and c["store_end"] >= cutoff
                        for c in s["contracts"])),
                key=lambda s: s["hash"],
            )
            if "hash_gte" in params:
                matching = [s for s in matching if s["hash"] >= params["hash_gte"]]
            if "hash_gt" in params:
                matching = [s for s in matching if s["hash"] > params["hash_gt"]]
            return httpx.Response(200, json={"shards": matching[:limit]})

        return httpx.Response(404)

    def _bridge(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.pointer_requests.append(body)
        shard_hash = body["contract"]["data_hash"]
        if shard_hash in self.bridge_errors:
            return httpx.Response(500, json={"detail": "farmer did not respond"})
        if shard_hash in self.no_token:
            return httpx.Response(200, json={"token": None})
        node_id = body["contact"]["node_id"]
        return httpx.Response(200, json={"token": f"tok-{node_id[:6]}-{shard_hash[:8]}"})

    def _node(self, request: httpx.Request) -> httpx.Response:
        shard_hash = request.url.path.rsplit("/", 1)[-1]
        token = request.url.params.get("token", "")
        node_id = next(
            (nid for nid, c in self.contacts.items() if c["address"] == request.url.host),
            None,
        )
        if not token.startswith("tok-"):
            return httpx.Response(401)
        data = self.served.get((node_id, shard_hash))
        if data is None:
            return httpx.Response(404)
        fail_after = 1 if shard_hash in self.broken_streams else None
        return httpx.Response(
            200,
            stream=ChunkedStream(data, delay=self.stream_delay, fail_after=fail_after),
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def network():
    """Fake network with three known nodes."""
    net = FakeNetwork()
    for i, node_id in enumerate((NODE_A, NODE_B, NODE_C)):
        net.add_node(node_id, port=4000 + i)
    return net


@pytest.fixture
def audit_settings(tmp_path):
    """Settings pointing at the fake network and a temporary data dir."""
    cfg = Settings()
    cfg.DATA_DIR = str(tmp_path / "data")
    cfg.INDEX_URL = INDEX_URL
    cfg.BRIDGE_URL = BRIDGE_URL
    cfg.BRIDGE_USER = None
    cfg.NODE_CONCURRENCY = 4
    cfg.SHARD_CONCURRENCY = 3
    cfg.INDEX_PAGE_SIZE = 4
    cfg.NEGOTIATION_TIMEOUT = 5
    cfg.TRANSFER_TIMEOUT = 5
    cfg.SAMPLE_MODE = "exhaustive"
    cfg.DIGEST_ALGORITHM = "sha256"
    return cfg
