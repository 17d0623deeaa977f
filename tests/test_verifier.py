"""
test_verifier.py — Unit Tests for the Fetch-and-Verify Worker
================================================================
"""

import pytest
from shard_auditor.core.models import Contact, RetrievalPointer, ShardDescriptor
from shard_auditor.core.paths import shard_path
from shard_auditor.services.retrieval import RetrievalClient
from shard_auditor.services.verifier import ShardVerifier

from conftest import BRIDGE_URL, NODE_A, NODE_B


def make_verifier(network, shard_dir, timeout=5):
    retrieval = RetrievalClient(BRIDGE_URL, transport=network.transport())
    return ShardVerifier(str(shard_dir), retrieval, transfer_timeout=timeout)


def contact(network, node_id=NODE_A):
    return Contact.model_validate(network.contacts[node_id])


def descriptor(network, digest):
    return ShardDescriptor.model_validate(network.shards[digest])


TOKEN = RetrievalPointer(token="tok-test")


class TestShardVerifier:
    """Tests for streaming verification."""

    @pytest.mark.asyncio
    async def test_matching_bytes_verify(self, network, tmp_path):
        """Bytes that hash to the expected digest verify and are stored."""
        data = b"good shard " * 500
        digest = network.add_shard(data, [NODE_A])
        verifier = make_verifier(network, tmp_path)
        ok = await verifier.verify(contact(network), descriptor(network, digest), TOKEN)
        assert ok is True
        assert shard_path(tmp_path, digest).read_bytes() == data

    @pytest.mark.asyncio
    async def test_single_byte_alteration_fails(self, network, tmp_path):
        """One altered byte makes the shard fail and the bad bytes are kept."""
        data = bytearray(b"precious data " * 300)
        tampered = bytes(data[:100]) + bytes([data[100] ^ 0xFF]) + bytes(data[101:])
        digest = network.add_shard(bytes(data), [NODE_A], served=tampered)
        verifier = make_verifier(network, tmp_path)
        ok = await verifier.verify(contact(network), descriptor(network, digest), TOKEN)
        assert ok is False
        assert shard_path(tmp_path, digest).read_bytes() == tampered

    @pytest.mark.asyncio
    async def test_unusable_pointer(self, network, tmp_path):
        """A pointer without a token fails without touching the network."""
        digest = network.add_shard(b"unreachable", [NODE_A])
        verifier = make_verifier(network, tmp_path)
        ok = await verifier.verify(
            contact(network), descriptor(network, digest), RetrievalPointer(token=None)
        )
        assert ok is False
        assert network.requests == []

    @pytest.mark.asyncio
    async def test_stream_error(self, network, tmp_path):
        """A broken stream is a failed shard and leaves a local file."""
        digest = network.add_shard(b"q" * 8000, [NODE_A])
        network.broken_streams.add(digest)
        verifier = make_verifier(network, tmp_path)
        ok = await verifier.verify(contact(network), descriptor(network, digest), TOKEN)
        assert ok is False
        assert shard_path(tmp_path, digest).exists()

    @pytest.mark.asyncio
    async def test_http_error(self, network, tmp_path):
        """A node refusing the shard is a failed shard."""
        digest = network.add_shard(b"not on node b", [NODE_A])
        verifier = make_verifier(network, tmp_path)
        ok = await verifier.verify(
            contact(network, NODE_B), descriptor(network, digest), TOKEN
        )
        assert ok is False

    @pytest.mark.asyncio
    async def test_malformed_address(self, network, tmp_path):
        """An unusable contact address fails the shard instead of raising."""
        digest = network.add_shard(b"addressless", [NODE_A])
        bad = Contact(node_id=NODE_A, address="bad host\x00", port=4000)
        verifier = make_verifier(network, tmp_path)
        ok = await verifier.verify(bad, descriptor(network, digest), TOKEN)
        assert ok is False

    @pytest.mark.asyncio
    async def test_timeout(self, network, tmp_path):
        """A transfer exceeding its timeout is a failed shard."""
        digest = network.add_shard(b"s" * 4096, [NODE_A])
        network.stream_delay = 0.5
        verifier = make_verifier(network, tmp_path, timeout=0.05)
        ok = await verifier.verify(contact(network), descriptor(network, digest), TOKEN)
        assert ok is False

    @pytest.mark.asyncio
    async def test_same_path_for_any_node(self, network, tmp_path):
        """The stored path depends only on the digest."""
        data = b"replicated bytes"
        digest = network.add_shard(data, [NODE_A, NODE_B])
        verifier = make_verifier(network, tmp_path)
        shard = descriptor(network, digest)
        assert await verifier.verify(contact(network, NODE_A), shard, TOKEN)
        assert await verifier.verify(contact(network, NODE_B), shard, TOKEN)
        files = [p for p in tmp_path.rglob("*") if p.is_file()]
        assert files == [shard_path(tmp_path, digest)]

    def test_unknown_algorithm(self, network, tmp_path):
        retrieval = RetrievalClient(BRIDGE_URL, transport=network.transport())
        with pytest.raises(ValueError):
            ShardVerifier(str(tmp_path), retrieval, algorithm="nope")
