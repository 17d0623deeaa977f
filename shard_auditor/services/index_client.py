"""
index_client.py — Contract Index Client
==========================================
HTTP client for the contract/shard index service. Looks up node
contact records and enumerates the shards a node is currently
contracted to hold.

Enumeration is keyset-paged by shard hash, so the cursor position is
just "the last hash seen": pausing between pages never skips or
duplicates a shard.
"""

import logging
import secrets
from typing import AsyncIterator, Optional

import httpx
from pydantic import ValidationError

from shard_auditor.core.errors import ContactNotFoundError, IndexQueryError
from shard_auditor.core.models import Contact, ShardDescriptor, now_ms

logger = logging.getLogger(__name__)

SAMPLE_EXHAUSTIVE = "exhaustive"
SAMPLE_RANDOM = "sampled"
SAMPLE_MODES = (SAMPLE_EXHAUSTIVE, SAMPLE_RANDOM)


def start_offset(mode: str, digest_size: int) -> Optional[str]:
    """
    Starting hash for shard enumeration.

    "exhaustive" starts at the lowest hash and visits every matching
    shard. "sampled" starts at a random hash and only visits shards at
    or above it, so each run checks a random tail of the hash space.

    Raises:
        ValueError: For an unknown mode.
    """
    if mode == SAMPLE_EXHAUSTIVE:
        return None
    if mode == SAMPLE_RANDOM:
        return secrets.token_hex(digest_size)
    raise ValueError(f"Unknown sample mode {mode!r}, expected one of {SAMPLE_MODES}")


class ShardIndexClient:
    """
    Client for the contract index REST API.

    Endpoints used:
        GET /contacts/{node_id}  — Contact record for a node
        GET /shards              — Page of shards contracted to a node
    """

    def __init__(
        self,
        index_url: str,
        timeout: float = 10,
        page_size: int = 100,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the index client.

        Args:
            index_url: Base URL of the contract index service.
            timeout: Per-request timeout in seconds.
            page_size: Shards requested per page.
            transport: Optional httpx transport (used by tests).
        """
        if page_size <= 0:
            raise ValueError("Page size must be a positive integer")
        self.index_url = index_url.rstrip("/")
        self.timeout = timeout
        self.page_size = page_size
        self._transport = transport
        logger.info("ShardIndexClient initialized with index at %s", self.index_url)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def find_contact(self, node_id: str) -> Contact:
        """
        Look up the contact record for a node.

        Raises:
            ContactNotFoundError: If the node is unknown or the lookup fails.
        """
        try:
            async with self._client() as client:
                response = await client.get(f"{self.index_url}/contacts/{node_id}")
                if response.status_code == 404:
                    raise ContactNotFoundError(node_id)
                response.raise_for_status()
                contact = Contact.model_validate(response.json())
        except httpx.HTTPError as e:
            raise ContactNotFoundError(node_id, f"contact lookup failed ({e})") from e
        except (ValueError, ValidationError) as e:
            raise ContactNotFoundError(node_id, f"malformed contact ({e})") from e

        logger.debug("Found contact for %s at %s", node_id, contact.base_url)
        return contact

    async def _fetch_page(self, params: dict) -> list:
        try:
            async with self._client() as client:
                response = await client.get(f"{self.index_url}/shards", params=params)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            raise IndexQueryError(f"Shard index query failed: {e}") from e
        except ValueError as e:
            raise IndexQueryError(f"Shard index returned invalid JSON: {e}") from e

        shards = body.get("shards") if isinstance(body, dict) else None
        if not isinstance(shards, list):
            raise IndexQueryError("Shard index response has no 'shards' list")
        return shards

    async def enumerate_shards(
        self, node_id: str, start_hash: Optional[str] = None
    ) -> AsyncIterator[ShardDescriptor]:
        """
        Lazily yield every shard with an unexpired contract naming the node.

        Pages are only requested when the consumer asks for the next
        shard, so a consumer that stops pulling also stops the cursor.

        Args:
            node_id: Node whose contracted shards are enumerated.
            start_hash: Optional lowest shard hash to start from.

        Raises:
            IndexQueryError: If a page cannot be fetched or parsed.
        """
        cutoff = now_ms()
        params = {
            "node_id": node_id,
            "store_end_gte": cutoff,
            "limit": self.page_size,
        }
        if start_hash:
            params["hash_gte"] = start_hash

        pages = 0
        while True:
            raw_shards = await self._fetch_page(params)
            pages += 1

            for raw in raw_shards:
                try:
                    shard = ShardDescriptor.model_validate(raw)
                except ValidationError as e:
                    raise IndexQueryError(f"Malformed shard record: {e}") from e

                contract = shard.contract_for(node_id)
                if contract is None or not contract.is_active(cutoff):
                    logger.debug(
                        "Skipping shard %s: no active contract for %s",
                        shard.hash[:16],
                        node_id,
                    )
                else:
                    yield shard
                params["hash_gt"] = shard.hash

            # The server may cap a page below the requested limit; only an
            # empty page ends the cursor.
            if not raw_shards:
                break
            params.pop("hash_gte", None)

        logger.debug("Enumerated %d page(s) of shards for %s", pages, node_id)
