"""
retrieval.py — Retrieval Client
==================================
Negotiates retrieval pointers with the bridge and streams shard
bytes from storage nodes.

    POST {bridge}/pointers                      — pointer for (contact, contract)
    GET  {node}/shards/{hash}?token={token}     — raw shard bytes
"""

import logging
from typing import AsyncIterator, Optional, Tuple

import httpx

from shard_auditor.core.errors import NegotiationError, TransferError
from shard_auditor.core.models import Contact, Contract, RetrievalPointer

logger = logging.getLogger(__name__)

# Bytes per read from the node's response stream
STREAM_CHUNK_SIZE = 65536


class RetrievalClient:
    """
    Client for pointer negotiation and shard download.
    """

    def __init__(
        self,
        bridge_url: str,
        negotiation_timeout: float = 30,
        auth: Optional[Tuple[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the retrieval client.

        Args:
            bridge_url: Base URL of the bridge that issues pointers.
            negotiation_timeout: Timeout in seconds for one negotiation.
            auth: Optional (user, password) for the bridge.
            transport: Optional httpx transport (used by tests).
        """
        self.bridge_url = bridge_url.rstrip("/")
        self.negotiation_timeout = negotiation_timeout
        self._auth = auth
        self._transport = transport
        logger.info("RetrievalClient initialized with bridge at %s", self.bridge_url)

    async def negotiate(self, contact: Contact, contract: Contract) -> RetrievalPointer:
        """
        Obtain a retrieval pointer for one shard on one node.

        A pointer without a token is a normal answer meaning the node
        cannot serve the shard right now.

        Raises:
            NegotiationError: On timeout, transport error, HTTP error or
                a malformed response.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.negotiation_timeout,
                auth=self._auth,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    f"{self.bridge_url}/pointers",
                    json={
                        "contact": contact.model_dump(),
                        "contract": contract.model_dump(),
                    },
                )
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException as e:
            raise NegotiationError(
                f"Pointer negotiation timed out for shard {contract.data_hash[:16]}"
            ) from e
        except httpx.HTTPError as e:
            raise NegotiationError(
                f"Pointer negotiation failed for shard {contract.data_hash[:16]}: {e}"
            ) from e
        except ValueError as e:
            raise NegotiationError(f"Bridge returned invalid JSON: {e}") from e

        if body is None:
            return RetrievalPointer()
        if not isinstance(body, dict):
            raise NegotiationError("Bridge returned a non-object pointer")
        token = body.get("token")
        if token is not None and not isinstance(token, str):
            raise NegotiationError("Bridge returned a non-string token")
        return RetrievalPointer(token=token)

    async def stream_shard(
        self, contact: Contact, shard_hash: str, token: str
    ) -> AsyncIterator[bytes]:
        """
        Stream a shard's bytes from a node.

        Raises:
            TransferError: On HTTP, URL or transport errors. No read timeout is
                applied here; callers bound the whole transfer.
        """
        url = f"{contact.base_url}/shards/{shard_hash}"
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(None), transport=self._transport
            ) as client:
                async with client.stream("GET", url, params={"token": token}) as response:
                    if response.status_code != 200:
                        raise TransferError(
                            f"Node {contact.node_id} answered {response.status_code} "
                            f"for shard {shard_hash[:16]}"
                        )
                    async for chunk in response.aiter_bytes(STREAM_CHUNK_SIZE):
                        yield chunk
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as e:
            raise TransferError(
                f"Transfer of shard {shard_hash[:16]} from {contact.node_id} failed: {e}"
            ) from e
