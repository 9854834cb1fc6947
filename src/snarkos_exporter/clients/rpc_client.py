#!/usr/bin/env python3
"""
snarkOS JSON-RPC Client

Blocking HTTP client for the node's `getnodestate` method, plus the decoder that
turns the JSON-RPC envelope into a typed NodeStateResult.

Neither stage raises on upstream problems: both return a ScrapeFailure so the
scrape pipeline can stop at the first failed stage.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

import httpx


logger = logging.getLogger(__name__)


# Pre-serialized request, sent unchanged on every scrape
NODE_STATE_REQUEST = b'{"jsonrpc":"2.0","id":"documentation","method":"getnodestate","params":[]}'

INT_FIELDS = (
    'latest_block_height',
    'latest_cumulative_weight',
    'number_of_connected_peers',
    'number_of_candidate_peers',
    'number_of_connected_sync_nodes',
)

# Go int on the node side; anything wider is not a valid count
INT64_MIN = -2**63
INT64_MAX = 2**63 - 1


class FailureKind(str, Enum):
    """Which pipeline stage failed"""
    FETCH = "fetch"
    DECODE = "decode"


@dataclass(frozen=True)
class ScrapeFailure:
    """Tagged failure returned (never raised) by the fetch and decode stages"""
    kind: FailureKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value} failed: {self.message}"


@dataclass(frozen=True)
class NodeStateResult:
    """
    One decoded snapshot of the node's state

    Attributes:
        status: Node status string (Peering, Syncing, Ready, Mining, or anything else)
        latest_block_height: Latest block known by the node
        latest_cumulative_weight: Latest cumulative weight known by the node
        number_of_connected_peers: Connected peer count reported by the node
        number_of_candidate_peers: Candidate peer count
        number_of_connected_sync_nodes: Connected sync node count
        connected_peers: Connected peer addresses, in the order returned
    """
    status: str = ""
    latest_block_height: int = 0
    latest_cumulative_weight: int = 0
    number_of_connected_peers: int = 0
    number_of_candidate_peers: int = 0
    number_of_connected_sync_nodes: int = 0
    connected_peers: Tuple[str, ...] = field(default_factory=tuple)


class NodeRPCClient:
    """
    Synchronous JSON-RPC client for a single snarkOS node

    One POST per call, no retries. Timeouts are the httpx defaults.

    Usage:
        with NodeRPCClient("http://127.0.0.1:3032") as client:
            body = client.fetch_node_state()
    """

    def __init__(self, url: str, client: Optional[httpx.Client] = None):
        """
        Initialize RPC client

        Args:
            url: JSON-RPC endpoint of the node (e.g. http://127.0.0.1:3032)
            client: Optional pre-built httpx.Client (tests inject a MockTransport here)
        """
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.Client()

        logger.info(f"RPC client initialized: url={self.url}")

    def fetch_node_state(self) -> Union[bytes, ScrapeFailure]:
        """
        Call getnodestate and return the raw response body

        Returns:
            Response bytes on a 2xx reply, otherwise a FETCH ScrapeFailure
            (connection error, non-2xx status or body read error)
        """
        try:
            response = self._client.post(
                self.url,
                content=NODE_STATE_REQUEST,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            return response.content
        except httpx.HTTPStatusError as e:
            return ScrapeFailure(
                FailureKind.FETCH,
                f"HTTP {e.response.status_code} from {self.url}",
            )
        except httpx.HTTPError as e:
            return ScrapeFailure(FailureKind.FETCH, f"{type(e).__name__} calling {self.url}: {e}")

    def close(self):
        """Close the underlying connection pool if this client created it"""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "NodeRPCClient":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def _decode_failure(message: str) -> ScrapeFailure:
    return ScrapeFailure(FailureKind.DECODE, message)


def decode_node_state(body: bytes) -> Union[NodeStateResult, ScrapeFailure]:
    """
    Decode a getnodestate JSON-RPC response

    Expected envelope:
    {
        "result": {
            "status": "Ready",
            "latest_block_height": 100,
            "latest_cumulative_weight": 5000,
            "number_of_connected_peers": 2,
            "number_of_candidate_peers": 10,
            "number_of_connected_sync_nodes": 1,
            "connected_peers": ["172.16.0.5:4130", "10.0.0.9:4130"]
        }
    }

    Missing or null fields decode to their zero value and unknown fields are
    ignored. A present field of the wrong JSON type fails the whole decode.
    Integers must fit in a signed 64-bit int, otherwise no range checks are
    done. A null entry inside connected_peers decodes to an empty string.

    Args:
        body: Raw response body

    Returns:
        NodeStateResult, or a DECODE ScrapeFailure
    """
    try:
        data = json.loads(body)
    except ValueError as e:
        return _decode_failure(f"invalid JSON: {e}")

    if not isinstance(data, dict):
        return _decode_failure(f"expected JSON object, got {type(data).__name__}")

    result = data.get('result')
    if not isinstance(result, dict):
        if data.get('error') is not None:
            return _decode_failure(f"RPC error: {data['error']}")
        return _decode_failure("response has no 'result' object")

    values: Dict[str, Any] = {}

    status = result.get('status')
    if status is not None:
        if not isinstance(status, str):
            return _decode_failure(f"'status' must be a string, got {type(status).__name__}")
        values['status'] = status

    for name in INT_FIELDS:
        value = result.get(name)
        if value is None:
            continue
        # bool is an int subclass; JSON true/false is not a count
        if isinstance(value, bool) or not isinstance(value, int):
            return _decode_failure(f"'{name}' must be an integer, got {type(value).__name__}")
        if not INT64_MIN <= value <= INT64_MAX:
            return _decode_failure(f"'{name}' out of 64-bit integer range: {value}")
        values[name] = value

    peers = result.get('connected_peers')
    if peers is not None:
        if not isinstance(peers, list) or not all(p is None or isinstance(p, str) for p in peers):
            return _decode_failure("'connected_peers' must be a list of strings")
        values['connected_peers'] = tuple(p or "" for p in peers)

    return NodeStateResult(**values)
