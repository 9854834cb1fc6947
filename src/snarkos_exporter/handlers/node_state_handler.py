#!/usr/bin/env python3
"""
Node State Handler

Maps a decoded getnodestate result onto the exporter gauges and drives the
per-scrape pipeline: fetch -> decode -> map -> apply.
"""

import logging
from typing import Iterable, Optional

from snarkos_exporter.clients.rpc_client import (
    NodeRPCClient,
    NodeStateResult,
    ScrapeFailure,
    decode_node_state,
)
from snarkos_exporter.exporters.node_state_exporter import GaugeSet, NodeStateMetrics


logger = logging.getLogger(__name__)


# Status value mapping (case-sensitive, exact match)
# 5 = UNKNOWN (any other value, including empty)
STATUS_VALUES = {
    'Peering': 1,
    'Syncing': 2,
    'Ready': 3,
    'Mining': 4,
}
UNKNOWN_STATUS_VALUE = 5

# Peers on this private range are our own nodes
DEFAULT_SELF_PEER_PREFIX = "172.16."


def classify_status(status: str) -> float:
    """Numeric gauge value for a node status string"""
    return float(STATUS_VALUES.get(status, UNKNOWN_STATUS_VALUE))


def count_self_peers(connected_peers: Iterable[str], prefix: str = DEFAULT_SELF_PEER_PREFIX) -> float:
    """Count peers whose address starts with the self-peer prefix (literal, no CIDR)"""
    return float(sum(1 for peer in connected_peers if peer.startswith(prefix)))


def map_node_state(result: NodeStateResult, self_peer_prefix: str = DEFAULT_SELF_PEER_PREFIX) -> GaugeSet:
    """
    Convert a node state snapshot into gauge values

    Args:
        result: Decoded getnodestate result
        self_peer_prefix: Address prefix that marks a connected peer as one of ours

    Returns:
        GaugeSet with all seven values
    """
    return GaugeSet(
        current_block=float(result.latest_block_height),
        current_cumulative_weight=float(result.latest_cumulative_weight),
        status=classify_status(result.status),
        connected_peers=float(result.number_of_connected_peers),
        self_connected_peers=count_self_peers(result.connected_peers, self_peer_prefix),
        candidate_peers=float(result.number_of_candidate_peers),
        connected_sync_nodes=float(result.number_of_connected_sync_nodes),
    )


class NodeStateHandler:
    """
    Runs one scrape against the node and updates the gauges

    Either all seven gauges are updated from one snapshot, or (on any failure)
    none are and the previous values stay in place.
    """

    def __init__(
        self,
        rpc_client: NodeRPCClient,
        metrics: NodeStateMetrics,
        self_peer_prefix: str = DEFAULT_SELF_PEER_PREFIX,
    ):
        """
        Initialize node state handler

        Args:
            rpc_client: Client for the node's JSON-RPC endpoint
            metrics: Registry the gauges are written to
            self_peer_prefix: Address prefix counted as self peers
        """
        self.rpc_client = rpc_client
        self.metrics = metrics
        self.self_peer_prefix = self_peer_prefix

    def scrape(self) -> Optional[ScrapeFailure]:
        """
        Fetch, decode and map the node state

        Returns:
            None on success, otherwise the ScrapeFailure of the first failed stage
        """
        body = self.rpc_client.fetch_node_state()
        if isinstance(body, ScrapeFailure):
            logger.error(f"Error getting node state from {self.rpc_client.url}: {body.message}")
            return body

        result = decode_node_state(body)
        if isinstance(result, ScrapeFailure):
            logger.error(f"Unable to decode node state from {self.rpc_client.url}: {result.message}")
            return result

        gauge_set = map_node_state(result, self.self_peer_prefix)
        self.metrics.apply(gauge_set)

        logger.debug(
            f"Scraped node state: status={result.status!r}, "
            f"block={result.latest_block_height}, "
            f"peers={result.number_of_connected_peers} "
            f"(self={int(gauge_set.self_connected_peers)})"
        )
        return None
