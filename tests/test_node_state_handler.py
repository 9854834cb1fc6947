import logging

import pytest

from snarkos_exporter.clients.rpc_client import FailureKind, NodeStateResult
from snarkos_exporter.exporters.node_state_exporter import GAUGE_DEFINITIONS, GaugeSet
from snarkos_exporter.handlers.node_state_handler import (
    NodeStateHandler,
    classify_status,
    count_self_peers,
    map_node_state,
)

from conftest import node_state_payload


@pytest.mark.parametrize(
    "status, expected",
    [
        ("Peering", 1.0),
        ("Syncing", 2.0),
        ("Ready", 3.0),
        ("Mining", 4.0),
    ],
)
def test_classify_known_status(status, expected):
    assert classify_status(status) == expected


@pytest.mark.parametrize("status", ["", "Bogus", "ready", "READY", " Ready", "Mining ", "Unknown"])
def test_classify_anything_else_is_unknown(status):
    assert classify_status(status) == 5.0


@pytest.mark.parametrize(
    "peers, expected",
    [
        ([], 0),
        (["172.16.0.5"], 1),
        (["172.16.0.5:4130", "172.16.255.1:4130", "10.0.0.9:4130"], 2),
        (["10.0.0.9", "192.168.1.4", "172.17.0.1"], 0),
        # literal prefix only: no CIDR math, no pattern wildcards
        (["172.160.0.1", "172.1x.0.1", "x172.16.0.1", "172.16"], 0),
    ],
)
def test_count_self_peers(peers, expected):
    assert count_self_peers(peers) == float(expected)


def test_count_self_peers_custom_prefix():
    assert count_self_peers(["10.1.0.1", "10.1.2.3", "172.16.0.1"], prefix="10.1.") == 2.0


def test_map_node_state():
    result = NodeStateResult(
        status="Mining",
        latest_block_height=2_345_678,
        latest_cumulative_weight=987_654_321_000,
        number_of_connected_peers=21,
        number_of_candidate_peers=40,
        number_of_connected_sync_nodes=3,
        connected_peers=("172.16.0.2", "172.16.0.3", "34.1.2.3"),
    )

    assert map_node_state(result) == GaugeSet(
        current_block=2_345_678.0,
        current_cumulative_weight=987_654_321_000.0,
        status=4.0,
        connected_peers=21.0,
        self_connected_peers=2.0,
        candidate_peers=40.0,
        connected_sync_nodes=3.0,
    )


def test_map_empty_result():
    gauges = map_node_state(NodeStateResult())

    assert gauges.status == 5.0
    assert gauges.current_block == 0.0
    assert gauges.self_connected_peers == 0.0


def test_scrape_updates_all_gauges(node_state_handler, metrics):
    assert node_state_handler.scrape() is None

    assert metrics.get("status") == 3.0
    assert metrics.get("current_block") == 100.0
    assert metrics.get("current_cumulative_weight") == 123456789.0
    assert metrics.get("connected_peers") == 2.0
    assert metrics.get("self_connected_peers") == 1.0
    assert metrics.get("candidate_peers") == 7.0
    assert metrics.get("connected_sync_nodes") == 1.0


def test_scrape_unknown_status(node_state_handler, metrics, fake_node):
    fake_node.respond_with(node_state_payload(status="Bogus"))

    assert node_state_handler.scrape() is None
    assert metrics.get("status") == 5.0


def test_scrape_empty_peer_list(node_state_handler, metrics, fake_node):
    fake_node.respond_with(node_state_payload(connected_peers=[]))

    node_state_handler.scrape()

    assert metrics.get("self_connected_peers") == 0.0


def test_scrape_overwrites_previous_values(node_state_handler, metrics, fake_node):
    node_state_handler.scrape()
    fake_node.respond_with(node_state_payload(latest_block_height=101, status="Syncing"))

    node_state_handler.scrape()

    assert metrics.get("current_block") == 101.0
    assert metrics.get("status") == 2.0


def _snapshot(metrics):
    return {name: metrics.get(name) for name in GAUGE_DEFINITIONS}


def test_fetch_failure_keeps_previous_values(node_state_handler, metrics, fake_node, caplog):
    node_state_handler.scrape()
    before = _snapshot(metrics)
    fake_node.go_down()

    with caplog.at_level(logging.ERROR):
        failure = node_state_handler.scrape()

    assert failure.kind is FailureKind.FETCH
    assert _snapshot(metrics) == before
    assert "Error getting node state" in caplog.text


def test_decode_failure_keeps_previous_values(node_state_handler, metrics, fake_node, caplog):
    node_state_handler.scrape()
    before = _snapshot(metrics)
    fake_node.respond_with(content=b"Service starting up")

    with caplog.at_level(logging.ERROR):
        failure = node_state_handler.scrape()

    assert failure.kind is FailureKind.DECODE
    assert _snapshot(metrics) == before
    assert "Unable to decode node state" in caplog.text


def test_partially_invalid_payload_updates_nothing(node_state_handler, metrics, fake_node):
    fake_node.respond_with(node_state_payload(latest_block_height=500, connected_peers=[1, 2]))

    failure = node_state_handler.scrape()

    assert failure.kind is FailureKind.DECODE
    assert all(value == 0.0 for value in _snapshot(metrics).values())


def test_failure_before_first_scrape_leaves_zeros(node_state_handler, metrics, fake_node):
    fake_node.go_down()

    node_state_handler.scrape()

    assert all(value == 0.0 for value in _snapshot(metrics).values())


def test_handler_uses_configured_prefix(rpc_client, metrics, fake_node):
    fake_node.respond_with(node_state_payload(connected_peers=["10.8.0.1", "10.8.0.2", "172.16.0.5"]))
    handler = NodeStateHandler(rpc_client, metrics, self_peer_prefix="10.8.")

    handler.scrape()

    assert metrics.get("self_connected_peers") == 2.0


def test_null_peer_entry_is_not_a_self_peer(node_state_handler, metrics, fake_node):
    fake_node.respond_with(node_state_payload(connected_peers=[None, "172.16.0.5"]))

    assert node_state_handler.scrape() is None
    assert metrics.get("self_connected_peers") == 1.0


@pytest.mark.parametrize("huge", [2**64, 10**400])
def test_oversized_integer_is_decode_failure(node_state_handler, metrics, fake_node, huge):
    node_state_handler.scrape()
    before = _snapshot(metrics)
    fake_node.respond_with(node_state_payload(latest_cumulative_weight=huge))

    failure = node_state_handler.scrape()

    assert failure.kind is FailureKind.DECODE
    assert _snapshot(metrics) == before
