import threading

import httpx
import pytest

from snarkos_exporter.clients.rpc_client import NodeRPCClient
from snarkos_exporter.exporters.node_state_exporter import NodeStateExporterServer, NodeStateMetrics
from snarkos_exporter.handlers.node_state_handler import NodeStateHandler


RPC_URL = "http://node.test:3032"


def node_state_payload(**overrides):
    result = {
        "status": "Ready",
        "latest_block_height": 100,
        "latest_cumulative_weight": 123456789,
        "number_of_connected_peers": 2,
        "number_of_candidate_peers": 7,
        "number_of_connected_sync_nodes": 1,
        "connected_peers": ["172.16.0.5", "10.0.0.9"],
    }
    result.update(overrides)
    return {"jsonrpc": "2.0", "id": "documentation", "result": result}


class FakeNode:
    """Scriptable upstream node behind an httpx.MockTransport"""

    def __init__(self):
        self.requests = []
        self.respond_with(node_state_payload())

    def respond_with(self, payload=None, status_code=200, content=None):
        if content is None:
            self._response = lambda request: httpx.Response(status_code, json=payload)
        else:
            self._response = lambda request: httpx.Response(status_code, content=content)

    def go_down(self):
        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)
        self._response = refuse

    def __call__(self, request):
        self.requests.append(request)
        return self._response(request)


@pytest.fixture
def fake_node():
    return FakeNode()


@pytest.fixture
def rpc_client(fake_node):
    client = httpx.Client(transport=httpx.MockTransport(fake_node))
    yield NodeRPCClient(RPC_URL, client=client)
    client.close()


@pytest.fixture
def metrics():
    return NodeStateMetrics(process_metrics=False)


@pytest.fixture
def node_state_handler(rpc_client, metrics):
    return NodeStateHandler(rpc_client, metrics)


@pytest.fixture
def exporter_url(node_state_handler, metrics):
    server = NodeStateExporterServer(("127.0.0.1", 0), node_state_handler, metrics)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    yield f"http://{host}:{port}"
    server.shutdown()
    server.server_close()
    thread.join(timeout=5)


@pytest.fixture
def http(exporter_url):
    # trust_env=False: ignore any HTTP(S)_PROXY set in the environment
    with httpx.Client(base_url=exporter_url, trust_env=False) as client:
        yield client
