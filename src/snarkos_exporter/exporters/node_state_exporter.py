#!/usr/bin/env python3
"""
Node State Exporter for snarkOS

Serves /metrics on demand: every scrape calls the node's getnodestate RPC,
updates seven gauges, and returns the Prometheus exposition. Nothing is polled
in the background.

Endpoints:
- /metrics  Scrape upstream and render (502 with empty body if the scrape fails)
- /health   Liveness check, does not contact the node
"""

import logging
import threading
from dataclasses import asdict, dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import TYPE_CHECKING, Dict, Tuple
from urllib.parse import urlparse

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    GCCollector,
    Gauge,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

if TYPE_CHECKING:
    from snarkos_exporter.handlers.node_state_handler import NodeStateHandler


logger = logging.getLogger(__name__)


# Metric name -> help text
GAUGE_DEFINITIONS: Dict[str, str] = {
    'current_block': 'Latest Block known by node.',
    'current_cumulative_weight': 'Latest Cumulative Weight known by node.',
    'status': 'Status: PEERING=1, SYNCING=2, READY=3, MINING=4, UNKNOWN=5',
    'connected_peers': 'Current connected peers',
    'self_connected_peers': 'Current connected self peers',
    'candidate_peers': 'Current candidate peers',
    'connected_sync_nodes': 'Current connected sync nodes',
}


@dataclass(frozen=True)
class GaugeSet:
    """Values for all seven gauges, taken from one NodeStateResult"""
    current_block: float
    current_cumulative_weight: float
    status: float
    connected_peers: float
    self_connected_peers: float
    candidate_peers: float
    connected_sync_nodes: float


class NodeStateMetrics:
    """
    Registry holding the node state gauges

    Each instance owns its own CollectorRegistry, so tests (and multiple
    exporters in one process) never share gauge state.

    apply() and render() take the same lock: a render sees either all seven
    values of a scrape or none of them.
    """

    def __init__(self, namespace: str = "", process_metrics: bool = True):
        """
        Initialize and register all gauges (each starts at 0)

        Args:
            namespace: Optional metric name prefix (e.g. 'snarkos' -> snarkos_current_block)
            process_metrics: Also expose process/platform/GC metrics from prometheus_client
        """
        self.namespace = namespace
        self.registry = CollectorRegistry()
        self._lock = threading.Lock()
        self._gauges: Dict[str, Gauge] = {
            name: Gauge(name, help_text, namespace=namespace, registry=self.registry)
            for name, help_text in GAUGE_DEFINITIONS.items()
        }

        if process_metrics:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)
            GCCollector(registry=self.registry)

        logger.debug(f"Registered {len(self._gauges)} node state gauges (namespace={namespace!r})")

    def set(self, name: str, value: float):
        """Set a single gauge. Raises KeyError for an unknown metric name."""
        gauge = self._gauges[name]
        with self._lock:
            gauge.set(value)

    def apply(self, gauge_set: GaugeSet):
        """Overwrite all gauges from one scrape"""
        values = asdict(gauge_set)
        with self._lock:
            for name, value in values.items():
                self._gauges[name].set(value)

    def get(self, name: str) -> float:
        """Current value of a gauge. Raises KeyError for an unknown metric name."""
        if name not in self._gauges:
            raise KeyError(name)
        full_name = f"{self.namespace}_{name}" if self.namespace else name
        return self.registry.get_sample_value(full_name)

    def render(self) -> bytes:
        """Serialize the registry in Prometheus text exposition format"""
        with self._lock:
            return generate_latest(self.registry)


class MetricsHandler(BaseHTTPRequestHandler):
    """HTTP handler for /metrics and /health"""

    server: "NodeStateExporterServer"

    def log_message(self, format, *args):
        """Route per-request access logs to DEBUG (too noisy otherwise)"""
        logger.debug(f"{self.address_string()} - {format % args}")

    def do_GET(self):
        """Handle GET requests"""
        self.route()

    def do_POST(self):
        """Scrapers normally GET, but /metrics answers POST the same way"""
        self.route()

    def route(self):
        path = urlparse(self.path).path

        if path == '/metrics':
            self.serve_metrics()
        elif path == '/health' or path == '/':
            self.serve_health()
        else:
            self.send_error(404, "Not Found")

    def serve_health(self):
        """Serve health check endpoint"""
        body = b'OK\n'
        self.send_response(200)
        self.send_header('Content-Type', 'text/plain')
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def serve_metrics(self):
        """Run one scrape and serve the exposition, or 502 with no body"""
        failure = self.server.node_state_handler.scrape()

        if failure is not None:
            self.send_response(502)
            self.send_header('Content-Length', '0')
            self.end_headers()
            return

        body = self.server.metrics.render()
        self.send_response(200)
        self.send_header('Content-Type', CONTENT_TYPE_LATEST)
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)


class NodeStateExporterServer(ThreadingHTTPServer):
    """
    Threaded HTTP server carrying the scrape pipeline

    Each request runs on its own thread, so concurrent scrapes can each
    be waiting on the upstream node at the same time.
    """

    daemon_threads = True

    def __init__(
        self,
        server_address: Tuple[str, int],
        node_state_handler: "NodeStateHandler",
        metrics: NodeStateMetrics,
    ):
        self.node_state_handler = node_state_handler
        self.metrics = metrics
        super().__init__(server_address, MetricsHandler)

    def handle_error(self, request, client_address):
        logger.error(f"Unhandled error serving {client_address}", exc_info=True)
