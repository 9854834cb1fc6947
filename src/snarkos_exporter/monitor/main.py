#!/usr/bin/env python3
"""
snarkOS Exporter - Main

Parses flags/environment, wires the RPC client, gauge registry and scrape
handler together, and serves /metrics until SIGINT/SIGTERM.
"""

import argparse
import logging
import os
import signal
import sys
import threading
from dataclasses import dataclass
from typing import List, Optional, Tuple

from dotenv import load_dotenv

from snarkos_exporter.clients.rpc_client import NodeRPCClient
from snarkos_exporter.exporters.node_state_exporter import NodeStateExporterServer, NodeStateMetrics
from snarkos_exporter.handlers.node_state_handler import DEFAULT_SELF_PEER_PREFIX, NodeStateHandler


logger = logging.getLogger(__name__)


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off")


@dataclass
class ExporterConfig:
    """Exporter configuration (flags override environment variables)"""
    rpc_address: str = "http://127.0.0.1:3032"
    listen_host: str = ""
    listen_port: int = 9090
    log_level: str = "INFO"
    namespace: str = ""
    self_peer_prefix: str = DEFAULT_SELF_PEER_PREFIX
    process_metrics: bool = True

    @property
    def metrics_url(self) -> str:
        return f"http://{self.listen_host or '0.0.0.0'}:{self.listen_port}/metrics"


def parse_listen_address(value: str) -> Tuple[str, int]:
    """
    Parse a listen address into (host, port)

    Examples:
        - ":9090" -> ("", 9090)
        - "0.0.0.0:9090" -> ("0.0.0.0", 9090)
        - "9090" -> ("", 9090)

    Raises:
        ValueError: If the port is missing, not a number or out of range
    """
    host, sep, port_str = value.strip().rpartition(':')
    if not sep:
        host, port_str = "", value.strip()

    port = int(port_str)
    if not 0 <= port <= 65535:
        raise ValueError(f"port out of range: {port}")
    return host, port


def _listen_address(value: str) -> Tuple[str, int]:
    try:
        return parse_listen_address(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid listen address {value!r}: {e}")


def _env_flag(name: str, default: bool) -> bool:
    """
    Read a boolean environment variable

    Raises:
        ValueError: If the value is not one of the known true/false spellings
    """
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    value = value.strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be one of {TRUE_VALUES + FALSE_VALUES}, got {value!r}")


def parse_args(argv: Optional[List[str]] = None) -> ExporterConfig:
    """Build the exporter configuration from environment defaults and CLI flags"""
    parser = argparse.ArgumentParser(
        prog="snarkos-exporter",
        description="Prometheus exporter for a snarkOS node's getnodestate RPC",
    )
    parser.add_argument(
        "--rpc-address",
        default=os.getenv("RPC_ADDRESS", "http://127.0.0.1:3032"),
        help="The address of RPC server. (env: RPC_ADDRESS)",
    )
    parser.add_argument(
        "--port",
        type=_listen_address,
        default=os.getenv("LISTEN_ADDRESS", ":9090"),
        help="The address to listen for metrics server. (env: LISTEN_ADDRESS)",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
        help="Logging level. (env: LOG_LEVEL)",
    )
    parser.add_argument(
        "--namespace",
        default=os.getenv("METRICS_NAMESPACE", ""),
        help="Optional prefix for metric names. (env: METRICS_NAMESPACE)",
    )
    parser.add_argument(
        "--self-peer-prefix",
        default=os.getenv("SELF_PEER_PREFIX", DEFAULT_SELF_PEER_PREFIX),
        help="Peer address prefix counted as self peers. (env: SELF_PEER_PREFIX)",
    )
    try:
        process_metrics_default = _env_flag("PROCESS_METRICS", True)
    except ValueError as e:
        parser.error(str(e))
    parser.add_argument(
        "--no-process-metrics",
        dest="process_metrics",
        action="store_false",
        default=process_metrics_default,
        help="Do not expose process/platform/GC metrics. (env: PROCESS_METRICS=false)",
    )
    args = parser.parse_args(argv)

    listen_host, listen_port = args.port

    return ExporterConfig(
        rpc_address=args.rpc_address,
        listen_host=listen_host,
        listen_port=listen_port,
        log_level=args.log_level,
        namespace=args.namespace,
        self_peer_prefix=args.self_peer_prefix,
        process_metrics=args.process_metrics,
    )


def setup_logging(log_level: str):
    """Configure root logging to stdout"""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def build_server(config: ExporterConfig, rpc_client: NodeRPCClient) -> NodeStateExporterServer:
    """
    Wire metrics registry, scrape handler and HTTP server

    Raises:
        OSError: If the listen address cannot be bound
    """
    metrics = NodeStateMetrics(namespace=config.namespace, process_metrics=config.process_metrics)
    handler = NodeStateHandler(rpc_client, metrics, self_peer_prefix=config.self_peer_prefix)
    return NodeStateExporterServer((config.listen_host, config.listen_port), handler, metrics)


def run(config: ExporterConfig) -> int:
    """
    Serve metrics until interrupted

    Returns:
        Process exit code
    """
    with NodeRPCClient(config.rpc_address) as rpc_client:
        try:
            server = build_server(config, rpc_client)
        except OSError as e:
            logger.error(f"Failed to bind {config.listen_host or '*'}:{config.listen_port}: {e}")
            return 1

        def signal_handler(signum, frame):
            """Handle shutdown signals (SIGINT, SIGTERM)"""
            logger.info(f"Received signal {signum}, initiating graceful shutdown...")
            # shutdown() blocks until serve_forever() returns, so not on this thread
            threading.Thread(target=server.shutdown, daemon=True).start()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        logger.info(f"Starting server at {config.listen_host or '*'}:{config.listen_port}")
        logger.info(f"Prometheus metrics available at {config.metrics_url}")

        try:
            server.serve_forever()
        finally:
            server.server_close()

    logger.info("Shutdown complete")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    load_dotenv()
    config = parse_args(argv)
    setup_logging(config.log_level)

    logger.info("=" * 70)
    logger.info("snarkOS Node State Exporter")
    logger.info("=" * 70)
    logger.info(f"Configuration: {config}")

    return run(config)


if __name__ == "__main__":
    sys.exit(main())
