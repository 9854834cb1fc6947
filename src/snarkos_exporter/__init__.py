"""Prometheus exporter for a snarkOS node's getnodestate RPC."""

__version__ = "1.0.0"
