"""
Synthetic load generator for DHCPv4 servers.

A fixed pool of workers repeatedly runs the DISCOVER/OFFER/REQUEST/ACK/RELEASE
exchange from freshly generated hardware addresses, gated by one shared token
bucket, and records counters and per-phase latency for Prometheus scraping.
"""

from .main import main

__all__ = ["main"]
