"""Monitoring agent — host/container sampling served over HTTP and SSE."""

__version__ = "0.1.0"
