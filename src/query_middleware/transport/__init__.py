"""Transports for the query middleware.

This package provides the transport protocol the middleware issues network
calls through, and the httpx-based implementation.

Available Transports:
    - HttpxTransport: HTTP over a shared httpx.AsyncClient
"""

from query_middleware.transport.base import NetworkHandle, Transport
from query_middleware.transport.http import HttpxHandle, HttpxTransport

__all__ = [
    "NetworkHandle",
    "Transport",
    "HttpxHandle",
    "HttpxTransport",
]
