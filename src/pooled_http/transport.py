"""
Per-route transports backing pooled connections
"""

import socket
from typing import Callable

import httpx

from .types import Route


# Builds the transport owned by one pooled connection
TransportFactory = Callable[[Route], httpx.BaseTransport]


def default_socket_options() -> list[tuple]:
    """
    cross platform socket options for TCP connections
    """
    opts = []

    if hasattr(socket, "TCP_NODELAY"):
        opts.append((socket.IPPROTO_TCP, socket.TCP_NODELAY, 1))

    if hasattr(socket, "SO_KEEPALIVE"):
        opts.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))

    if hasattr(socket, "TCP_KEEPIDLE"):
        opts.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, 60))

    return opts


def create_route_transport(route: Route) -> httpx.BaseTransport:
    """
    Create a transport holding at most one keep-alive socket to ``route``.

    The socket is opened lazily on the first request, so this is safe to call
    while holding the pool lock. Retries are left to the executor.
    """
    return httpx.HTTPTransport(
        limits=httpx.Limits(max_connections=1, max_keepalive_connections=1),
        retries=0,
        socket_options=default_socket_options(),
    )
