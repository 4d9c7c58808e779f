"""Upstream websocket clients."""

from tickapp.clients.deriv_ws import ConnectionState, DerivConnection, DerivListener
from tickapp.clients.errors import NoConnectionError, PoolError, RequestTimeoutError, UpstreamError
from tickapp.clients.pool import ConnectionPool

__all__ = [
    "ConnectionPool",
    "ConnectionState",
    "DerivConnection",
    "DerivListener",
    "NoConnectionError",
    "PoolError",
    "RequestTimeoutError",
    "UpstreamError",
]
