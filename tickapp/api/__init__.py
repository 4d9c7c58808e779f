"""API endpoints."""

from tickapp.api.routes import router
from tickapp.api.websocket import ConnectionManager, websocket_endpoint

__all__ = [
    "router",
    "websocket_endpoint",
    "ConnectionManager",
]
