"""Upstream connection status models."""

from enum import Enum

from pydantic import BaseModel


class ConnectionQuality(str, Enum):
    """Liveness quality of a single upstream connection."""

    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    POOR = "POOR"
    DISCONNECTED = "DISCONNECTED"


class PoolStatus(str, Enum):
    """Aggregate status across all pooled connections."""

    CONNECTED = "CONNECTED"
    DEGRADED = "DEGRADED"
    DISCONNECTED = "DISCONNECTED"


# Ranking used for best-connection selection (lower is better)
QUALITY_RANK = {
    ConnectionQuality.EXCELLENT: 0,
    ConnectionQuality.GOOD: 1,
    ConnectionQuality.POOR: 2,
    ConnectionQuality.DISCONNECTED: 3,
}


class ConnectionStatus(BaseModel):
    """Snapshot of one connection's health."""

    app_id: str
    is_connected: bool = False
    quality: ConnectionQuality = ConnectionQuality.DISCONNECTED
    tick_count: int = 0
    last_ping: float | None = None  # Clock seconds of the last pong
    reconnect_attempts: int = 0
    dormant: bool = False
