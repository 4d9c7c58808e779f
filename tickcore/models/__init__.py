"""Domain models shared by analyzers, staking and execution."""

from tickcore.models.tick import DigitHistory, Tick, extract_digit
from tickcore.models.signal import (
    Confidence,
    Signal,
    SignalStatus,
    SignalType,
    confidence_band,
)
from tickcore.models.trade import (
    AutoTraderSettings,
    ExecutionResult,
    RiskMode,
    SessionStats,
    StakeSettings,
    TradeRecord,
    TradeStatus,
)
from tickcore.models.connection import (
    ConnectionQuality,
    ConnectionStatus,
    PoolStatus,
)

__all__ = [
    "Tick",
    "DigitHistory",
    "extract_digit",
    "Signal",
    "SignalType",
    "SignalStatus",
    "Confidence",
    "confidence_band",
    "TradeRecord",
    "TradeStatus",
    "SessionStats",
    "StakeSettings",
    "ExecutionResult",
    "AutoTraderSettings",
    "RiskMode",
    "ConnectionQuality",
    "ConnectionStatus",
    "PoolStatus",
]
