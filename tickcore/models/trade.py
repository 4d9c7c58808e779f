"""Trade, session and settings models."""

from enum import Enum

from pydantic import BaseModel, Field

from tickcore.models.signal import Signal, SignalType


class TradeStatus(str, Enum):
    """Settlement status of a placed contract."""

    ACTIVE = "ACTIVE"
    WON = "WON"
    LOST = "LOST"


class RiskMode(str, Enum):
    """Signal rewrite applied before placement."""

    NORMAL = "NORMAL"
    LESS_RISKY = "LESS_RISKY"
    OVER3_UNDER6 = "OVER3_UNDER6"


class TradeRecord(BaseModel):
    """A placed contract. profit/status are written once at settlement."""

    contract_id: str
    signal_id: str | None = None
    market: str
    type: SignalType
    stake: float
    profit: float = 0.0
    status: TradeStatus = TradeStatus.ACTIVE
    timestamp: float  # Placement time, clock seconds
    settled_at: float | None = None

    @property
    def is_settled(self) -> bool:
        return self.status != TradeStatus.ACTIVE


class SessionStats(BaseModel):
    """Running statistics for the current trading session."""

    total_profit: float = 0.0
    total_trades: int = 0
    win_rate: float = 0.0  # Percentage, 0..100
    consecutive_wins: int = 0
    consecutive_losses: int = 0
    max_drawdown: float = 0.0
    best_win_streak: int = 0
    worst_loss_streak: int = 0
    session_start_balance: float = 0.0
    session_start_time: float = 0.0


class StakeSettings(BaseModel):
    """Martingale staking parameters."""

    base_stake: float = Field(default=1.0, gt=0)
    martingale_multiplier: float = Field(default=2.0, ge=1.0)
    max_martingale_steps: int = Field(default=5, ge=0)
    take_profit_limit: float = Field(default=100.0, gt=0)
    stop_loss_limit: float = Field(default=-50.0, lt=0)
    auto_stake_adjustment: bool = False


class AutoTraderSettings(BaseModel):
    """Execution-service behaviour switches."""

    enabled: bool = False
    max_concurrent_trades: int = Field(default=1, ge=1)
    risk_mode: RiskMode = RiskMode.NORMAL
    auto_loop: bool = False
    loop_count: int = Field(default=10, ge=1)
    delay_between_trades: float = Field(default=2.0, ge=0)  # Seconds


class ExecutionResult(BaseModel):
    """Outcome of a placement attempt, delivered to execution subscribers."""

    success: bool
    contract_id: str | None = None
    error: str | None = None
    signal: Signal | None = None
    stake: float | None = None
    trade: TradeRecord | None = None
    halted: bool = False  # True when auto-trading stopped on a session limit
