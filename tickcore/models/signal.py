"""Signal data models."""

import hashlib
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SignalType(str, Enum):
    """Contract direction a signal recommends."""

    RISE = "RISE"
    FALL = "FALL"
    EVEN = "EVEN"
    ODD = "ODD"
    OVER = "OVER"
    UNDER = "UNDER"


class Confidence(str, Enum):
    """Confidence band attached to a signal."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    CONSERVATIVE = "CONSERVATIVE"
    AGGRESSIVE = "AGGRESSIVE"


class SignalStatus(str, Enum):
    """Signal lifecycle status."""

    ACTIVE = "ACTIVE"
    WON = "WON"
    LOST = "LOST"
    EXPIRED = "EXPIRED"


HIGH_THRESHOLD = 0.8
MEDIUM_THRESHOLD = 0.65


def confidence_band(score: float) -> Confidence:
    """Map a raw 0..1 score to HIGH / MEDIUM / LOW."""
    if score >= HIGH_THRESHOLD:
        return Confidence.HIGH
    if score >= MEDIUM_THRESHOLD:
        return Confidence.MEDIUM
    return Confidence.LOW


def _generate_signal_id(
    source: str, strategy: str, market: str, signal_type: str, created_at: float
) -> str:
    """Deterministic id: identical analyzer output yields the identical id."""
    key = f"{source}:{strategy}:{market}:{signal_type}:{created_at:.6f}"
    return hashlib.sha256(key.encode()).hexdigest()[:32]


class Signal(BaseModel):
    """A time-bounded trade recommendation produced by one analyzer.

    Only ``status`` changes after creation. Risk-mode transforms work on
    copies (``model_copy``).
    """

    id: str = ""  # Set in model_post_init
    created_at: float  # Clock seconds
    market: str
    type: SignalType
    entry_value: int | None = None  # Entry/target digit, when applicable
    barrier: int | None = None  # Digit barrier for OVER/UNDER contracts
    confidence: Confidence
    score: float = 0.0  # Raw confidence in [0, 1]
    strategy_source: str
    strategy: str = ""
    status: SignalStatus = SignalStatus.ACTIVE
    expires_at: float
    reasoning: str = ""
    supporting_analysis: dict[str, Any] = Field(default_factory=dict)

    def model_post_init(self, __context) -> None:
        if not self.id:
            object.__setattr__(
                self,
                "id",
                _generate_signal_id(
                    self.strategy_source,
                    self.strategy,
                    self.market,
                    self.type.value,
                    self.created_at,
                ),
            )

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def is_valid(self, now: float) -> bool:
        """A signal is actionable while ACTIVE and not past its expiry."""
        return self.status == SignalStatus.ACTIVE and not self.is_expired(now)

    def time_remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)
