"""Risk-mode signal transforms and contract parameter mapping."""

from tickcore.models.signal import Signal, SignalType
from tickcore.models.trade import RiskMode

DEFAULT_BARRIER = 5
OVER_BARRIER = 3
UNDER_BARRIER = 6

CONTRACT_TYPES = {
    SignalType.RISE: "CALL",
    SignalType.FALL: "PUT",
    SignalType.EVEN: "DIGITEVEN",
    SignalType.ODD: "DIGITODD",
    SignalType.OVER: "DIGITOVER",
    SignalType.UNDER: "DIGITUNDER",
}


def apply_risk_mode(signal: Signal, mode: RiskMode) -> Signal:
    """Return the signal as it should be placed under ``mode``.

    The stored signal is never modified; a copy is returned whenever the
    mode changes anything.

    LESS_RISKY turns RISE/FALL into EVEN when the entry digit is a non-zero
    even digit and into ODD otherwise. OVER3_UNDER6 trades OVER 3 when the
    entry digit is <= 3 and UNDER 6 when it is >= 6.
    """
    if mode == RiskMode.LESS_RISKY:
        if signal.type in (SignalType.RISE, SignalType.FALL):
            entry = signal.entry_value
            new_type = SignalType.EVEN if entry and entry % 2 == 0 else SignalType.ODD
            return signal.model_copy(update={"type": new_type})

    elif mode == RiskMode.OVER3_UNDER6:
        entry = signal.entry_value
        if entry is not None:
            if entry <= OVER_BARRIER:
                return signal.model_copy(update={"type": SignalType.OVER, "barrier": OVER_BARRIER})
            if entry >= UNDER_BARRIER:
                return signal.model_copy(update={"type": SignalType.UNDER, "barrier": UNDER_BARRIER})

    return signal


def build_contract_parameters(signal: Signal, stake: float, currency: str = "USD") -> dict:
    """Buy parameters for a one-tick contract matching the signal."""
    params = {
        "amount": stake,
        "basis": "stake",
        "contract_type": CONTRACT_TYPES[signal.type],
        "currency": currency,
        "symbol": signal.market,
        "duration": 1,
        "duration_unit": "t",
    }
    if signal.type in (SignalType.OVER, SignalType.UNDER):
        barrier = signal.barrier if signal.barrier is not None else DEFAULT_BARRIER
        params["barrier"] = str(barrier)
    return params
