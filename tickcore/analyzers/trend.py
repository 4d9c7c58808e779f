"""Trend analyzer: parity trend reversal, repeating 5-digit patterns and
multi-window momentum."""

from __future__ import annotations

import logging

from tickcore.analyzers.base import BaseAnalyzer
from tickcore.analyzers.registry import register_analyzer
from tickcore.models.signal import Confidence, Signal, SignalType
from tickcore.stats import mode_digit, momentum, parity_ratios

logger = logging.getLogger(__name__)


@register_analyzer("trend")
class TrendAnalyzer(BaseAnalyzer):
    source = "Trend Analysis"

    HISTORY_SIZE = 1000
    EMIT_INTERVAL = 5.0
    VALIDITY = 35.0
    CONFIDENCE_FLOOR = 0.6
    MIN_TICKS = 50

    PARITY_WINDOW = 30
    PARITY_TRIGGER = 0.7
    PARITY_HIGH = 0.8
    PATTERN_LENGTH = 5
    PATTERN_MIN_OCCURRENCES = 3
    MOMENTUM_WINDOWS = (10, 30, 100)
    MOMENTUM_TRIGGER = 0.1

    def analyze_market(self, market: str, digits: list[int], now: float) -> list[Signal]:
        signals = []
        for candidate in (
            self._parity_trend(market, digits, now),
            self._repeating_pattern(market, digits, now),
            self._momentum(market, digits, now),
        ):
            if candidate is not None:
                signals.append(candidate)
        return signals

    def _parity_trend(self, market, digits, now) -> Signal | None:
        even, odd = parity_ratios(digits[-self.PARITY_WINDOW :])
        if even > self.PARITY_TRIGGER:
            ratio, signal_type, label = even, SignalType.ODD, "even"
        elif odd > self.PARITY_TRIGGER:
            ratio, signal_type, label = odd, SignalType.EVEN, "odd"
        else:
            return None
        return self._make_signal(
            market,
            signal_type,
            ratio,
            now,
            strategy="Parity Trend",
            entry_value=digits[-1],
            confidence=Confidence.HIGH if ratio > self.PARITY_HIGH else Confidence.MEDIUM,
            reasoning=(
                f"Strong {label} trend ({ratio * 100:.1f}%) suggests "
                f"{signal_type.value} reversal"
            ),
        )

    def _repeating_pattern(self, market, digits, now) -> Signal | None:
        size = self.PATTERN_LENGTH
        if len(digits) <= size:
            return None
        recent = digits[-size:]
        # Occurrences include the current tail itself
        occurrences = 0
        followers = []
        for i in range(len(digits) - size + 1):
            if digits[i : i + size] == recent:
                occurrences += 1
                if i + size < len(digits):
                    followers.append(digits[i + size])
        if occurrences < self.PATTERN_MIN_OCCURRENCES or not followers:
            return None

        digit, count = mode_digit(followers)
        share = count / len(followers)
        if share < self.confidence_floor:
            return None

        pattern = "".join(str(d) for d in recent)
        return self._make_signal(
            market,
            SignalType.EVEN if digit % 2 == 0 else SignalType.ODD,
            share,
            now,
            strategy="Repeating Pattern",
            entry_value=digit,
            confidence=Confidence.HIGH if share > 0.8 else Confidence.MEDIUM,
            reasoning=(
                f"Pattern {pattern} found {occurrences} times, predicting digit "
                f"{digit} ({share * 100:.1f}% confidence)"
            ),
            supporting={"digit_pattern": recent, "occurrences": occurrences},
        )

    def _momentum(self, market, digits, now) -> Signal | None:
        """RISE/FALL when every momentum window agrees and the average is strong."""
        readings = [momentum(digits[-w:]) for w in self.MOMENTUM_WINDOWS]
        avg = sum(readings) / len(readings)
        if abs(avg) <= self.MOMENTUM_TRIGGER:
            return None
        if avg > 0 and all(r > 0 for r in readings):
            signal_type = SignalType.RISE
        elif avg < 0 and all(r < 0 for r in readings):
            signal_type = SignalType.FALL
        else:
            return None

        score = min(1.0, 0.6 + abs(avg))
        if score < self.confidence_floor:
            return None
        return self._make_signal(
            market,
            signal_type,
            score,
            now,
            strategy="Momentum",
            reasoning=(
                f"Momentum {avg * 100:.1f}% across windows "
                f"{', '.join(f'{r * 100:.1f}%' for r in readings)}"
            ),
            supporting={"momentum": [round(r, 4) for r in readings]},
        )
