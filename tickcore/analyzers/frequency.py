"""Statistical-frequency analyzer.

Looks for over/under and even/odd imbalances in the recent digits and
predicts a reversal, and targets digits that have gone cold. Low entropy
relative to the market's threshold downgrades the over/under band.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from tickcore.analyzers.base import BaseAnalyzer
from tickcore.analyzers.registry import register_analyzer
from tickcore.models.signal import Confidence, Signal, SignalType
from tickcore.stats import (
    digit_frequencies,
    entropy,
    over_under_ratios,
    parity_ratios,
    rank_digits,
    ticks_since_last,
    volatility,
)

logger = logging.getLogger(__name__)

SYNTHETIC_MARKETS = [
    "R_10", "R_25", "R_50", "R_75", "R_100", "R_150", "R_250",
    "1HZ10V", "1HZ25V", "1HZ50V", "1HZ75V", "1HZ100V",
    "JD10", "JD25", "JD50", "JD75", "JD100",
    "CRASH300N", "CRASH500N", "CRASH1000N",
    "BOOM300N", "BOOM500N", "BOOM1000N",
]

# Entropy (bits) below which a market's over/under reading is trusted less
ENTROPY_THRESHOLDS = {
    "R_10": 2.1, "R_25": 2.3, "R_50": 2.5, "R_75": 2.7, "R_100": 2.9,
    "R_150": 3.1, "R_250": 3.3,
    "1HZ10V": 2.0, "1HZ25V": 2.2, "1HZ50V": 2.4, "1HZ75V": 2.6, "1HZ100V": 2.8,
    "JD10": 2.4, "JD25": 2.6, "JD50": 2.8, "JD75": 3.0, "JD100": 3.2,
    "CRASH300N": 3.5, "CRASH500N": 3.7, "CRASH1000N": 3.9,
    "BOOM300N": 3.5, "BOOM500N": 3.7, "BOOM1000N": 3.9,
}

_DOWNGRADE = {Confidence.HIGH: Confidence.MEDIUM, Confidence.MEDIUM: Confidence.LOW}


@dataclass
class DigitStatistics:
    """Derived statistics for one market's history."""

    frequency: list[int] = field(default_factory=lambda: [0] * 10)
    last_occurrence: dict[int, int] = field(default_factory=dict)
    streaks: dict[int, list[int]] = field(default_factory=dict)
    patterns: dict[str, int] = field(default_factory=dict)
    volatility: float = 0.0
    entropy: float = 0.0


def digit_streaks(digits: list[int]) -> dict[int, list[int]]:
    """Run lengths of each digit, most recent run first."""
    streaks: dict[int, list[int]] = {d: [] for d in range(10)}
    run_digit = None
    run = 0
    for digit in reversed(digits):
        if digit == run_digit:
            run += 1
            continue
        if run_digit is not None:
            streaks[run_digit].append(run)
        run_digit, run = digit, 1
    if run_digit is not None:
        streaks[run_digit].append(run)
    return streaks


def sequence_counts(digits: list[int]) -> dict[str, int]:
    """Counts of every 2- and 3-digit sequence."""
    counts: dict[str, int] = {}
    for length in (2, 3):
        for i in range(length - 1, len(digits)):
            key = "".join(str(d) for d in digits[i - length + 1 : i + 1])
            counts[key] = counts.get(key, 0) + 1
    return counts


def compute_statistics(digits: list[int]) -> DigitStatistics:
    last = {}
    for index, digit in enumerate(digits):
        last[digit] = index
    return DigitStatistics(
        frequency=digit_frequencies(digits),
        last_occurrence=last,
        streaks=digit_streaks(digits),
        patterns=sequence_counts(digits),
        volatility=volatility(digits),
        entropy=entropy(digits),
    )


@register_analyzer("frequency")
class FrequencyAnalyzer(BaseAnalyzer):
    """Frequency-imbalance reversal and cold-digit targeting."""

    source = "Statistical Frequency"

    DEFAULT_MARKETS = SYNTHETIC_MARKETS
    HISTORY_SIZE = 1000
    EMIT_INTERVAL = 8.0
    VALIDITY = 45.0
    CONFIDENCE_FLOOR = 0.6
    MIN_TICKS = 100

    OVER_UNDER_WINDOW = 50
    OVER_UNDER_TRIGGER = 0.7
    OVER_UNDER_HIGH = 0.8
    EVEN_ODD_WINDOW = 30
    EVEN_ODD_TRIGGER = 0.75
    EVEN_ODD_HIGH = 0.85
    EVEN_ODD_VALIDITY = 40.0
    COLD_ABSENCE = 50
    COLD_HIGH = 100
    COLD_VALIDITY = 50.0

    def get_market_statistics(self, market: str) -> DigitStatistics | None:
        if market not in self._histories:
            return None
        return compute_statistics(self._histories[market].digits)

    def _target_analysis(self, stats: DigitStatistics, total: int) -> dict:
        hot = rank_digits(stats.frequency)[:3]
        cold = rank_digits(stats.frequency, descending=False)[:3]
        return {
            "hot_digits": hot,
            "cold_digits": cold,
            "frequency": {d: stats.frequency[d] for d in range(10)},
            "probability": {d: stats.frequency[d] / total for d in range(10)},
            "recommendation": cold[0],
            "entropy": round(stats.entropy, 4),
            "volatility": round(stats.volatility, 4),
        }

    def analyze_market(self, market: str, digits: list[int], now: float) -> list[Signal]:
        stats = compute_statistics(digits)
        target = self._target_analysis(stats, len(digits))
        signals = []
        for candidate in (
            self._over_under(market, digits, stats, target, now),
            self._even_odd(market, digits, target, now),
            self._cold_digit(market, digits, stats, target, now),
        ):
            if candidate is not None and candidate.score >= self.confidence_floor:
                signals.append(candidate)
        return signals

    def _over_under(self, market, digits, stats, target, now) -> Signal | None:
        over, under = over_under_ratios(digits[-self.OVER_UNDER_WINDOW :])
        entry = rank_digits(stats.frequency)[0]

        if over > self.OVER_UNDER_TRIGGER:
            ratio, signal_type = over, SignalType.UNDER
            reasoning = f"Over dominance ({over * 100:.1f}%) suggests UNDER reversal. Entry digit: {entry}"
        elif under > self.OVER_UNDER_TRIGGER:
            ratio, signal_type = under, SignalType.OVER
            reasoning = f"Under dominance ({under * 100:.1f}%) suggests OVER reversal. Entry digit: {entry}"
        else:
            return None

        band = Confidence.HIGH if ratio > self.OVER_UNDER_HIGH else Confidence.MEDIUM
        threshold = ENTROPY_THRESHOLDS.get(market)
        if threshold is not None and stats.entropy < threshold:
            band = _DOWNGRADE[band]
            reasoning += f". Low entropy ({stats.entropy:.2f} bits)"

        return self._make_signal(
            market,
            signal_type,
            ratio,
            now,
            strategy="Frequency Over/Under",
            entry_value=entry,
            confidence=band,
            reasoning=reasoning,
            supporting=target,
        )

    def _even_odd(self, market, digits, target, now) -> Signal | None:
        even, odd = parity_ratios(digits[-self.EVEN_ODD_WINDOW :])
        if even > self.EVEN_ODD_TRIGGER:
            ratio, signal_type = even, SignalType.ODD
            reasoning = f"Even dominance ({even * 100:.1f}%) suggests ODD reversal"
        elif odd > self.EVEN_ODD_TRIGGER:
            ratio, signal_type = odd, SignalType.EVEN
            reasoning = f"Odd dominance ({odd * 100:.1f}%) suggests EVEN reversal"
        else:
            return None

        return self._make_signal(
            market,
            signal_type,
            ratio,
            now,
            strategy="Frequency Even/Odd",
            entry_value=digits[-1],
            confidence=Confidence.HIGH if ratio > self.EVEN_ODD_HIGH else Confidence.MEDIUM,
            validity=self.EVEN_ODD_VALIDITY,
            reasoning=reasoning,
            supporting=target,
        )

    def _cold_digit(self, market, digits, stats, target, now) -> Signal | None:
        digit = rank_digits(stats.frequency, descending=False)[0]
        since = ticks_since_last(digits, digit)
        if since <= self.COLD_ABSENCE:
            return None

        return self._make_signal(
            market,
            SignalType.EVEN if digit % 2 == 0 else SignalType.ODD,
            min(0.95, 0.6 + since / 250),
            now,
            strategy="Frequency Cold Digit",
            entry_value=digit,
            confidence=Confidence.HIGH if since > self.COLD_HIGH else Confidence.MEDIUM,
            validity=self.COLD_VALIDITY,
            reasoning=f"Digit {digit} is cold ({since} ticks since last occurrence)",
            supporting=target,
        )
