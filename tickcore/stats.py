"""Digit statistics shared by the analyzers.

All functions take a plain sequence of digits (oldest first) and are pure.
"""

from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

# Maximum possible digit average, used to normalize momentum
MAX_DIGIT_AVERAGE = 4.5

HOT_THRESHOLD = 1.3
COLD_THRESHOLD = 0.7


def digit_frequencies(digits: Sequence[int]) -> list[int]:
    """Occurrence count for each digit 0-9."""
    if not digits:
        return [0] * 10
    return np.bincount(np.asarray(digits, dtype=np.int64), minlength=10)[:10].tolist()


def entropy(digits: Sequence[int]) -> float:
    """Shannon entropy of the digit distribution in bits (max log2(10))."""
    if not digits:
        return 0.0
    probs = np.asarray(digit_frequencies(digits), dtype=np.float64) / len(digits)
    probs = probs[probs > 0]
    return float(-(probs * np.log2(probs)).sum())


def volatility(digits: Sequence[int]) -> float:
    """Population standard deviation of absolute tick-to-tick digit changes."""
    if len(digits) < 2:
        return 0.0
    changes = np.abs(np.diff(np.asarray(digits, dtype=np.float64)))
    return float(changes.std())


def _half_means(digits: Sequence[int]) -> tuple[float, float]:
    mid = len(digits) // 2
    first = digits[:mid]
    second = digits[mid:]
    return sum(first) / len(first), sum(second) / len(second)


def momentum(digits: Sequence[int]) -> float:
    """(mean of second half - mean of first half) / 4.5."""
    if len(digits) < 2:
        return 0.0
    first_avg, second_avg = _half_means(digits)
    return (second_avg - first_avg) / MAX_DIGIT_AVERAGE


def relative_trend(digits: Sequence[int]) -> float:
    """(mean of second half - mean of first half) / mean of first half."""
    if len(digits) < 2:
        return 0.0
    first_avg, second_avg = _half_means(digits)
    if first_avg == 0:
        return 0.0
    return (second_avg - first_avg) / first_avg


def ticks_since_last(digits: Sequence[int], digit: int) -> int:
    """Ticks elapsed since ``digit`` last appeared (len(digits) if never)."""
    for offset, value in enumerate(reversed(digits)):
        if value == digit:
            return offset
    return len(digits)


def rank_digits(frequencies: Sequence[int], descending: bool = True) -> list[int]:
    """Digits ordered by frequency; ties keep ascending digit order."""
    if descending:
        return sorted(range(10), key=lambda d: (-frequencies[d], d))
    return sorted(range(10), key=lambda d: (frequencies[d], d))


def mode_digit(values: Sequence[int]) -> tuple[int, int]:
    """Most frequent digit and its count; ties resolve to the lowest digit."""
    counts = digit_frequencies(values)
    best = rank_digits(counts)[0]
    return best, counts[best]


def parity_ratios(digits: Sequence[int]) -> tuple[float, float]:
    """Share of even and odd digits."""
    if not digits:
        return 0.0, 0.0
    even = sum(1 for d in digits if d % 2 == 0)
    return even / len(digits), (len(digits) - even) / len(digits)


def over_under_ratios(digits: Sequence[int]) -> tuple[float, float]:
    """Share of digits >= 5 and <= 4."""
    if not digits:
        return 0.0, 0.0
    over = sum(1 for d in digits if d >= 5)
    return over / len(digits), (len(digits) - over) / len(digits)


@dataclass
class DigitZones:
    """Hot/cold/neutral classification of the ten digits."""

    hot: list[int] = field(default_factory=list)
    cold: list[int] = field(default_factory=list)
    neutral: list[int] = field(default_factory=list)
    strengths: dict[int, float] = field(default_factory=dict)
    ratios: dict[int, float] = field(default_factory=dict)


def classify_zones(
    digits: Sequence[int],
    hot_threshold: float = HOT_THRESHOLD,
    cold_threshold: float = COLD_THRESHOLD,
) -> DigitZones:
    """Classify digits against the uniform 10%-per-digit expectation.

    ratio = frequency / (len / 10); hot when ratio >= hot_threshold, cold when
    ratio <= cold_threshold. Strength is min(1, |ratio - 1|). Hot and cold
    lists are ordered strongest first.
    """
    zones = DigitZones()
    if not digits:
        zones.neutral = list(range(10))
        zones.strengths = {d: 0.0 for d in range(10)}
        zones.ratios = {d: 0.0 for d in range(10)}
        return zones

    expected = len(digits) / 10
    frequencies = digit_frequencies(digits)
    for digit in range(10):
        ratio = frequencies[digit] / expected
        zones.ratios[digit] = ratio
        zones.strengths[digit] = min(1.0, abs(ratio - 1))
        if ratio >= hot_threshold:
            zones.hot.append(digit)
        elif ratio <= cold_threshold:
            zones.cold.append(digit)
        else:
            zones.neutral.append(digit)

    zones.hot.sort(key=lambda d: -zones.strengths[d])
    zones.cold.sort(key=lambda d: -zones.strengths[d])
    return zones
