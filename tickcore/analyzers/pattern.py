"""Pattern-table analyzer.

Indexes every digit subsequence of length 3-8 together with the digits that
followed it, and predicts the next digit from the best-scoring pattern that
matches the end of the current history.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from tickcore.analyzers.base import BaseAnalyzer
from tickcore.analyzers.registry import register_analyzer
from tickcore.models.signal import Signal, SignalType, confidence_band
from tickcore.stats import digit_frequencies, mode_digit, rank_digits

logger = logging.getLogger(__name__)

PatternKey = tuple[int, ...]


@dataclass
class PatternEntry:
    """Statistics for one indexed subsequence."""

    occurrences: int = 0
    next_digits: list[int] = field(default_factory=list)
    last_seen: int = 0  # Index of the digit that followed the latest occurrence
    confidence: float = 0.0


@dataclass
class PatternMatch:
    pattern: PatternKey
    confidence: float
    partial: bool = False


def pattern_overlap(first: PatternKey, second: PatternKey) -> float:
    """Best positional agreement of the shorter pattern inside the longer."""
    shorter, longer = (first, second) if len(first) <= len(second) else (second, first)
    best = 0
    for offset in range(len(longer) - len(shorter) + 1):
        agree = sum(1 for j, d in enumerate(shorter) if longer[offset + j] == d)
        best = max(best, agree)
    return best / len(shorter)


def format_pattern(pattern: PatternKey) -> str:
    return ",".join(str(d) for d in pattern)


@register_analyzer("pattern")
class PatternAnalyzer(BaseAnalyzer):
    """Next-digit prediction from a per-market subsequence table."""

    source = "Pattern Recognition"

    HISTORY_SIZE = 1500
    EMIT_INTERVAL = 6.0
    REFRESH_INTERVAL = 15.0
    VALIDITY = 35.0
    CONFIDENCE_FLOOR = 0.65
    MIN_TICKS = 3

    MIN_LENGTH = 3
    MAX_LENGTH = 8
    MIN_OCCURRENCES = 3
    RECENCY_SPAN = 1000
    RECENCY_FLOOR = 0.5
    FREQUENCY_CAP = 1.5
    PARTIAL_PENALTY = 0.8

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._databases: dict[str, dict[PatternKey, PatternEntry]] = {
            m: {} for m in self._markets
        }

    # ------------------------------------------------------------------
    # Pattern database
    # ------------------------------------------------------------------

    def refresh(self) -> None:
        for market in self._markets:
            self.rebuild(market)

    def rebuild(self, market: str) -> None:
        """Rebuild the market's pattern table from its current history."""
        digits = self._histories[market].digits
        if len(digits) < self.MIN_LENGTH + 1:
            return

        database: dict[PatternKey, PatternEntry] = {}
        for length in range(self.MIN_LENGTH, self.MAX_LENGTH + 1):
            for i in range(len(digits) - length):
                key = tuple(digits[i : i + length])
                entry = database.get(key)
                if entry is None:
                    entry = database[key] = PatternEntry()
                entry.occurrences += 1
                entry.next_digits.append(digits[i + length])
                entry.last_seen = i + length

        total = len(digits)
        for entry in database.values():
            entry.confidence = self._score(entry, total)
        self._databases[market] = database

    def _score(self, entry: PatternEntry, total: int) -> float:
        """mode share x recency x frequency, zero below MIN_OCCURRENCES."""
        if entry.occurrences < self.MIN_OCCURRENCES:
            return 0.0
        _, mode_count = mode_digit(entry.next_digits)
        share = mode_count / len(entry.next_digits)
        since = total - entry.last_seen
        recency = max(self.RECENCY_FLOOR, 1 - since / self.RECENCY_SPAN)
        frequency = min(self.FREQUENCY_CAP, 1 + entry.occurrences / 10)
        return share * recency * frequency

    def get_pattern_database(self, market: str) -> dict[PatternKey, PatternEntry]:
        return dict(self._databases.get(market, {}))

    def clear_pattern_history(self, market: str | None = None) -> None:
        targets = [market] if market else self._markets
        for m in targets:
            if m in self._databases:
                self._databases[m] = {}
        self.clear_history(market)

    def get_pattern_analysis(self, market: str, limit: int = 10) -> list[dict]:
        """Top patterns at or above the confidence floor."""
        database = self._databases.get(market, {})
        rows = []
        for key, entry in database.items():
            if entry.confidence < self.confidence_floor:
                continue
            rows.append({
                "pattern": list(key),
                "frequency": entry.occurrences,
                "last_occurrence": entry.last_seen,
                "predicted_next": rank_digits(digit_frequencies(entry.next_digits))[
                    : min(3, len(set(entry.next_digits)))
                ],
                "confidence": entry.confidence,
            })
        rows.sort(key=lambda r: -r["confidence"])
        return rows[:limit]

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _partial_matches(
        self, suffix: PatternKey, database: dict[PatternKey, PatternEntry]
    ) -> list[PatternMatch]:
        matches = [
            PatternMatch(key, entry.confidence * self.PARTIAL_PENALTY, partial=True)
            for key, entry in database.items()
            if len(key) > len(suffix) and key[-len(suffix) :] == suffix
        ]
        matches.sort(key=lambda m: -m.confidence)
        return matches

    def find_best_match(self, market: str) -> PatternMatch | None:
        """Best exact or partial match for the end of the market's history.

        Exact suffixes are tried longest first; for suffixes longer than the
        minimum, longer indexed patterns ending with the suffix also count at
        a reduced confidence.
        """
        digits = self._histories[market].digits
        database = self._databases[market]
        best: PatternMatch | None = None
        best_score = 0.0

        for length in range(self.MAX_LENGTH, self.MIN_LENGTH - 1, -1):
            if len(digits) < length:
                continue
            suffix = tuple(digits[-length:])
            entry = database.get(suffix)
            if entry is not None and entry.confidence > best_score:
                best = PatternMatch(suffix, entry.confidence)
                best_score = entry.confidence

            if length > self.MIN_LENGTH:
                for match in self._partial_matches(suffix, database):
                    if match.confidence > best_score:
                        best = match
                        best_score = match.confidence
        return best

    def predict_next_digit(self, market: str, pattern: PatternKey) -> tuple[int, float] | None:
        entry = self._databases[market].get(pattern)
        if entry is None or not entry.next_digits:
            return None
        digit, count = mode_digit(entry.next_digits)
        return digit, count / len(entry.next_digits)

    def _supporting_patterns(self, market: str, main: PatternKey) -> list[str]:
        supporting = []
        for key, entry in self._databases[market].items():
            if entry.confidence > 0.5 and len(key) >= self.MIN_LENGTH:
                if pattern_overlap(main, key) > 0.6:
                    supporting.append(
                        f"Similar pattern: {format_pattern(key)} ({entry.occurrences} occurrences)"
                    )
                    if len(supporting) == 3:
                        break
        return supporting

    def analyze_market(self, market: str, digits: list[int], now: float) -> list[Signal]:
        match = self.find_best_match(market)
        if match is None or match.confidence < self.confidence_floor:
            return []

        prediction = self.predict_next_digit(market, match.pattern)
        if prediction is None:
            return []
        digit, share = prediction

        supporting = self._supporting_patterns(market, match.pattern)
        reasoning = (
            f"Pattern {format_pattern(match.pattern)} detected with "
            f"{match.confidence * 100:.1f}% confidence. Historical analysis predicts "
            f"next digit: {digit} ({share * 100:.1f}% accuracy)."
        )
        if supporting:
            reasoning += f" Supporting evidence: {len(supporting)} similar patterns found."

        return [
            self._make_signal(
                market,
                SignalType.OVER if digit >= 5 else SignalType.UNDER,
                match.confidence,
                now,
                strategy="Pattern Table",
                entry_value=digit,
                confidence=confidence_band(share),
                reasoning=reasoning,
                supporting={
                    "digit_pattern": list(match.pattern),
                    "partial_match": match.partial,
                    "prediction_share": round(share, 4),
                    "supporting_patterns": supporting,
                },
            )
        ]
