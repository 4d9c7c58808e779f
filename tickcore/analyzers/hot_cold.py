"""Hot/cold zone entry-point analyzer.

Classifies digits against the uniform expectation over a lookback window
and targets cold digits that have been absent for long, falling back to
hot-digit exhaustion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from tickcore.analyzers.base import BaseAnalyzer
from tickcore.analyzers.registry import register_analyzer
from tickcore.models.signal import Signal, SignalType
from tickcore.stats import DigitZones, classify_zones, momentum, ticks_since_last

logger = logging.getLogger(__name__)

# Momentum windows (short, medium, long)
MOMENTUM_WINDOWS = (10, 30, 100)
MOMENTUM_THRESHOLD = 0.1


@dataclass
class EntryAnalysis:
    optimal_entry: int
    confidence: float
    reasoning: str
    supporting_factors: list[str] = field(default_factory=list)
    risk_level: str = "MEDIUM"


@dataclass
class MarketMomentum:
    short_term: float
    medium_term: float
    long_term: float
    overall: str  # BULLISH / BEARISH / NEUTRAL


def assess_entry_risk(confidence: float, supporting_count: int) -> str:
    risk = 0
    if confidence < 0.7:
        risk += 1
    if confidence < 0.6:
        risk += 1
    if supporting_count < 2:
        risk += 1
    if risk >= 2:
        return "HIGH"
    if risk >= 1:
        return "MEDIUM"
    return "LOW"


def market_momentum(digits: list[int]) -> MarketMomentum:
    short, medium, long_ = (momentum(digits[-w:]) for w in MOMENTUM_WINDOWS)
    avg = (short + medium + long_) / 3
    if avg > MOMENTUM_THRESHOLD:
        overall = "BULLISH"
    elif avg < -MOMENTUM_THRESHOLD:
        overall = "BEARISH"
    else:
        overall = "NEUTRAL"
    return MarketMomentum(short, medium, long_, overall)


@register_analyzer("hot_cold")
class HotColdZoneAnalyzer(BaseAnalyzer):
    """Entry-point detection from hot/cold digit zones."""

    source = "Hot/Cold Zones"

    LOOKBACK = 200
    HISTORY_SIZE = LOOKBACK * 2
    EMIT_INTERVAL = 8.0
    REFRESH_INTERVAL = 10.0
    VALIDITY = 45.0
    CONFIDENCE_FLOOR = 0.6
    MIN_TICKS = 50

    COLD_ABSENCE = 50  # Ticks absent before a cold digit is targeted
    RECENT_WINDOW = 30
    OVERHEAT_SHARE = 0.4
    REJECT_BELOW = 0.5

    def __init__(self, *args, lookback: int | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.lookback = lookback or self.LOOKBACK
        self._zones: dict[str, DigitZones] = {m: DigitZones() for m in self._markets}
        self._zones_updated: dict[str, float] = {}

    # ------------------------------------------------------------------

    def refresh(self) -> None:
        """Reclassify zones for every market with a full lookback window."""
        now = self._scheduler.now()
        for market in self._markets:
            digits = self._histories[market].digits
            if len(digits) < self.lookback:
                continue
            self._zones[market] = classify_zones(digits[-self.lookback :])
            self._zones_updated[market] = now

    def get_hot_cold_zones(self, market: str) -> DigitZones | None:
        return self._zones.get(market)

    def get_market_momentum(self, market: str) -> MarketMomentum | None:
        digits = self.get_digit_history(market)
        if len(digits) < MOMENTUM_WINDOWS[0]:
            return None
        return market_momentum(digits)

    # ------------------------------------------------------------------

    def _optimal_entry(self, digits: list[int], zones: DigitZones) -> EntryAnalysis | None:
        supporting: list[str] = []
        optimal = -1
        best = 0.0
        reasoning = ""

        for digit in zones.cold:
            since = ticks_since_last(digits, digit)
            strength = zones.strengths.get(digit, 0.0)
            confidence = 0.0
            if since > self.COLD_ABSENCE:
                confidence = min(0.9, 0.5 + since / 100)
                supporting.append(f"Digit {digit} absent for {since} ticks")
            confidence = min(1.0, confidence * (1 + strength))
            if confidence > best:
                best = confidence
                optimal = digit
                reasoning = f"Cold digit {digit} analysis suggests high probability of appearance"

        if best < self.confidence_floor:
            recent = digits[-self.RECENT_WINDOW :]
            for digit in zones.hot:
                occurrences = recent.count(digit)
                share = occurrences / len(recent)
                if share <= self.OVERHEAT_SHARE:
                    continue
                confidence = min(0.8, share)
                if confidence <= best:
                    continue
                best = confidence
                opposite = zones.cold or zones.neutral
                if opposite:
                    optimal = opposite[0]
                    reasoning = (
                        f"Hot digit {digit} overheating ({share * 100:.1f}%), "
                        f"predicting cold digit {optimal}"
                    )
                    supporting.append(
                        f"Hot digit {digit} appeared {occurrences} times in last {len(recent)} ticks"
                    )

        if optimal == -1 or best < self.REJECT_BELOW:
            return None
        return EntryAnalysis(
            optimal_entry=optimal,
            confidence=best,
            reasoning=reasoning,
            supporting_factors=supporting,
            risk_level=assess_entry_risk(best, len(supporting)),
        )

    def analyze_entry_timing(self, market: str, target_digit: int) -> EntryAnalysis | None:
        """Score a specific digit as an entry target."""
        digits = self.get_digit_history(market)
        zones = self._zones.get(market)
        if not digits or zones is None:
            return None

        since = ticks_since_last(digits, target_digit)
        strength = zones.strengths.get(target_digit, 0.0)
        confidence = 0.5
        supporting: list[str] = []
        reasoning = f"Analysis for digit {target_digit}: "

        if target_digit in zones.cold and since > 30:
            confidence += 0.3
            supporting.append(f"In cold zone, absent for {since} ticks")
            reasoning += "Cold zone digit with extended absence suggests high probability. "
        elif target_digit in zones.hot and since < 5:
            confidence -= 0.2
            supporting.append("In hot zone, recently appeared")
            reasoning += "Hot zone digit with recent appearance suggests lower probability. "

        confidence += strength * 0.2
        return EntryAnalysis(
            optimal_entry=target_digit,
            confidence=max(0.0, min(1.0, confidence)),
            reasoning=reasoning,
            supporting_factors=supporting,
            risk_level=assess_entry_risk(confidence, len(supporting)),
        )

    def analyze_market(self, market: str, digits: list[int], now: float) -> list[Signal]:
        zones = self._zones[market]
        entry = self._optimal_entry(digits, zones)
        if entry is None or entry.confidence < self.confidence_floor:
            return []

        mom = market_momentum(digits)
        reasoning = (
            f"{entry.reasoning}. Market momentum is {mom.overall.lower()} "
            f"(Short: {mom.short_term * 100:.1f}%, Medium: {mom.medium_term * 100:.1f}%, "
            f"Long: {mom.long_term * 100:.1f}%). "
            f"Hot zone: {zones.hot[:3]}, Cold zone: {zones.cold[:3]}."
        )
        if entry.supporting_factors:
            reasoning += f" Supporting factors: {', '.join(entry.supporting_factors)}."

        signal_type = SignalType.OVER if entry.optimal_entry >= 5 else SignalType.UNDER
        return [
            self._make_signal(
                market,
                signal_type,
                entry.confidence,
                now,
                strategy="Entry Point Detection",
                entry_value=entry.optimal_entry,
                reasoning=reasoning,
                supporting={
                    "hot_digits": zones.hot,
                    "cold_digits": zones.cold,
                    "zone_strengths": zones.strengths,
                    "momentum": mom.overall,
                    "risk_level": entry.risk_level,
                },
            )
        ]

    def get_stats(self) -> dict[str, dict]:
        stats = {}
        for market in self._markets:
            zones = self._zones[market]
            stats[market] = {
                "data_points": len(self._histories[market]),
                "hot_digits": zones.hot,
                "cold_digits": zones.cold,
                "neutral_digits": zones.neutral,
                "zone_strengths": zones.strengths,
                "last_update": self._zones_updated.get(market),
            }
        return stats
