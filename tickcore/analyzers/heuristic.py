"""Heuristic-scoring analyzer.

Combines the fixed-weight network score with a market sentiment reading,
multi-timeframe trends and an adaptive weight derived from settled trade
accuracy for the market.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from tickcore.analyzers.base import BaseAnalyzer
from tickcore.analyzers.neural import DigitScorer, HeuristicNetwork
from tickcore.analyzers.registry import register_analyzer
from tickcore.models.signal import Signal, SignalType, confidence_band
from tickcore.stats import digit_frequencies, rank_digits, relative_trend, volatility

logger = logging.getLogger(__name__)

NEURAL_WEIGHT = 0.6
ADAPTIVE_WEIGHT = 0.2
SENTIMENT_WEIGHT = 0.2


@dataclass
class Sentiment:
    bullish: int
    bearish: int
    neutral: int
    overall: str
    confidence: float


@dataclass
class Performance:
    accuracy: float = 0.5
    trades: int = 0


def analyze_sentiment(digits: list[int]) -> Sentiment:
    """Vote trends over 20/30/50 ticks plus volatility into a sentiment."""
    recent = digits[-50:]
    bullish = bearish = neutral = 0
    for window, threshold in ((20, 0.1), (30, 0.05), (50, 0.02)):
        trend = relative_trend(recent[-window:])
        if trend > threshold:
            bullish += 1
        elif trend < -threshold:
            bearish += 1
        else:
            neutral += 1

    vol = volatility(recent)
    if vol > 2.5:
        bearish += 1
    elif vol < 1.5:
        bullish += 1
    else:
        neutral += 1

    total = bullish + bearish + neutral
    bull_ratio, bear_ratio = bullish / total, bearish / total
    if bull_ratio > 0.6:
        overall, confidence = "BULLISH", bull_ratio
    elif bear_ratio > 0.6:
        overall, confidence = "BEARISH", bear_ratio
    else:
        overall, confidence = "NEUTRAL", max(bull_ratio, bear_ratio)
    return Sentiment(bullish, bearish, neutral, overall, confidence)


def timeframe_trends(digits: list[int]) -> dict[str, tuple[str, float]]:
    """Trend direction and strength over 10, 30 and 100 ticks."""
    result = {}
    for label, window in (("short", 10), ("medium", 30), ("long", 100)):
        trend = relative_trend(digits[-window:])
        if trend > 0.05:
            direction = "BULLISH"
        elif trend < -0.05:
            direction = "BEARISH"
        else:
            direction = "NEUTRAL"
        result[label] = (direction, abs(trend))
    return result


def adaptive_weight(performance: Performance) -> float:
    bonus = (performance.accuracy - 0.5) * 0.5
    experience = min(performance.trades / 100, 0.2)
    return max(0.1, min(1.0, 0.5 + bonus + experience))


def assess_risk(neural: float, sentiment: Sentiment, trends: dict) -> str:
    risk = 0
    if neural < 0.7:
        risk += 1
    if neural < 0.6:
        risk += 1
    if len({direction for direction, _ in trends.values()}) > 2:
        risk += 1
    if sentiment.overall == "NEUTRAL":
        risk += 1
    if risk >= 3:
        return "HIGH"
    if risk >= 2:
        return "MEDIUM"
    return "LOW"


def supporting_patterns(digits: list[int]) -> list[str]:
    """Runs of 3+, alternation and short monotone sequences in the last 20."""
    recent = digits[-20:]
    patterns = []
    run = 1
    for i in range(1, len(recent)):
        if recent[i] == recent[i - 1]:
            run += 1
            continue
        if run >= 3:
            patterns.append(f"{run} consecutive {recent[i - 1]}s")
        run = 1

    if all(recent[i] == recent[i - 2] for i in range(2, min(len(recent), 8))):
        patterns.append("Alternating pattern detected")

    head = recent[: min(len(recent), 6)]
    if all(head[i] > head[i - 1] for i in range(1, len(head))):
        patterns.append("Ascending sequence")
    if all(head[i] < head[i - 1] for i in range(1, len(head))):
        patterns.append("Descending sequence")
    return patterns


@register_analyzer("heuristic")
class HeuristicAnalyzer(BaseAnalyzer):
    """Network-scored OVER/UNDER prediction enriched with market context."""

    source = "Heuristic Intelligence"

    HISTORY_SIZE = 2000
    EMIT_INTERVAL = 7.0
    REFRESH_INTERVAL = 30.0
    VALIDITY = 40.0
    CONFIDENCE_FLOOR = 0.6
    MIN_TICKS = 30

    def __init__(self, *args, scorer: DigitScorer | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.scorer = scorer or HeuristicNetwork(seed=self.seed)
        self._performance: dict[str, Performance] = {m: Performance() for m in self._markets}

    def refresh(self) -> None:
        """Apply exploratory jitter to the network when enabled."""
        if not self.jitter or not isinstance(self.scorer, HeuristicNetwork):
            return
        for market in self._markets:
            digits = self._histories[market].digits
            if len(digits) >= self.scorer.input_size + 50:
                self.scorer.jitter(digits)

    def update_performance(self, market: str, was_correct: bool) -> None:
        """Fold a settled outcome into the market's running accuracy."""
        perf = self._performance.setdefault(market, Performance())
        perf.accuracy = (perf.accuracy * perf.trades + (1 if was_correct else 0)) / (perf.trades + 1)
        perf.trades += 1

    def get_performance_stats(self) -> dict[str, Performance]:
        return {m: Performance(p.accuracy, p.trades) for m, p in self._performance.items()}

    def analyze_market(self, market: str, digits: list[int], now: float) -> list[Signal]:
        probabilities = np.asarray(self.scorer.predict(digits))
        predicted = int(np.argmax(probabilities))
        neural = float(probabilities.max())
        if neural < self.confidence_floor:
            return []

        sentiment = analyze_sentiment(digits)
        trends = timeframe_trends(digits)
        weight = adaptive_weight(self._performance.setdefault(market, Performance()))
        combined = (
            neural * NEURAL_WEIGHT
            + weight * ADAPTIVE_WEIGHT
            + sentiment.confidence * SENTIMENT_WEIGHT
        )

        directions = [direction for direction, _ in trends.values()]
        bullish, bearish = directions.count("BULLISH"), directions.count("BEARISH")
        if bullish > bearish:
            bias = "bullish bias"
        elif bearish > bullish:
            bias = "bearish bias"
        else:
            bias = "mixed signals"
        reasoning = (
            f"Network predicts digit {predicted} with {neural * 100:.1f}% confidence. "
            f"Market sentiment is {sentiment.overall.lower()}. "
            f"Multi-timeframe analysis shows {bias}."
        )

        recent = digits[-100:]
        frequency = digit_frequencies(recent)
        return [
            self._make_signal(
                market,
                SignalType.OVER if predicted >= 5 else SignalType.UNDER,
                combined,
                now,
                strategy="Heuristic Network",
                entry_value=predicted,
                confidence=confidence_band(combined),
                reasoning=reasoning,
                supporting={
                    "neural_score": round(neural, 6),
                    "market_sentiment": sentiment.overall,
                    "timeframes": {k: v[0] for k, v in trends.items()},
                    "adaptive_weight": round(weight, 4),
                    "risk_level": assess_risk(neural, sentiment, trends),
                    "supporting_patterns": supporting_patterns(digits),
                    "hot_digits": rank_digits(frequency)[:3],
                    "cold_digits": rank_digits(frequency, descending=False)[:3],
                    "probability": [round(float(p), 6) for p in probabilities],
                },
            )
        ]
