"""Tests for digit extraction, histories and digit statistics."""

import pytest

from tickcore.models import DigitHistory, Tick, extract_digit
from tickcore.stats import (
    classify_zones,
    digit_frequencies,
    entropy,
    mode_digit,
    momentum,
    parity_ratios,
    rank_digits,
    ticks_since_last,
)


class TestExtractDigit:
    @pytest.mark.parametrize(
        "quote,expected",
        [
            (1234.5678, 8),
            (100.12, 0),
            (6789.1239, 9),
            ("123.45671", 7),
            (-1.2345, 5),
            (0, 0),
        ],
    )
    def test_fourth_decimal(self, quote, expected):
        assert extract_digit(quote) == expected

    def test_digit_always_in_range(self):
        quotes = [i * 0.00013 + 917.3 for i in range(500)]
        assert all(0 <= extract_digit(q) <= 9 for q in quotes)

    @pytest.mark.parametrize("quote", [float("nan"), float("inf"), "abc"])
    def test_invalid_quote_raises(self, quote):
        with pytest.raises(ValueError):
            extract_digit(quote)


class TestTick:
    def test_digit_property(self):
        tick = Tick(market="R_10", quote=1234.5678, epoch=1700000000)
        assert tick.digit == 8

    def test_from_message(self):
        data = {
            "msg_type": "tick",
            "tick": {"symbol": "R_50", "quote": 312.4567, "epoch": 1700000001, "id": "abc"},
        }
        tick = Tick.from_message(data)
        assert tick.market == "R_50"
        assert tick.epoch == 1700000001
        assert tick.digit == 7

    def test_from_message_uses_fallback_market(self):
        tick = Tick.from_message({"tick": {"quote": 1.0001}}, market="R_25")
        assert tick.market == "R_25"
        assert tick.digit == 1

    def test_from_message_missing_tick(self):
        with pytest.raises(KeyError):
            Tick.from_message({"msg_type": "tick"})


class TestDigitHistory:
    def test_append_and_evict_oldest(self):
        history = DigitHistory(market="R_10", max_size=3)
        for digit in [1, 2, 3, 4, 5]:
            history.add(digit)
        assert history.digits == [3, 4, 5]
        assert len(history) == 3

    def test_last(self):
        history = DigitHistory(market="R_10", digits=[1, 2, 3, 4])
        assert history.last(2) == [3, 4]
        assert history.last(10) == [1, 2, 3, 4]
        assert history.last(0) == []

    def test_rejects_out_of_range(self):
        history = DigitHistory(market="R_10")
        with pytest.raises(ValueError):
            history.add(10)

    def test_clear(self):
        history = DigitHistory(market="R_10", digits=[1, 2])
        history.clear()
        assert len(history) == 0


class TestDigitStats:
    @pytest.fixture
    def boundary_window(self):
        """L=200: digit 0 appears 26 times (ratio 1.3), digit 1 14 times (0.7)."""
        digits = [0] * 26 + [1] * 14
        for d in range(2, 10):
            digits.extend([d] * 20)
        return digits

    def test_hot_cold_boundaries(self, boundary_window):
        zones = classify_zones(boundary_window)
        assert zones.hot == [0]
        assert zones.cold == [1]
        assert zones.neutral == [2, 3, 4, 5, 6, 7, 8, 9]
        assert zones.ratios[0] == pytest.approx(1.3)
        assert zones.strengths[1] == pytest.approx(0.3)

    def test_just_below_hot_is_neutral(self):
        digits = [0] * 25 + [1] * 15
        for d in range(2, 10):
            digits.extend([d] * 20)
        zones = classify_zones(digits)
        assert 0 in zones.neutral
        assert 1 in zones.neutral

    def test_empty_window_is_all_neutral(self):
        zones = classify_zones([])
        assert zones.neutral == list(range(10))
        assert zones.hot == [] and zones.cold == []

    def test_frequencies(self):
        assert digit_frequencies([1, 1, 9]) == [0, 2, 0, 0, 0, 0, 0, 0, 0, 1]
        assert digit_frequencies([]) == [0] * 10

    def test_momentum_normalized_by_max_average(self):
        # First half mean 0, second half mean 9
        assert momentum([0, 0, 9, 9]) == pytest.approx(2.0)
        assert momentum([4, 4, 4, 4]) == 0.0
        assert momentum([9, 0]) == pytest.approx(-2.0)

    def test_entropy_uniform_is_max(self):
        assert entropy(list(range(10))) == pytest.approx(3.321928, rel=1e-5)
        assert entropy([3, 3, 3]) == 0.0

    def test_ticks_since_last(self):
        assert ticks_since_last([1, 2, 3], 3) == 0
        assert ticks_since_last([1, 2, 3], 1) == 2
        assert ticks_since_last([1, 2, 3], 7) == 3

    def test_rank_and_mode_ties_resolve_low(self):
        freqs = digit_frequencies([5, 5, 2, 2, 7])
        assert rank_digits(freqs)[:3] == [2, 5, 7]
        assert mode_digit([5, 5, 2, 2, 7]) == (2, 2)

    def test_parity_ratios(self):
        assert parity_ratios([2, 4, 5, 7]) == (0.5, 0.5)
        assert parity_ratios([]) == (0.0, 0.0)
