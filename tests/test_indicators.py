"""Tests for pulsetrade.strategy.indicators — pure indicator functions."""

import math

import pytest

from pulsetrade.strategy.indicators import (
    build_indicator_set,
    calculate_bollinger,
    calculate_ema,
    calculate_macd,
    calculate_rsi,
    calculate_volume_ma,
    ema_at_index,
    ema_from_values,
    previous_high,
)
from pulsetrade.strategy.models import CandleData, IndicatorSet


# ── Helpers ──────────────────────────────────────────────────────────────


def _candles(closes: list[float], volume: float = 1000.0) -> list[CandleData]:
    return [
        CandleData(
            time=f"2024-01-01T00:{i // 60:02d}:{i % 60:02d}",
            open=c,
            high=c + 1.0,
            low=c - 1.0,
            close=c,
            volume=volume,
        )
        for i, c in enumerate(closes)
    ]


def _wave(n: int) -> list[float]:
    return [100.0 + 10.0 * math.sin(i / 4.0) for i in range(n)]


# ── EMA ──────────────────────────────────────────────────────────────────


class TestEma:
    def test_empty_is_zero(self):
        assert ema_from_values([], 20) == 0.0

    def test_single_value_seeds(self):
        assert ema_from_values([42.0], 20) == 42.0

    def test_constant_series_is_exact(self):
        assert calculate_ema(_candles([100.0] * 60), 20) == 100.0

    def test_known_value(self):
        # k = 2 / (3 + 1) = 0.5 → 1, 1.5, 2.25
        assert ema_from_values([1.0, 2.0, 3.0], 3) == pytest.approx(2.25)

    def test_rising_series_lags_price(self):
        closes = [float(i) for i in range(1, 61)]
        ema = calculate_ema(_candles(closes), 20)
        assert ema < closes[-1]
        assert ema > closes[0]

    def test_at_index_out_of_range(self):
        assert ema_at_index([1.0, 2.0], 3, 5) == 0.0
        assert ema_at_index([1.0, 2.0], 3, -1) == 0.0

    def test_at_index_uses_trailing_window(self):
        values = [100.0, 100.0, 1.0, 2.0, 3.0]
        assert ema_at_index(values, 3, 4) == pytest.approx(ema_from_values([1.0, 2.0, 3.0], 3))


# ── RSI ──────────────────────────────────────────────────────────────────


class TestRsi:
    def test_short_series_is_neutral(self):
        assert calculate_rsi(_candles([100.0] * 14), 14) == 50.0

    def test_only_gains_is_100(self):
        closes = [100.0 + i for i in range(20)]
        assert calculate_rsi(_candles(closes), 14) == 100.0

    def test_only_losses_is_0(self):
        closes = [100.0 - i for i in range(20)]
        assert calculate_rsi(_candles(closes), 14) == 0.0

    def test_equal_gains_and_losses_is_50(self):
        closes = [100.0 if i % 2 == 0 else 101.0 for i in range(15)]
        assert calculate_rsi(_candles(closes), 14) == pytest.approx(50.0)

    def test_in_range(self):
        rsi = calculate_rsi(_candles(_wave(80)), 14)
        assert 0.0 <= rsi <= 100.0


# ── MACD ─────────────────────────────────────────────────────────────────


class TestMacd:
    def test_short_series_is_zero(self):
        result = calculate_macd(_candles([100.0] * 26))
        assert (result.macd, result.signal, result.histogram) == (0.0, 0.0, 0.0)

    def test_histogram_is_difference(self):
        result = calculate_macd(_candles(_wave(80)))
        assert result.histogram == pytest.approx(result.macd - result.signal)

    def test_rising_series_positive_macd(self):
        closes = [100.0 + i for i in range(60)]
        assert calculate_macd(_candles(closes)).macd > 0

    def test_constant_series_is_flat(self):
        result = calculate_macd(_candles([100.0] * 60))
        assert result.macd == 0.0
        assert result.signal == 0.0


# ── Bollinger Bands ──────────────────────────────────────────────────────


class TestBollinger:
    def test_short_series_is_zero(self):
        bands = calculate_bollinger(_candles([100.0] * 19))
        assert bands.upper == bands.middle == bands.lower == 0.0
        assert bands.width == bands.width_ma == 0.0

    def test_ordering(self):
        bands = calculate_bollinger(_candles(_wave(60)))
        assert bands.lower <= bands.middle <= bands.upper

    def test_population_sigma(self):
        # window of 20: ten 99s and ten 101s → σ = 1
        closes = [99.0, 101.0] * 10
        bands = calculate_bollinger(_candles(closes), 20, 2.0)
        assert bands.middle == pytest.approx(100.0)
        assert bands.upper == pytest.approx(102.0)
        assert bands.lower == pytest.approx(98.0)
        assert bands.width == pytest.approx(4.0)

    def test_width_ma_single_window_equals_width(self):
        bands = calculate_bollinger(_candles(_wave(20)))
        assert bands.width_ma == pytest.approx(bands.width)

    def test_constant_series_collapses(self):
        bands = calculate_bollinger(_candles([100.0] * 40))
        assert bands.upper == bands.lower == 100.0
        assert bands.width == 0.0


# ── Volume / previous high ───────────────────────────────────────────────


class TestVolumeAndHigh:
    def test_volume_ma_short_is_zero(self):
        assert calculate_volume_ma(_candles([100.0] * 5), 20) == 0.0

    def test_volume_ma(self):
        assert calculate_volume_ma(_candles([100.0] * 30, volume=250.0), 20) == 250.0

    def test_previous_high(self):
        candles = _candles([100.0, 105.0, 103.0])
        assert previous_high(candles) == 106.0

    def test_previous_high_short(self):
        assert previous_high(_candles([100.0])) is None


# ── Aggregate ────────────────────────────────────────────────────────────


class TestIndicatorSet:
    def test_neutral_defaults(self):
        neutral = IndicatorSet.neutral()
        assert neutral.rsi == 50.0
        assert neutral.macd == neutral.macd_signal == 0.0
        assert neutral.bollinger_upper == 0.0
        assert neutral.prev_high is None

    def test_build_from_short_series_matches_neutral_fields(self):
        ind = build_indicator_set(_candles([100.0] * 5))
        assert ind.rsi == 50.0
        assert ind.macd == 0.0
        assert ind.bollinger_middle == 0.0
        assert ind.volume_ma == 0.0

    def test_build_full_series(self):
        ind = build_indicator_set(_candles(_wave(120)))
        assert 0.0 <= ind.rsi <= 100.0
        assert ind.bollinger_lower <= ind.bollinger_middle <= ind.bollinger_upper
        assert ind.volume_ma == 1000.0
        assert ind.prev_high is not None
