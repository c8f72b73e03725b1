"""Technical indicators — RSI, EMA, MACD, Bollinger Bands, volume MA. Pure functions, no I/O.

Every function takes an oldest-first candle list and returns the value at
the newest candle.  When the series is too short the documented neutral
default is returned instead of raising, so evaluators degrade gracefully.
"""

import math
from typing import Optional, Sequence

from pulsetrade.strategy.models import (
    BollingerBands,
    CandleData,
    IndicatorSet,
    MacdResult,
)


# ── EMA ──────────────────────────────────────────────────────────────────


def ema_from_values(values: Sequence[float], period: int) -> float:
    """Exponential Moving Average of *values*.

    The first value seeds the average, then every following value is
    folded in with ``k = 2 / (period + 1)``::

        EMA_today = EMA_yesterday + k × (value - EMA_yesterday)

    Returns ``0.0`` for an empty sequence.
    """
    if not values:
        return 0.0

    k = 2.0 / (period + 1)
    ema = values[0]
    for value in values[1:]:
        ema += k * (value - ema)
    return ema


def ema_at_index(values: Sequence[float], period: int, index: int) -> float:
    """EMA over the *period*-long window of *values* ending at *index*.

    Returns ``0.0`` when *index* is outside the sequence.
    """
    if index < 0 or index >= len(values):
        return 0.0
    start = max(0, index - period + 1)
    return ema_from_values(values[start : index + 1], period)


def calculate_ema(candles: list[CandleData], period: int) -> float:
    """EMA of closing prices across the whole candle list."""
    return ema_from_values([c.close for c in candles], period)


# ── RSI ──────────────────────────────────────────────────────────────────


def calculate_rsi(candles: list[CandleData], period: int = 14) -> float:
    """Relative Strength Index over the trailing *period* close-to-close changes.

    Algorithm (simple averages):
        1. Sum the gains and the losses of the last *period* changes.
        2. avg_gain = gains / period, avg_loss = losses / period
        3. RSI = 100 if avg_loss is 0, else 100 - 100 / (1 + avg_gain / avg_loss)

    Returns ``50.0`` when fewer than ``period + 1`` candles are available.
    """
    if len(candles) < period + 1:
        return 50.0

    gains = 0.0
    losses = 0.0
    for i in range(len(candles) - period, len(candles)):
        change = candles[i].close - candles[i - 1].close
        if change > 0:
            gains += change
        else:
            losses -= change

    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


# ── MACD ─────────────────────────────────────────────────────────────────


def calculate_macd(
    candles: list[CandleData],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MacdResult:
    """Moving Average Convergence Divergence.

    MACD line = EMA(*fast*) − EMA(*slow*) over the full close series.  The
    signal line is the EMA(*signal*) of the historical MACD-line series,
    where each historical point uses windowed EMAs ending at that candle.

    Returns a zero ``MacdResult`` when ``len(candles) <= slow``.
    """
    if len(candles) <= max(fast, slow):
        return MacdResult(macd=0.0, signal=0.0, histogram=0.0)

    closes = [c.close for c in candles]
    macd_line = ema_from_values(closes, fast) - ema_from_values(closes, slow)

    history = [
        ema_at_index(closes, fast, i) - ema_at_index(closes, slow, i)
        for i in range(max(fast, slow), len(closes))
    ]
    signal_line = ema_from_values(history, signal)

    return MacdResult(
        macd=macd_line,
        signal=signal_line,
        histogram=macd_line - signal_line,
    )


# ── Bollinger Bands ──────────────────────────────────────────────────────


def _band_window(window: Sequence[float], multiplier: float) -> tuple[float, float, float]:
    """Return ``(upper, middle, lower)`` for one window (population σ)."""
    sma = sum(window) / len(window)
    variance = sum((x - sma) ** 2 for x in window) / len(window)
    sigma = math.sqrt(variance)
    return sma + multiplier * sigma, sma, sma - multiplier * sigma


def calculate_bollinger(
    candles: list[CandleData],
    period: int = 20,
    multiplier: float = 2.0,
) -> BollingerBands:
    """Calculate Bollinger Bands at the newest candle.

    Middle = SMA(close, *period*)
    Upper  = middle + *multiplier* × σ
    Lower  = middle − *multiplier* × σ
    Width  = upper − lower

    ``width_ma`` is the mean band width of every *period*-long window
    slid across the whole series.

    Returns all-zero bands when fewer than *period* candles are available.
    """
    if len(candles) < period:
        return BollingerBands(upper=0.0, middle=0.0, lower=0.0, width=0.0, width_ma=0.0)

    closes = [c.close for c in candles]
    upper, middle, lower = _band_window(closes[-period:], multiplier)
    width = upper - lower

    widths: list[float] = []
    for end in range(period, len(closes) + 1):
        w_upper, _, w_lower = _band_window(closes[end - period : end], multiplier)
        widths.append(w_upper - w_lower)
    width_ma = sum(widths) / len(widths) if widths else width

    return BollingerBands(
        upper=upper,
        middle=middle,
        lower=lower,
        width=width,
        width_ma=width_ma,
    )


# ── Volume / price levels ────────────────────────────────────────────────


def calculate_volume_ma(candles: list[CandleData], period: int = 20) -> float:
    """Simple moving average of volume over the last *period* candles.

    Returns ``0.0`` when fewer than *period* candles are available.
    """
    if len(candles) < period:
        return 0.0
    volumes = [c.volume for c in candles[-period:]]
    return sum(volumes) / period


def previous_high(candles: list[CandleData]) -> Optional[float]:
    """High of the candle before the newest one, or ``None``."""
    if len(candles) < 2:
        return None
    return candles[-2].high


# ── Aggregate ────────────────────────────────────────────────────────────


def build_indicator_set(candles: list[CandleData]) -> IndicatorSet:
    """Compute the full ``IndicatorSet`` the strategies consume.

    Parameters follow the live configuration: RSI(14), MACD(12, 26, 9),
    Bollinger(20, 2), EMA20, EMA50 and a 20-period volume MA.
    """
    macd = calculate_macd(candles, 12, 26, 9)
    bands = calculate_bollinger(candles, 20, 2.0)
    return IndicatorSet(
        rsi=calculate_rsi(candles, 14),
        macd=macd.macd,
        macd_signal=macd.signal,
        macd_histogram=macd.histogram,
        bollinger_upper=bands.upper,
        bollinger_middle=bands.middle,
        bollinger_lower=bands.lower,
        bollinger_width=bands.width,
        bollinger_width_ma=bands.width_ma,
        ema20=calculate_ema(candles, 20),
        ema50=calculate_ema(candles, 50),
        volume_ma=calculate_volume_ma(candles, 20),
        prev_high=previous_high(candles),
    )
