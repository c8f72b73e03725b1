"""Strategy data models — typed inputs and outputs of indicators and strategies."""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class CandleData:
    """A single OHLCV bar for strategy consumption (oldest-first series)."""

    time: str
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class MarketSnapshot:
    """Current quote for one symbol."""

    symbol: str
    price: float
    change_rate: float = 0.0
    volume_24h: float = 0.0


@dataclass(frozen=True)
class MacdResult:
    """MACD line, its signal line, and the histogram."""

    macd: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class BollingerBands:
    """Latest Bollinger Bands plus band width and its moving average."""

    upper: float
    middle: float
    lower: float
    width: float
    width_ma: float


@dataclass(frozen=True)
class IndicatorSet:
    """Every indicator the strategies read, computed at one point in time."""

    rsi: float
    macd: float
    macd_signal: float
    macd_histogram: float
    bollinger_upper: float
    bollinger_middle: float
    bollinger_lower: float
    bollinger_width: float
    bollinger_width_ma: float
    ema20: float
    ema50: float
    volume_ma: float
    prev_high: Optional[float] = None

    @classmethod
    def neutral(cls) -> "IndicatorSet":
        """Defaults used when there is not enough data to compute anything."""
        return cls(
            rsi=50.0,
            macd=0.0,
            macd_signal=0.0,
            macd_histogram=0.0,
            bollinger_upper=0.0,
            bollinger_middle=0.0,
            bollinger_lower=0.0,
            bollinger_width=0.0,
            bollinger_width_ma=0.0,
            ema20=0.0,
            ema50=0.0,
            volume_ma=0.0,
            prev_high=None,
        )


@dataclass(frozen=True)
class StrategyDecision:
    """Outcome of one strategy evaluation."""

    action: str  # "buy", "sell" or "hold"
    reasons: list[str] = field(default_factory=list)
    profit_rate: Optional[float] = None  # sell only
