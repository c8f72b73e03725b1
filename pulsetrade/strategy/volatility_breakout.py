"""Volatility Breakout strategy — enters expanding-volatility breakouts.

Combines Bollinger band-width expansion, an upper-band break, a volume
surge, RSI momentum and a break of the previous period's high.
"""

from pulsetrade.models.position import Position
from pulsetrade.strategy.base import VotingStrategy, profit_rate
from pulsetrade.strategy.models import IndicatorSet, MarketSnapshot


class VolatilityBreakoutStrategy(VotingStrategy):
    """Buys when at least 3 of 5 breakout conditions agree."""

    name = "volatility_breakout"
    ENTRY_THRESHOLD = 3

    WIDTH_EXPANSION = 1.2
    WIDTH_CONTRACTION = 0.8
    VOLUME_SURGE = 1.5
    TAKE_PROFIT_PCT = 15.0
    STOP_LOSS_PCT = -7.0

    def entry_conditions(
        self, snapshot: MarketSnapshot, indicators: IndicatorSet,
    ) -> dict[str, bool]:
        price = snapshot.price
        prev_high = indicators.prev_high
        return {
            "band_width_expanding": (
                indicators.bollinger_width > indicators.bollinger_width_ma * self.WIDTH_EXPANSION
            ),
            "above_upper_band": price > indicators.bollinger_upper,
            "volume_surge": snapshot.volume_24h > indicators.volume_ma * self.VOLUME_SURGE,
            "rsi_bullish": indicators.rsi > 50,
            "above_previous_high": bool(prev_high) and price > prev_high,
        }

    def exit_conditions(
        self, position: Position, snapshot: MarketSnapshot, indicators: IndicatorSet,
    ) -> dict[str, bool]:
        price = snapshot.price
        profit = profit_rate(price, position.avg_price)
        return {
            "below_lower_band": price < indicators.bollinger_lower,
            "band_width_contracting": (
                indicators.bollinger_width < indicators.bollinger_width_ma * self.WIDTH_CONTRACTION
            ),
            "rsi_oversold": indicators.rsi <= 30,
            "take_profit": profit >= self.TAKE_PROFIT_PCT,
            "stop_loss": profit <= self.STOP_LOSS_PCT,
        }
