"""Mean Reversion strategy — buys oversold dips near the lower Bollinger Band.

Sells as soon as price reverts toward the middle or upper band, or when
the take-profit / stop-loss limits are reached.
"""

from pulsetrade.models.position import Position
from pulsetrade.strategy.base import VotingStrategy, band_distance_pct, profit_rate
from pulsetrade.strategy.models import IndicatorSet, MarketSnapshot

# Maximum distance (percent of the band) that counts as "near" a band.
BAND_PROXIMITY_PCT = 2.0


class MeanReversionStrategy(VotingStrategy):
    """Buys when at least 2 of 3 oversold conditions agree."""

    name = "mean_reversion"
    ENTRY_THRESHOLD = 2

    TAKE_PROFIT_PCT = 8.0
    STOP_LOSS_PCT = -4.0

    def entry_conditions(
        self, snapshot: MarketSnapshot, indicators: IndicatorSet,
    ) -> dict[str, bool]:
        price = snapshot.price
        return {
            "rsi_oversold": indicators.rsi <= 30,
            "near_lower_band": (
                band_distance_pct(price, indicators.bollinger_lower) <= BAND_PROXIMITY_PCT
            ),
            "below_middle_band": price < indicators.bollinger_middle,
        }

    def exit_conditions(
        self, position: Position, snapshot: MarketSnapshot, indicators: IndicatorSet,
    ) -> dict[str, bool]:
        price = snapshot.price
        profit = profit_rate(price, position.avg_price)
        return {
            "rsi_overbought": indicators.rsi >= 70,
            "near_upper_band": (
                band_distance_pct(price, indicators.bollinger_upper) <= BAND_PROXIMITY_PCT
            ),
            "above_middle_band": price > indicators.bollinger_middle,
            "take_profit": profit >= self.TAKE_PROFIT_PCT,
            "stop_loss": profit <= self.STOP_LOSS_PCT,
        }
