"""Momentum strategy — rides established up-trends confirmed by RSI, MACD and EMAs."""

from pulsetrade.models.position import Position
from pulsetrade.strategy.base import VotingStrategy, profit_rate
from pulsetrade.strategy.models import IndicatorSet, MarketSnapshot


class MomentumStrategy(VotingStrategy):
    """Buys when at least 3 of 4 trend conditions agree.

    Exits on RSI overbought, bearish MACD, +10 % take-profit or −5 %
    stop-loss, whichever comes first.
    """

    name = "momentum"
    ENTRY_THRESHOLD = 3

    TAKE_PROFIT_PCT = 10.0
    STOP_LOSS_PCT = -5.0

    def entry_conditions(
        self, snapshot: MarketSnapshot, indicators: IndicatorSet,
    ) -> dict[str, bool]:
        price = snapshot.price
        return {
            "rsi_neutral": 30 < indicators.rsi < 70,
            "macd_above_signal": indicators.macd > indicators.macd_signal,
            "price_above_ema20": price > indicators.ema20,
            "ema20_above_ema50": indicators.ema20 > indicators.ema50,
        }

    def exit_conditions(
        self, position: Position, snapshot: MarketSnapshot, indicators: IndicatorSet,
    ) -> dict[str, bool]:
        profit = profit_rate(snapshot.price, position.avg_price)
        return {
            "rsi_overbought": indicators.rsi > 70,
            "macd_below_signal": indicators.macd < indicators.macd_signal,
            "take_profit": profit >= self.TAKE_PROFIT_PCT,
            "stop_loss": profit <= self.STOP_LOSS_PCT,
        }
