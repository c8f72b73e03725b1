"""Backtest engine — replays historical candles through a live strategy.

Uses the same indicator and strategy functions as the scheduler, with a
single simulated cash balance and at most one simulated position.  No
orders are placed and no position records are touched.
"""

import logging
import math
from datetime import date, datetime
from typing import Optional, Union

from pulsetrade.backtest.stats import calculate_stats
from pulsetrade.errors import BacktestDataError
from pulsetrade.models.position import Position
from pulsetrade.strategy.base import profit_rate
from pulsetrade.strategy.indicators import build_indicator_set
from pulsetrade.strategy.models import CandleData, MarketSnapshot
from pulsetrade.strategy.registry import get_strategy, resolve_strategy_name

logger = logging.getLogger("pulsetrade.backtest")

# Minimum candles left after date filtering.
MIN_BACKTEST_CANDLES = 30
# First candle index evaluated, so indicators have warmed up.
WARMUP_CANDLES = 50
# Share of the cash balance committed to each entry.
ALLOCATION = 0.95
# Trades kept in the returned ledger.
LEDGER_LIMIT = 100

DateLike = Union[str, date, datetime]


def _to_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def filter_candles(
    candles: list[CandleData], start_date: DateLike, end_date: DateLike,
) -> list[CandleData]:
    """Candles whose date falls within ``[start_date, end_date]``, oldest-first."""
    start = _to_date(start_date)
    end = _to_date(end_date)
    window = [c for c in candles if start <= _to_date(c.time) <= end]
    return sorted(window, key=lambda c: c.time)


class BacktestEngine:
    """Simulates one strategy on one symbol over historical daily candles."""

    def run(
        self,
        strategy: str,
        symbol: str,
        candles: list[CandleData],
        start_date: DateLike,
        end_date: DateLike,
        initial_amount: float,
    ) -> dict:
        """Execute a full backtest.

        Args:
            strategy: Strategy registry key.
            symbol: Symbol being simulated (used for labelling).
            candles: Historical candles in any order; filtered by date.
            start_date: First date included (inclusive).
            end_date: Last date included (inclusive).
            initial_amount: Starting cash balance.

        Returns:
            Summary dict with ``final_amount``, ``total_return``,
            ``total_trades``, ``win_count``, ``loss_count``, ``win_rate``,
            ``total_profit`` and the last ``LEDGER_LIMIT`` ledger entries
            under ``trades``.

        Raises:
            BacktestDataError: fewer than ``MIN_BACKTEST_CANDLES`` candles
                remain after filtering.
            UnknownStrategyError: *strategy* is not registered.
        """
        strategy_name = resolve_strategy_name(strategy).value
        impl = get_strategy(strategy_name)

        window = filter_candles(candles, start_date, end_date)
        if len(window) < MIN_BACKTEST_CANDLES:
            raise BacktestDataError(
                f"Not enough data to backtest {symbol}: {len(window)} candles "
                f"between {start_date} and {end_date} (need {MIN_BACKTEST_CANDLES})"
            )

        logger.info(
            "Backtest start: %s on %s (%s – %s, %d candles)",
            strategy_name, symbol, start_date, end_date, len(window),
        )

        balance = float(initial_amount)
        position: Optional[Position] = None
        ledger: list[dict] = []
        total_profit = 0.0
        win_count = 0
        loss_count = 0

        for i in range(WARMUP_CANDLES, len(window)):
            candle = window[i]
            indicators = build_indicator_set(window[: i + 1])
            snapshot = MarketSnapshot(
                symbol=symbol, price=candle.close, volume_24h=candle.volume,
            )

            if position is None:
                if not impl.should_enter(symbol, snapshot, indicators):
                    continue
                if balance <= candle.close:
                    continue
                quantity = math.floor(balance * ALLOCATION / candle.close)
                if quantity <= 0:
                    continue
                balance -= quantity * candle.close
                position = Position(
                    id=0,
                    user_id="backtest",
                    symbol=symbol,
                    quantity=quantity,
                    avg_price=candle.close,
                    status="open",
                    opened_at=candle.time,
                )
                ledger.append({
                    "type": "buy",
                    "date": candle.time,
                    "price": candle.close,
                    "quantity": quantity,
                    "balance": balance + quantity * candle.close,
                })
            elif impl.should_exit(symbol, position, snapshot, indicators):
                profit = profit_rate(candle.close, position.avg_price)
                balance += position.quantity * candle.close
                total_profit += profit
                if profit > 0:
                    win_count += 1
                else:
                    loss_count += 1
                ledger.append(self._sell_entry(candle, position, profit, balance))
                position = None

        if position is not None:
            last = window[-1]
            profit = profit_rate(last.close, position.avg_price)
            balance += position.quantity * last.close
            total_profit += profit
            if profit > 0:
                win_count += 1
            else:
                loss_count += 1
            ledger.append(self._sell_entry(last, position, profit, balance))

        total_trades = win_count + loss_count
        win_rate = win_count / total_trades * 100.0 if total_trades > 0 else 0.0
        total_return = (balance - initial_amount) / initial_amount * 100.0

        logger.info(
            "Backtest complete: %d trades, return %.2f%%, win rate %.1f%%",
            total_trades, total_return, win_rate,
        )

        stats = calculate_stats(ledger, initial_amount)

        return {
            "strategy": strategy_name,
            "symbol": symbol,
            "start_date": str(start_date),
            "end_date": str(end_date),
            "initial_amount": initial_amount,
            "final_amount": balance,
            "total_return": total_return,
            "total_profit": total_profit,
            "total_trades": total_trades,
            "win_count": win_count,
            "loss_count": loss_count,
            "win_rate": win_rate,
            **stats,
            "trades": ledger[-LEDGER_LIMIT:],
        }

    @staticmethod
    def _sell_entry(
        candle: CandleData, position: Position, profit: float, balance: float,
    ) -> dict:
        return {
            "type": "sell",
            "date": candle.time,
            "price": candle.close,
            "quantity": position.quantity,
            "profit": profit,
            "balance": balance,
        }
