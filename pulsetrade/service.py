"""Trading service — caller-facing operations over the engine components.

Wires the repositories, execution coordinator, session scheduler and
backtest engine together.  The API router and the CLI only talk to this
class.
"""

import asyncio
import logging
import math
from dataclasses import asdict
from datetime import date, datetime, timezone
from typing import Optional

from pulsetrade.backtest.engine import BacktestEngine
from pulsetrade.broker.base import MarketDataProvider, OrderExecutionProvider
from pulsetrade.config import Config
from pulsetrade.errors import (
    BacktestDataError,
    PositionNotFoundError,
    ProviderError,
    SessionStartError,
)
from pulsetrade.execution import ExecutionCoordinator
from pulsetrade.models.session import SessionSettings
from pulsetrade.repos.backtest_repo import BacktestRepo
from pulsetrade.repos.position_repo import PositionRepo
from pulsetrade.repos.session_repo import SessionRepo
from pulsetrade.repos.trade_repo import TradeRepo
from pulsetrade.scheduler import SessionScheduler
from pulsetrade.strategy.base import profit_rate

logger = logging.getLogger("pulsetrade")

# Upper bound on daily candles requested for one backtest.
_MAX_BACKTEST_CANDLES = 1000

# Candle fetches are budgeted one request timeout per page of this size.
_CANDLES_PER_PAGE = 200


class TradingService:
    """Facade exposing session, position, trade and backtest operations.

    Args:
        config: Application configuration.
        market_data: Quote and candle provider.
        broker: Order execution provider.
    """

    def __init__(
        self,
        config: Config,
        market_data: MarketDataProvider,
        broker: OrderExecutionProvider,
    ) -> None:
        self._config = config
        self._market_data = market_data
        self._broker = broker

        self.sessions = SessionRepo(config.db_path)
        self.positions = PositionRepo(config.db_path)
        self.trades = TradeRepo(config.db_path)
        self.backtests = BacktestRepo(config.db_path)

        self.coordinator = ExecutionCoordinator(
            broker, self.positions, order_timeout=config.request_timeout_seconds,
        )
        self.scheduler = SessionScheduler(
            market_data=market_data,
            broker=broker,
            coordinator=self.coordinator,
            sessions=self.sessions,
            positions=self.positions,
            request_timeout=config.request_timeout_seconds,
            inter_symbol_delay=config.inter_symbol_delay_seconds,
            candle_granularity=f"M{config.candle_unit_minutes}",
            candle_count=config.candle_count,
            max_consecutive_failures=config.max_consecutive_failures,
        )
        self._backtest_engine = BacktestEngine()

    # ── Sessions ─────────────────────────────────────────────────────────

    async def start_session(
        self,
        user_id: str,
        strategy: str,
        symbols: list[str],
        investment_amount: float,
        max_positions: int = 5,
        polling_interval: int = 60,
    ) -> dict:
        """Start a trading session and return its status."""
        try:
            settings = SessionSettings(
                investment_amount=investment_amount,
                max_positions=max_positions,
                polling_interval=polling_interval,
            )
        except ValueError as exc:
            raise SessionStartError(str(exc)) from exc

        await self.scheduler.start(user_id, strategy, symbols, settings)
        return self.scheduler.get_status(user_id)

    def stop_session(self, user_id: str) -> dict:
        """Stop the user's session.  Safe to call when nothing is running."""
        stopped = self.scheduler.stop(user_id)
        return {"stopped": stopped, **self.scheduler.get_status(user_id)}

    def get_session_status(self, user_id: str) -> dict:
        return self.scheduler.get_status(user_id)

    # ── Positions & trades ───────────────────────────────────────────────

    async def list_open_positions(self, user_id: str) -> list[dict]:
        """Open positions with current price and unrealised profit rate.

        A symbol whose quote cannot be fetched is returned with
        ``current_price`` and ``profit_rate`` set to ``None``.
        """
        result = []
        for position in self.positions.list_open(user_id):
            entry = asdict(position)
            try:
                snapshot = await asyncio.wait_for(
                    self._market_data.get_snapshot(position.symbol),
                    timeout=self._config.request_timeout_seconds,
                )
            except (ProviderError, asyncio.TimeoutError) as exc:
                logger.warning("Quote unavailable for %s: %s", position.symbol, exc)
                entry["current_price"] = None
                entry["profit_rate"] = None
            else:
                entry["current_price"] = snapshot.price
                entry["profit_rate"] = profit_rate(snapshot.price, position.avg_price)
            result.append(entry)
        return result

    def list_trade_history(self, user_id: str, page: int = 1, limit: int = 50) -> dict:
        history = self.trades.get_trades(user_id, page=page, limit=limit)
        history["trades"] = [asdict(t) for t in history["trades"]]
        return history

    async def force_close_position(self, user_id: str, symbol: str) -> dict:
        """Sell the user's open position in *symbol* at the current price.

        Raises:
            PositionNotFoundError: no open position for (user, symbol).
            ProviderError: the quote or the sell order failed.
        """
        async with self.coordinator.lock_for(user_id, symbol):
            position = self.positions.get_open(user_id, symbol)
            if position is None:
                raise PositionNotFoundError(
                    f"No open position in {symbol} for user {user_id}"
                )
            timeout = self._config.request_timeout_seconds
            try:
                snapshot = await asyncio.wait_for(
                    self._market_data.get_snapshot(symbol), timeout=timeout,
                )
            except asyncio.TimeoutError as exc:
                raise ProviderError(
                    f"Quote for {symbol} timed out after {timeout:.1f}s"
                ) from exc
            active = self.scheduler.registry.lookup(user_id)
            closed = await self.coordinator.sell(
                user_id, symbol, snapshot, position,
                session_id=active.session.session_id if active else position.session_id,
                strategy="manual",
            )
        logger.info("Position %s closed manually for user %s", symbol, user_id)
        return asdict(closed)

    # ── Backtests ────────────────────────────────────────────────────────

    async def run_backtest(
        self,
        strategy: str,
        symbol: str,
        start_date: str,
        end_date: str,
        initial_amount: float,
        user_id: Optional[str] = None,
    ) -> dict:
        """Fetch daily candles, replay them and persist the summary.

        Raises:
            BacktestDataError: bad date range, non-positive amount or too
                few candles in range.
            UnknownStrategyError: *strategy* is not registered.
            ProviderError: candles could not be fetched.
        """
        if initial_amount <= 0:
            raise BacktestDataError(
                f"initial_amount must be positive, got {initial_amount}"
            )
        try:
            start = date.fromisoformat(str(start_date)[:10])
            end = date.fromisoformat(str(end_date)[:10])
        except ValueError as exc:
            raise BacktestDataError(f"Invalid backtest date: {exc}") from exc
        if start > end:
            raise BacktestDataError(f"start_date {start} is after end_date {end}")

        today = datetime.now(timezone.utc).date()
        count = min(max((today - start).days + 1, 1), _MAX_BACKTEST_CANDLES)
        pages = math.ceil(count / _CANDLES_PER_PAGE)
        timeout = self._config.request_timeout_seconds * pages
        try:
            candles = await asyncio.wait_for(
                self._market_data.fetch_candles(symbol, "D", count), timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderError(
                f"Daily candles for {symbol} timed out after {timeout:.1f}s"
            ) from exc

        result = await asyncio.to_thread(
            self._backtest_engine.run,
            strategy, symbol, candles, start, end, initial_amount,
        )
        result["id"] = self.backtests.insert_result(result, user_id=user_id)
        return result

    def list_backtests(self, user_id: Optional[str] = None, limit: int = 10) -> list[dict]:
        return self.backtests.get_results(user_id=user_id, limit=limit)

    # ── Process lifecycle ────────────────────────────────────────────────

    def recover(self) -> list[str]:
        return self.scheduler.recover()

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
