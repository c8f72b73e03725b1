"""Provider protocols consumed by the scheduler, execution, and backtest layers."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pulsetrade.broker.models import OrderResponse
from pulsetrade.strategy.models import CandleData, MarketSnapshot


@runtime_checkable
class MarketDataProvider(Protocol):
    """Source of quotes and candles."""

    async def get_snapshot(self, symbol: str) -> MarketSnapshot:
        ...

    async def fetch_candles(
        self, symbol: str, granularity: str, count: int = 200,
    ) -> list[CandleData]:
        """Return candles ordered oldest-first."""
        ...


@runtime_checkable
class OrderExecutionProvider(Protocol):
    """Venue that accepts buy and sell orders for a user."""

    async def submit_buy(
        self, user_id: str, symbol: str, price: float, quantity: float,
    ) -> OrderResponse:
        ...

    async def submit_sell(
        self, user_id: str, symbol: str, price: float, quantity: float,
    ) -> OrderResponse:
        ...

    async def get_available_balance(self, user_id: str) -> float:
        ...
