"""Execution coordinator — turns strategy decisions into orders and records.

Owns the position state: a position is opened or closed, and its trade
recorded, only after the venue accepted the order.  A rejected order leaves
the store untouched.
"""

import asyncio
import logging
from typing import Optional

from pulsetrade.broker.base import OrderExecutionProvider
from pulsetrade.errors import OrderRejectedError, PositionInvariantError
from pulsetrade.models.position import Position
from pulsetrade.models.session import SessionSettings
from pulsetrade.repos.position_repo import PositionRepo
from pulsetrade.strategy.base import profit_rate
from pulsetrade.strategy.models import MarketSnapshot

logger = logging.getLogger("pulsetrade.execution")

# Venue quantity precision
_QUANTITY_DECIMALS = 8


class ExecutionCoordinator:
    """Places buy/sell orders and keeps positions consistent with fills.

    Args:
        broker: Order execution provider.
        positions: Position repository (also records trades).
        order_timeout: Seconds allowed for a single order submission.
    """

    def __init__(
        self,
        broker: OrderExecutionProvider,
        positions: PositionRepo,
        order_timeout: float = 10.0,
    ) -> None:
        self._broker = broker
        self._positions = positions
        self._order_timeout = order_timeout
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def lock_for(self, user_id: str, symbol: str) -> asyncio.Lock:
        """Lock serialising read-evaluate-execute for one (user, symbol)."""
        key = (user_id, symbol)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    # ── Buy ──────────────────────────────────────────────────────────────

    async def buy(
        self,
        user_id: str,
        symbol: str,
        snapshot: MarketSnapshot,
        settings: SessionSettings,
        session_id: Optional[str] = None,
        strategy: Optional[str] = None,
    ) -> Position:
        """Open a long position sized at ``order_budget / price``.

        Raises:
            PositionInvariantError: (user, symbol) already has an open position.
            OrderRejectedError: the venue failed, timed out or refused the order.
        """
        if self._positions.get_open(user_id, symbol) is not None:
            raise PositionInvariantError(
                f"Buy requested for {symbol} while a position is already open"
            )

        price = snapshot.price
        if price <= 0:
            raise OrderRejectedError(f"Invalid price for {symbol}: {price}")
        quantity = round(settings.order_budget / price, _QUANTITY_DECIMALS)
        if quantity <= 0:
            raise OrderRejectedError(
                f"Order budget {settings.order_budget} buys nothing of {symbol} at {price}"
            )

        logger.info("Buy attempt: %s @ %s × %.8f", symbol, price, quantity)
        order = await self._submit(
            self._broker.submit_buy(user_id, symbol, price, quantity), symbol, "buy",
        )

        position = self._positions.open_position(
            user_id=user_id,
            symbol=symbol,
            quantity=quantity,
            price=price,
            order_ref=order.order_ref,
            session_id=session_id,
            strategy=strategy,
        )
        logger.info("Buy complete: %s @ %s (order %s)", symbol, price, order.order_ref)
        return position

    # ── Sell ─────────────────────────────────────────────────────────────

    async def sell(
        self,
        user_id: str,
        symbol: str,
        snapshot: MarketSnapshot,
        position: Optional[Position],
        session_id: Optional[str] = None,
        strategy: Optional[str] = None,
    ) -> Position:
        """Sell the full quantity of *position* and close it.

        Raises:
            PositionInvariantError: *position* is missing or not open.
            OrderRejectedError: the venue failed, timed out or refused the order.
        """
        if position is None or not position.is_open:
            raise PositionInvariantError(
                f"Sell requested for {symbol} without an open position"
            )

        price = snapshot.price
        logger.info("Sell attempt: %s @ %s × %.8f", symbol, price, position.quantity)
        order = await self._submit(
            self._broker.submit_sell(user_id, symbol, price, position.quantity),
            symbol,
            "sell",
        )

        realised = profit_rate(price, position.avg_price)
        closed = self._positions.close_position(
            position,
            price=price,
            profit_rate=realised,
            order_ref=order.order_ref,
            session_id=session_id,
            strategy=strategy,
        )
        logger.info("Sell complete: %s @ %s (profit %.2f%%)", symbol, price, realised)
        return closed

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _submit(self, call, symbol: str, side: str):
        try:
            return await asyncio.wait_for(call, timeout=self._order_timeout)
        except asyncio.TimeoutError as exc:
            raise OrderRejectedError(
                f"{side.capitalize()} order for {symbol} timed out after "
                f"{self._order_timeout:.1f}s"
            ) from exc
        except OrderRejectedError:
            raise
        except Exception as exc:
            raise OrderRejectedError(
                f"{side.capitalize()} order for {symbol} failed: {exc}"
            ) from exc
