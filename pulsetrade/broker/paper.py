"""Paper broker — in-process simulated venue.

Fills every order immediately at the requested price and keeps a cash
balance per user.  Used for paper mode and as the execution provider in
tests.
"""

import logging
import uuid
from datetime import datetime, timezone

from pulsetrade.broker.models import OrderResponse
from pulsetrade.errors import OrderRejectedError

logger = logging.getLogger("pulsetrade")


class PaperBroker:
    """Simulated order execution provider.

    Args:
        starting_balance: Cash credited to a user the first time they are seen.
    """

    def __init__(self, starting_balance: float = 1_000_000.0) -> None:
        self._starting_balance = starting_balance
        self._balances: dict[str, float] = {}
        self._fail_next: int = 0
        self.orders: list[OrderResponse] = []

    # ── Test / operator hooks ────────────────────────────────────────────

    def set_balance(self, user_id: str, balance: float) -> None:
        self._balances[user_id] = balance

    def fail_next_orders(self, count: int = 1) -> None:
        """Reject the next *count* orders with ``OrderRejectedError``."""
        self._fail_next = count

    # ── OrderExecutionProvider ───────────────────────────────────────────

    async def get_available_balance(self, user_id: str) -> float:
        return self._balances.setdefault(user_id, self._starting_balance)

    async def submit_buy(
        self, user_id: str, symbol: str, price: float, quantity: float,
    ) -> OrderResponse:
        cost = price * quantity
        balance = await self.get_available_balance(user_id)
        self._maybe_reject(symbol, "buy")
        if cost > balance:
            raise OrderRejectedError(
                f"Insufficient balance for {symbol}: need {cost:.2f}, have {balance:.2f}"
            )
        self._balances[user_id] = balance - cost
        return self._fill(symbol, "buy", price, quantity)

    async def submit_sell(
        self, user_id: str, symbol: str, price: float, quantity: float,
    ) -> OrderResponse:
        balance = await self.get_available_balance(user_id)
        self._maybe_reject(symbol, "sell")
        self._balances[user_id] = balance + price * quantity
        return self._fill(symbol, "sell", price, quantity)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _maybe_reject(self, symbol: str, side: str) -> None:
        if self._fail_next > 0:
            self._fail_next -= 1
            raise OrderRejectedError(f"Paper venue rejected {side} order for {symbol}")

    def _fill(self, symbol: str, side: str, price: float, quantity: float) -> OrderResponse:
        resp = OrderResponse(
            order_ref=str(uuid.uuid4()),
            symbol=symbol,
            side=side,
            price=price,
            quantity=quantity,
            time=datetime.now(timezone.utc).isoformat(),
        )
        self.orders.append(resp)
        logger.info("Paper %s filled: %s %.8f @ %s", side, symbol, quantity, price)
        return resp
