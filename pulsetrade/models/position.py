"""Position and trade records as returned by the repositories."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Position:
    """A long holding in one symbol for one user."""

    id: int
    user_id: str
    symbol: str
    quantity: float
    avg_price: float
    status: str  # "open" or "closed"
    opened_at: str
    side: str = "long"
    order_ref: Optional[str] = None
    session_id: Optional[str] = None
    closed_at: Optional[str] = None
    profit_rate: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.status == "open"


@dataclass(frozen=True)
class Trade:
    """An immutable fill record."""

    id: int
    user_id: str
    symbol: str
    side: str  # "buy" or "sell"
    price: float
    quantity: float
    created_at: str
    order_ref: Optional[str] = None
    profit_rate: Optional[float] = None
    session_id: Optional[str] = None
    strategy: Optional[str] = None
