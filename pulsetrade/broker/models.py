"""Broker data models — typed representations of venue objects."""

from dataclasses import dataclass


@dataclass(frozen=True)
class OrderResponse:
    """Acknowledgement of a submitted order."""

    order_ref: str
    symbol: str
    side: str
    price: float
    quantity: float
    time: str
