"""Strategy protocol, shared rule helpers, and the decision entry point.

Entries require confluence (a vote over several conditions); exits fire on
the first adverse or favourable condition.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, runtime_checkable

from pulsetrade.errors import PositionInvariantError
from pulsetrade.models.position import Position
from pulsetrade.strategy.models import IndicatorSet, MarketSnapshot, StrategyDecision

logger = logging.getLogger("pulsetrade.strategy")


@runtime_checkable
class StrategyProtocol(Protocol):
    """Interface that all trading strategies must satisfy."""

    name: str

    def should_enter(
        self, symbol: str, snapshot: MarketSnapshot, indicators: IndicatorSet,
    ) -> bool:
        """Return True when a flat symbol should be bought."""
        ...

    def should_exit(
        self,
        symbol: str,
        position: Optional[Position],
        snapshot: MarketSnapshot,
        indicators: IndicatorSet,
    ) -> bool:
        """Return True when the open *position* should be sold."""
        ...


def profit_rate(current_price: float, avg_price: float) -> float:
    """Unrealised return of a long position in percent."""
    return (current_price - avg_price) / avg_price * 100.0


def band_distance_pct(price: float, band: float) -> float:
    """Distance between *price* and *band* as a percentage of the band.

    A zero band (neutral indicators) is infinitely far away.
    """
    if band == 0:
        return float("inf")
    return abs(price - band) / band * 100.0


class VotingStrategy:
    """Base for strategies built from named entry and exit conditions.

    Subclasses set ``name`` and ``ENTRY_THRESHOLD`` and implement
    :meth:`entry_conditions` / :meth:`exit_conditions`, each returning an
    ordered ``{condition_name: bool}`` mapping.
    """

    name: str = ""
    ENTRY_THRESHOLD: int = 1

    def entry_conditions(
        self, snapshot: MarketSnapshot, indicators: IndicatorSet,
    ) -> dict[str, bool]:
        raise NotImplementedError

    def exit_conditions(
        self, position: Position, snapshot: MarketSnapshot, indicators: IndicatorSet,
    ) -> dict[str, bool]:
        raise NotImplementedError

    # ── StrategyProtocol ─────────────────────────────────────────────────

    def should_enter(
        self, symbol: str, snapshot: MarketSnapshot, indicators: IndicatorSet,
    ) -> bool:
        conditions = self.entry_conditions(snapshot, indicators)
        passed = sum(1 for ok in conditions.values() if ok)
        logger.debug(
            "[%s] %s entry conditions: %d/%d (RSI %.2f)",
            symbol, self.name, passed, len(conditions), indicators.rsi,
        )
        return passed >= self.ENTRY_THRESHOLD

    def should_exit(
        self,
        symbol: str,
        position: Optional[Position],
        snapshot: MarketSnapshot,
        indicators: IndicatorSet,
    ) -> bool:
        _require_open(symbol, position)
        triggered = self.triggered_exits(position, snapshot, indicators)
        if triggered:
            logger.info(
                "[%s] %s exit signal: %s (profit %.2f%%)",
                symbol, self.name, ", ".join(triggered),
                profit_rate(snapshot.price, position.avg_price),
            )
        return bool(triggered)

    # ── Reasons ──────────────────────────────────────────────────────────

    def triggered_entries(
        self, snapshot: MarketSnapshot, indicators: IndicatorSet,
    ) -> list[str]:
        return [n for n, ok in self.entry_conditions(snapshot, indicators).items() if ok]

    def triggered_exits(
        self, position: Position, snapshot: MarketSnapshot, indicators: IndicatorSet,
    ) -> list[str]:
        return [
            n for n, ok in self.exit_conditions(position, snapshot, indicators).items() if ok
        ]


def _require_open(symbol: str, position: Optional[Position]) -> None:
    if position is None or not position.is_open:
        raise PositionInvariantError(
            f"Exit evaluated for {symbol} without an open position"
        )


def evaluate(
    strategy: VotingStrategy,
    symbol: str,
    snapshot: MarketSnapshot,
    indicators: IndicatorSet,
    position: Optional[Position] = None,
) -> StrategyDecision:
    """Decide buy / sell / hold for *symbol*.

    Flat symbols are checked for entry, open positions for exit, so an
    entry is never issued on top of an existing position.
    """
    if position is None:
        if strategy.should_enter(symbol, snapshot, indicators):
            return StrategyDecision(
                action="buy",
                reasons=strategy.triggered_entries(snapshot, indicators),
            )
        return StrategyDecision(action="hold")

    if strategy.should_exit(symbol, position, snapshot, indicators):
        return StrategyDecision(
            action="sell",
            reasons=strategy.triggered_exits(position, snapshot, indicators),
            profit_rate=profit_rate(snapshot.price, position.avg_price),
        )
    return StrategyDecision(action="hold")
