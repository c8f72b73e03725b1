"""Strategy registry — maps strategy names to classes.

Used by the scheduler and the backtest engine to instantiate the strategy
named in a session or backtest request.
"""

from enum import Enum

from pulsetrade.errors import UnknownStrategyError
from pulsetrade.strategy.base import VotingStrategy
from pulsetrade.strategy.mean_reversion import MeanReversionStrategy
from pulsetrade.strategy.momentum import MomentumStrategy
from pulsetrade.strategy.volatility_breakout import VolatilityBreakoutStrategy


class StrategyName(str, Enum):
    MOMENTUM = "momentum"
    MEAN_REVERSION = "mean_reversion"
    VOLATILITY_BREAKOUT = "volatility_breakout"


STRATEGY_REGISTRY: dict[StrategyName, type[VotingStrategy]] = {
    StrategyName.MOMENTUM: MomentumStrategy,
    StrategyName.MEAN_REVERSION: MeanReversionStrategy,
    StrategyName.VOLATILITY_BREAKOUT: VolatilityBreakoutStrategy,
}

# camelCase names used by older clients
_ALIASES = {
    "meanReversion": StrategyName.MEAN_REVERSION,
    "volatilityBreakout": StrategyName.VOLATILITY_BREAKOUT,
}


def resolve_strategy_name(name: str) -> StrategyName:
    """Normalise *name* to a ``StrategyName``.

    Raises ``UnknownStrategyError`` if the name is not registered.
    """
    if name in _ALIASES:
        return _ALIASES[name]
    try:
        return StrategyName(name)
    except ValueError:
        raise UnknownStrategyError(
            f"Unknown strategy '{name}'. "
            f"Available: {', '.join(s.value for s in StrategyName)}"
        ) from None


def get_strategy(name: str) -> VotingStrategy:
    """Look up and instantiate a strategy by registry key."""
    return STRATEGY_REGISTRY[resolve_strategy_name(name)]()
