"""Error taxonomy shared by the scheduler, execution, and backtest layers.

Transient venue problems (``ProviderError``) are logged and skipped per
symbol.  ``PositionInvariantError`` marks a logic error and is never
swallowed silently.
"""


class PulseTradeError(Exception):
    """Base class for all PulseTrade errors."""


class SessionStartError(PulseTradeError):
    """A session could not be started (bad input, already active, low balance)."""


class ProviderError(PulseTradeError):
    """A market-data or order-execution call failed or timed out."""


class OrderRejectedError(ProviderError):
    """The execution provider refused or failed to fill an order."""


class PositionInvariantError(PulseTradeError):
    """Duplicate open position or exit without an open position."""


class BacktestDataError(PulseTradeError):
    """Not enough historical candles to run a backtest."""


class UnknownStrategyError(PulseTradeError, KeyError):
    """The requested strategy name is not registered."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class PositionNotFoundError(PulseTradeError, LookupError):
    """No open position exists for the requested (user, symbol)."""
