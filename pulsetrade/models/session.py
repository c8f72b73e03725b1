"""Trading session dataclasses.

Represents one user's automated trading configuration and its lifecycle.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class SessionSettings:
    """Per-session sizing and polling settings."""

    investment_amount: float
    max_positions: int = 5
    polling_interval: int = 60  # seconds between ticks

    def __post_init__(self) -> None:
        if self.investment_amount <= 0:
            raise ValueError(
                f"investment_amount must be positive, got {self.investment_amount}"
            )
        if self.max_positions <= 0:
            raise ValueError(f"max_positions must be positive, got {self.max_positions}")
        if self.polling_interval <= 0:
            raise ValueError(
                f"polling_interval must be positive, got {self.polling_interval}"
            )

    @property
    def order_budget(self) -> float:
        """Cash committed to a single buy order."""
        return self.investment_amount / self.max_positions

    def to_dict(self) -> dict:
        return {
            "investment_amount": self.investment_amount,
            "max_positions": self.max_positions,
            "polling_interval": self.polling_interval,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionSettings":
        return cls(
            investment_amount=float(data["investment_amount"]),
            max_positions=int(data.get("max_positions", 5)),
            polling_interval=int(data.get("polling_interval", 60)),
        )


@dataclass(frozen=True)
class TradingSession:
    """A persisted trading session.

    ``status`` is ``"active"`` or ``"stopped"``; the row in
    ``trading_sessions`` is the source of truth across restarts.
    """

    session_id: str
    user_id: str
    strategy: str
    symbols: list[str]
    settings: SessionSettings
    started_at: str
    status: str = "active"
    stopped_at: Optional[str] = None
    stop_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass
class SessionRuntime:
    """Mutable in-memory counters for a running session."""

    tick_count: int = 0
    last_tick_at: Optional[str] = None
    consecutive_failed_ticks: int = 0
    last_errors: dict[str, str] = field(default_factory=dict)
