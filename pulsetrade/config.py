"""PulseTrade — application configuration.

Loads .env variables into a typed config object.
Validates numeric variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    upbit_base_url: str
    db_path: str
    log_level: str
    api_port: int
    request_timeout_seconds: float
    inter_symbol_delay_seconds: float
    candle_count: int
    candle_unit_minutes: int
    max_consecutive_failures: int
    paper_balance: float


def _read(name: str, default: str, cast):
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(
            f"Invalid value for environment variable {name}: {raw!r}"
        ) from None


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Every variable has a default.  Raises ``ValueError`` naming the variable
    when a numeric variable cannot be parsed.
    """
    load_dotenv(dotenv_path=env_path)

    return Config(
        upbit_base_url=os.environ.get("UPBIT_BASE_URL", "https://api.upbit.com"),
        db_path=os.environ.get("DB_PATH", "data/pulsetrade.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=_read("API_PORT", "8080", int),
        request_timeout_seconds=_read("REQUEST_TIMEOUT_SECONDS", "10", float),
        inter_symbol_delay_seconds=_read("INTER_SYMBOL_DELAY_SECONDS", "0.2", float),
        candle_count=_read("CANDLE_COUNT", "200", int),
        candle_unit_minutes=_read("CANDLE_UNIT_MINUTES", "1", int),
        max_consecutive_failures=_read("MAX_CONSECUTIVE_FAILURES", "5", int),
        paper_balance=_read("PAPER_BALANCE", "1000000", float),
    )
