"""API routers — /sessions, /positions, /trades, /backtests endpoints.

No business logic, no DB access.  Delegates to the ``TradingService``
injected at startup; the caller identifies themselves with ``X-User-Id``.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query
from pydantic import BaseModel, Field

from pulsetrade.errors import (
    BacktestDataError,
    PositionNotFoundError,
    ProviderError,
    SessionStartError,
    UnknownStrategyError,
)

logger = logging.getLogger("pulsetrade")
router = APIRouter()

_service = None  # Set via configure_routers()


def configure_routers(service) -> None:
    """Inject the ``TradingService`` (or a duck-type for tests)."""
    global _service  # noqa: PLW0603
    _service = service


def _get_service():
    if _service is None:
        raise HTTPException(status_code=503, detail="Trading service not configured")
    return _service


# ── Request bodies ───────────────────────────────────────────────────────


class StartSessionBody(BaseModel):
    strategy: str
    symbols: list[str]
    investment_amount: float
    max_positions: int = 5
    polling_interval: int = 60


class BacktestBody(BaseModel):
    strategy: str
    symbol: str
    start_date: str
    end_date: str
    initial_amount: float = Field(default=1_000_000.0)


# ── Sessions ─────────────────────────────────────────────────────────────


@router.post("/sessions")
async def start_session(body: StartSessionBody, x_user_id: str = Header(...)):
    """Start a trading session for the calling user."""
    service = _get_service()
    try:
        return await service.start_session(
            x_user_id,
            body.strategy,
            body.symbols,
            body.investment_amount,
            max_positions=body.max_positions,
            polling_interval=body.polling_interval,
        )
    except SessionStartError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.delete("/sessions")
async def stop_session(x_user_id: str = Header(...)):
    """Stop the calling user's session (no-op when idle)."""
    return _get_service().stop_session(x_user_id)


@router.get("/sessions/status")
async def get_session_status(x_user_id: str = Header(...)):
    return _get_service().get_session_status(x_user_id)


# ── Positions & trades ───────────────────────────────────────────────────


@router.get("/positions")
async def get_positions(x_user_id: str = Header(...)):
    """Return the user's open positions with unrealised profit."""
    positions = await _get_service().list_open_positions(x_user_id)
    return {"positions": positions}


@router.post("/positions/{symbol}/close")
async def close_position(symbol: str, x_user_id: str = Header(...)):
    """Sell the user's open position in *symbol* at market."""
    try:
        return await _get_service().force_close_position(x_user_id, symbol)
    except PositionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ProviderError as exc:
        logger.warning("Manual close of %s failed: %s", symbol, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@router.get("/trades")
async def get_trades(
    x_user_id: str = Header(...),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
):
    """Return one page of the user's trade history, newest first."""
    return _get_service().list_trade_history(x_user_id, page=page, limit=limit)


# ── Backtests ────────────────────────────────────────────────────────────


@router.post("/backtests")
async def run_backtest(body: BacktestBody, x_user_id: Optional[str] = Header(default=None)):
    """Replay a strategy over historical daily candles."""
    try:
        return await _get_service().run_backtest(
            body.strategy,
            body.symbol,
            body.start_date,
            body.end_date,
            body.initial_amount,
            user_id=x_user_id,
        )
    except (BacktestDataError, UnknownStrategyError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ProviderError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@router.get("/backtests")
async def list_backtests(
    x_user_id: Optional[str] = Header(default=None),
    limit: int = Query(default=10, ge=1, le=100),
):
    return {"results": _get_service().list_backtests(user_id=x_user_id, limit=limit)}
