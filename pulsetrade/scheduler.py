"""Session scheduler — one cancellable polling loop per user session.

Each tick walks the session's symbols strictly in order: snapshot →
candles → indicators → open position → strategy decision → execution.
A failing symbol is logged and skipped; only ``stop()``, repeated
whole-tick failure, or an unexpected loop fault ends a session.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from pulsetrade.broker.base import MarketDataProvider, OrderExecutionProvider
from pulsetrade.errors import (
    PositionInvariantError,
    ProviderError,
    SessionStartError,
    UnknownStrategyError,
)
from pulsetrade.execution import ExecutionCoordinator
from pulsetrade.models.session import SessionRuntime, SessionSettings, TradingSession
from pulsetrade.repos.position_repo import PositionRepo
from pulsetrade.repos.session_repo import SessionRepo
from pulsetrade.strategy.base import VotingStrategy, evaluate
from pulsetrade.strategy.indicators import build_indicator_set
from pulsetrade.strategy.models import IndicatorSet
from pulsetrade.strategy.registry import get_strategy, resolve_strategy_name

logger = logging.getLogger("pulsetrade.scheduler")

# Minimum candles needed before indicators are trusted.
MIN_CANDLES = 50


@dataclass
class ActiveSession:
    """In-memory handle for a running session."""

    session: TradingSession
    strategy: VotingStrategy
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    runtime: SessionRuntime = field(default_factory=SessionRuntime)
    task: Optional[asyncio.Task] = None

    @property
    def user_id(self) -> str:
        return self.session.user_id


class SessionRegistry:
    """User id → ``ActiveSession`` map owned by the scheduler."""

    def __init__(self) -> None:
        self._sessions: dict[str, ActiveSession] = {}

    def create(self, active: ActiveSession) -> None:
        if active.user_id in self._sessions:
            raise SessionStartError(
                f"User {active.user_id} already has an active session"
            )
        self._sessions[active.user_id] = active

    def lookup(self, user_id: str) -> Optional[ActiveSession]:
        return self._sessions.get(user_id)

    def remove(self, user_id: str) -> Optional[ActiveSession]:
        return self._sessions.pop(user_id, None)

    def user_ids(self) -> list[str]:
        return list(self._sessions.keys())

    def __len__(self) -> int:
        return len(self._sessions)


class SessionScheduler:
    """Lifecycle manager for per-user trading sessions.

    Args:
        market_data: Quote and candle provider.
        broker: Execution provider (used here for the start-time balance check).
        coordinator: ``ExecutionCoordinator`` acting on decisions.
        sessions: Session repository.
        positions: Position repository.
        request_timeout: Seconds allowed for each market-data call.
        inter_symbol_delay: Pause between symbols within one tick.
        candle_granularity: Candle granularity for indicators (e.g. ``"M1"``).
        candle_count: Candles fetched per symbol per tick.
        max_consecutive_failures: Fully failed ticks before the session stops.
    """

    def __init__(
        self,
        market_data: MarketDataProvider,
        broker: OrderExecutionProvider,
        coordinator: ExecutionCoordinator,
        sessions: SessionRepo,
        positions: PositionRepo,
        request_timeout: float = 10.0,
        inter_symbol_delay: float = 0.2,
        candle_granularity: str = "M1",
        candle_count: int = 200,
        max_consecutive_failures: int = 5,
    ) -> None:
        self._market_data = market_data
        self._broker = broker
        self._coordinator = coordinator
        self._sessions = sessions
        self._positions = positions
        self._request_timeout = request_timeout
        self._inter_symbol_delay = inter_symbol_delay
        self._candle_granularity = candle_granularity
        self._candle_count = candle_count
        self._max_consecutive_failures = max_consecutive_failures
        self.registry = SessionRegistry()

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(
        self,
        user_id: str,
        strategy: str,
        symbols: list[str],
        settings: SessionSettings,
        run_loop: bool = True,
    ) -> TradingSession:
        """Validate, persist and launch a session for *user_id*.

        Raises ``SessionStartError`` when input is missing, the strategy is
        unknown, a session is already active, or the available balance is
        below ``settings.investment_amount``.
        """
        if not strategy or not symbols:
            raise SessionStartError("A strategy and at least one symbol are required")
        try:
            strategy_name = resolve_strategy_name(strategy).value
        except UnknownStrategyError as exc:
            raise SessionStartError(str(exc)) from exc

        if self.registry.lookup(user_id) is not None:
            raise SessionStartError(f"User {user_id} already has an active session")

        try:
            balance = await asyncio.wait_for(
                self._broker.get_available_balance(user_id),
                timeout=self._request_timeout,
            )
        except (asyncio.TimeoutError, ProviderError) as exc:
            raise SessionStartError(f"Could not verify available balance: {exc}") from exc
        if balance < settings.investment_amount:
            raise SessionStartError(
                f"Available balance {balance:.2f} is below the requested "
                f"investment amount {settings.investment_amount:.2f}"
            )

        session = TradingSession(
            session_id=f"session_{user_id}_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            strategy=strategy_name,
            symbols=list(dict.fromkeys(symbols)),
            settings=settings,
            started_at=datetime.now(timezone.utc).isoformat(),
        )
        self._sessions.insert_session(session)

        active = ActiveSession(session=session, strategy=get_strategy(strategy_name))
        self.registry.create(active)
        logger.info(
            "Session %s created (strategy: %s, %d symbol(s))",
            session.session_id, strategy_name, len(session.symbols),
        )

        if run_loop:
            active.task = asyncio.create_task(
                self._run_loop(active), name=session.session_id,
            )
        return session

    def stop(self, user_id: str, reason: str = "stopped") -> bool:
        """Stop *user_id*'s session.  Idempotent.

        No further tick starts once this returns; a tick already in flight
        may finish.  Returns ``True`` if a session was stopped.
        """
        active = self.registry.remove(user_id)
        if active is not None:
            active.stop_event.set()
            self._sessions.mark_stopped(active.session.session_id, reason)
            logger.info(
                "Session %s stopped for user %s (%s)",
                active.session.session_id, user_id, reason,
            )
            return True

        # Persisted row left active without a running loop
        orphan = self._sessions.get_active(user_id)
        if orphan is not None:
            return self._sessions.mark_stopped(orphan.session_id, reason)
        return False

    def _stop_active(self, active: ActiveSession, reason: str) -> bool:
        """Stop the session owned by *active*, never a newer one for the same user."""
        active.stop_event.set()
        if self.registry.lookup(active.user_id) is active:
            self.registry.remove(active.user_id)
        stopped = self._sessions.mark_stopped(active.session.session_id, reason)
        if stopped:
            logger.info(
                "Session %s stopped for user %s (%s)",
                active.session.session_id, active.user_id, reason,
            )
        return stopped

    def recover(self) -> list[str]:
        """Mark persisted active sessions with no running loop as stopped.

        Called at boot: status survives a restart, polling does not resume.
        Returns the recovered session ids.
        """
        recovered: list[str] = []
        for session in self._sessions.list_active():
            if self.registry.lookup(session.user_id) is not None:
                continue
            if self._sessions.mark_stopped(session.session_id, "restart"):
                recovered.append(session.session_id)
                logger.warning(
                    "Session %s for user %s was active before restart; marked stopped.",
                    session.session_id, session.user_id,
                )
        return recovered

    async def shutdown(self) -> None:
        """Stop every session and wait for their loops to exit."""
        tasks = []
        for user_id in self.registry.user_ids():
            active = self.registry.lookup(user_id)
            if active is not None and active.task is not None:
                tasks.append(active.task)
            self.stop(user_id, reason="shutdown")
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Status ───────────────────────────────────────────────────────────

    def get_status(self, user_id: str) -> dict:
        """Return the running session's status, or the last persisted one."""
        active = self.registry.lookup(user_id)
        if active is not None:
            session = active.session
            runtime = active.runtime
            return {
                "is_trading": True,
                "session_id": session.session_id,
                "strategy": session.strategy,
                "symbols": list(session.symbols),
                "settings": session.settings.to_dict(),
                "status": session.status,
                "started_at": session.started_at,
                "tick_count": runtime.tick_count,
                "last_tick_at": runtime.last_tick_at,
                "last_errors": dict(runtime.last_errors),
            }

        latest = self._sessions.get_latest(user_id)
        if latest is None:
            return {
                "is_trading": False,
                "session_id": None,
                "strategy": None,
                "symbols": [],
                "status": "idle",
                "started_at": None,
            }
        return {
            "is_trading": False,
            "session_id": latest.session_id,
            "strategy": latest.strategy,
            "symbols": list(latest.symbols),
            "status": latest.status,
            "started_at": latest.started_at,
            "stopped_at": latest.stopped_at,
            "stop_reason": latest.stop_reason,
        }

    # ── Polling loop ─────────────────────────────────────────────────────

    async def _run_loop(self, active: ActiveSession) -> None:
        """Tick, then wait ``polling_interval`` seconds or until stopped."""
        interval = active.session.settings.polling_interval
        try:
            while not active.stop_event.is_set():
                await self.run_tick(active)
                if active.stop_event.is_set():
                    break
                try:
                    await asyncio.wait_for(active.stop_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
        except Exception:
            logger.exception("Session %s crashed", active.session.session_id)
            self._stop_active(active, reason="fault")
        logger.info("Trading loop finished: %s", active.session.session_id)

    async def run_tick(self, active: ActiveSession) -> list[dict]:
        """Process every symbol of the session once, in order.

        Returns one result dict per symbol.
        """
        results: list[dict] = []
        symbols = active.session.symbols
        for i, symbol in enumerate(symbols):
            result = await self._process_symbol_safely(active, symbol)
            results.append(result)
            if i < len(symbols) - 1 and self._inter_symbol_delay > 0:
                await asyncio.sleep(self._inter_symbol_delay)

        runtime = active.runtime
        runtime.tick_count += 1
        runtime.last_tick_at = datetime.now(timezone.utc).isoformat()

        # Stopped mid-tick: failures no longer count against this session
        if active.stop_event.is_set():
            return results

        if results and all(r["action"] == "error" for r in results):
            runtime.consecutive_failed_ticks += 1
            if runtime.consecutive_failed_ticks >= self._max_consecutive_failures:
                logger.error(
                    "Session %s: %d consecutive failed ticks, stopping.",
                    active.session.session_id, runtime.consecutive_failed_ticks,
                )
                self._stop_active(active, reason="repeated_failures")
        else:
            runtime.consecutive_failed_ticks = 0
        return results

    async def _process_symbol_safely(self, active: ActiveSession, symbol: str) -> dict:
        errors = active.runtime.last_errors
        try:
            result = await self.process_symbol(active, symbol)
            errors.pop(symbol, None)
            return result
        except PositionInvariantError as exc:
            logger.exception("[%s] Position invariant violated: %s", symbol, exc)
            errors[symbol] = f"invariant: {exc}"
            return {"symbol": symbol, "action": "error", "reason": "invariant_violation"}
        except (ProviderError, asyncio.TimeoutError) as exc:
            detail = str(exc) or "timeout"
            logger.warning("[%s] Provider failure, skipping: %s", symbol, detail)
            errors[symbol] = f"provider: {detail}"
            return {"symbol": symbol, "action": "error", "reason": "provider_failure"}
        except Exception as exc:
            logger.exception("[%s] Unexpected error during tick", symbol)
            errors[symbol] = str(exc)
            return {"symbol": symbol, "action": "error", "reason": str(exc)}

    async def process_symbol(self, active: ActiveSession, symbol: str) -> dict:
        """Evaluate and act on one symbol.

        Holds the (user, symbol) lock so the position read and the resulting
        write never interleave with another tick for the same pair.
        """
        user_id = active.user_id
        session = active.session

        async with self._coordinator.lock_for(user_id, symbol):
            snapshot = await asyncio.wait_for(
                self._market_data.get_snapshot(symbol),
                timeout=self._request_timeout,
            )
            candles = await asyncio.wait_for(
                self._market_data.fetch_candles(
                    symbol, self._candle_granularity, self._candle_count,
                ),
                timeout=self._request_timeout,
            )

            if len(candles) < MIN_CANDLES:
                logger.warning(
                    "[%s] Only %d candles (need %d); using neutral indicators and skipping.",
                    symbol, len(candles), MIN_CANDLES,
                )
                return {
                    "symbol": symbol,
                    "action": "skipped",
                    "reason": "insufficient_data",
                    "indicators": IndicatorSet.neutral(),
                }

            indicators = build_indicator_set(candles)
            position = self._positions.get_open(user_id, symbol)
            decision = evaluate(active.strategy, symbol, snapshot, indicators, position)

            if decision.action == "buy":
                open_count = len(self._positions.list_open(user_id))
                if open_count >= session.settings.max_positions:
                    logger.info(
                        "[%s] Entry signal ignored: %d/%d positions open",
                        symbol, open_count, session.settings.max_positions,
                    )
                    return {
                        "symbol": symbol,
                        "action": "skipped",
                        "reason": "max_positions",
                    }
                opened = await self._coordinator.buy(
                    user_id, symbol, snapshot, session.settings,
                    session_id=session.session_id, strategy=session.strategy,
                )
                return {
                    "symbol": symbol,
                    "action": "buy",
                    "reasons": decision.reasons,
                    "price": opened.avg_price,
                    "quantity": opened.quantity,
                }

            if decision.action == "sell":
                closed = await self._coordinator.sell(
                    user_id, symbol, snapshot, position,
                    session_id=session.session_id, strategy=session.strategy,
                )
                return {
                    "symbol": symbol,
                    "action": "sell",
                    "reasons": decision.reasons,
                    "price": snapshot.price,
                    "profit_rate": closed.profit_rate,
                }

            return {"symbol": symbol, "action": "hold"}
