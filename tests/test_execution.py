"""Tests for pulsetrade.execution — orders, positions and trade records."""

import asyncio

import pytest

from pulsetrade.broker.paper import PaperBroker
from pulsetrade.errors import OrderRejectedError, PositionInvariantError
from pulsetrade.execution import ExecutionCoordinator
from pulsetrade.models.session import SessionSettings
from pulsetrade.repos.db import init_db
from pulsetrade.repos.position_repo import PositionRepo
from pulsetrade.repos.trade_repo import TradeRepo
from pulsetrade.strategy.models import MarketSnapshot


# ── Helpers ──────────────────────────────────────────────────────────────


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "exec.db")
    init_db(path)
    return path


def _settings() -> SessionSettings:
    return SessionSettings(investment_amount=100_000.0, max_positions=5)


def _snapshot(price: float) -> MarketSnapshot:
    return MarketSnapshot(symbol="KRW-BTC", price=price)


class SlowBroker(PaperBroker):
    """Paper broker whose orders never finish in time."""

    async def submit_buy(self, user_id, symbol, price, quantity):
        await asyncio.sleep(1.0)
        return await super().submit_buy(user_id, symbol, price, quantity)


# ── Buy ──────────────────────────────────────────────────────────────────


class TestBuy:
    @pytest.mark.asyncio
    async def test_buy_opens_position_and_records_trade(self, db_path):
        broker = PaperBroker()
        positions = PositionRepo(db_path)
        coord = ExecutionCoordinator(broker, positions)

        position = await coord.buy("u1", "KRW-BTC", _snapshot(50_000.0), _settings(),
                                   session_id="s1", strategy="momentum")

        assert position.is_open
        assert position.quantity == pytest.approx(0.4)
        assert position.avg_price == 50_000.0
        assert position.order_ref == broker.orders[0].order_ref
        history = TradeRepo(db_path).get_trades("u1")
        assert history["total"] == 1
        trade = history["trades"][0]
        assert trade.side == "buy"
        assert trade.session_id == "s1"
        assert trade.strategy == "momentum"

    @pytest.mark.asyncio
    async def test_quantity_rounded_to_8_decimals(self, db_path):
        coord = ExecutionCoordinator(PaperBroker(), PositionRepo(db_path))
        position = await coord.buy("u1", "KRW-BTC", _snapshot(3.0), _settings())
        assert position.quantity == round(20_000.0 / 3.0, 8)

    @pytest.mark.asyncio
    async def test_rejected_order_writes_nothing(self, db_path):
        broker = PaperBroker()
        broker.fail_next_orders(1)
        positions = PositionRepo(db_path)
        coord = ExecutionCoordinator(broker, positions)

        with pytest.raises(OrderRejectedError):
            await coord.buy("u1", "KRW-BTC", _snapshot(50_000.0), _settings())

        assert positions.get_open("u1", "KRW-BTC") is None
        assert TradeRepo(db_path).get_trades("u1")["total"] == 0

    @pytest.mark.asyncio
    async def test_timeout_is_rejection(self, db_path):
        positions = PositionRepo(db_path)
        coord = ExecutionCoordinator(SlowBroker(), positions, order_timeout=0.01)

        with pytest.raises(OrderRejectedError, match="timed out"):
            await coord.buy("u1", "KRW-BTC", _snapshot(50_000.0), _settings())
        assert positions.get_open("u1", "KRW-BTC") is None

    @pytest.mark.asyncio
    async def test_duplicate_buy_raises_without_order(self, db_path):
        broker = PaperBroker()
        coord = ExecutionCoordinator(broker, PositionRepo(db_path))
        await coord.buy("u1", "KRW-BTC", _snapshot(50_000.0), _settings())

        with pytest.raises(PositionInvariantError):
            await coord.buy("u1", "KRW-BTC", _snapshot(51_000.0), _settings())
        assert len(broker.orders) == 1

    @pytest.mark.asyncio
    async def test_zero_price_rejected(self, db_path):
        coord = ExecutionCoordinator(PaperBroker(), PositionRepo(db_path))
        with pytest.raises(OrderRejectedError):
            await coord.buy("u1", "KRW-BTC", _snapshot(0.0), _settings())

    @pytest.mark.asyncio
    async def test_quantity_rounding_to_zero_rejected(self, db_path):
        broker = PaperBroker()
        positions = PositionRepo(db_path)
        coord = ExecutionCoordinator(broker, positions)
        tiny = SessionSettings(investment_amount=0.0001, max_positions=1)

        with pytest.raises(OrderRejectedError, match="buys nothing"):
            await coord.buy("u1", "KRW-BTC", _snapshot(100_000_000.0), tiny)

        assert broker.orders == []
        assert positions.get_open("u1", "KRW-BTC") is None
        assert TradeRepo(db_path).get_trades("u1")["total"] == 0

    @pytest.mark.asyncio
    async def test_insufficient_cash_rejected(self, db_path):
        broker = PaperBroker()
        broker.set_balance("u1", 100.0)
        coord = ExecutionCoordinator(broker, PositionRepo(db_path))
        with pytest.raises(OrderRejectedError, match="Insufficient"):
            await coord.buy("u1", "KRW-BTC", _snapshot(50_000.0), _settings())


# ── Sell ─────────────────────────────────────────────────────────────────


class TestSell:
    @pytest.mark.asyncio
    async def test_sell_closes_with_profit(self, db_path):
        broker = PaperBroker()
        positions = PositionRepo(db_path)
        coord = ExecutionCoordinator(broker, positions)
        opened = await coord.buy("u1", "KRW-BTC", _snapshot(50_000.0), _settings())

        closed = await coord.sell("u1", "KRW-BTC", _snapshot(55_000.0), opened)

        assert closed.status == "closed"
        assert closed.profit_rate == pytest.approx(10.0)
        assert positions.get_open("u1", "KRW-BTC") is None
        history = TradeRepo(db_path).get_trades("u1")
        assert history["total"] == 2
        assert history["trades"][0].side == "sell"
        assert history["trades"][0].profit_rate == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_sell_credits_paper_balance(self, db_path):
        broker = PaperBroker(starting_balance=1_000_000.0)
        coord = ExecutionCoordinator(broker, PositionRepo(db_path))
        opened = await coord.buy("u1", "KRW-BTC", _snapshot(50_000.0), _settings())
        assert await broker.get_available_balance("u1") == pytest.approx(980_000.0)

        await coord.sell("u1", "KRW-BTC", _snapshot(50_000.0), opened)
        assert await broker.get_available_balance("u1") == pytest.approx(1_000_000.0)

    @pytest.mark.asyncio
    async def test_sell_without_position_raises(self, db_path):
        broker = PaperBroker()
        coord = ExecutionCoordinator(broker, PositionRepo(db_path))
        with pytest.raises(PositionInvariantError):
            await coord.sell("u1", "KRW-BTC", _snapshot(50_000.0), None)
        assert broker.orders == []

    @pytest.mark.asyncio
    async def test_rejected_sell_keeps_position_open(self, db_path):
        broker = PaperBroker()
        positions = PositionRepo(db_path)
        coord = ExecutionCoordinator(broker, positions)
        opened = await coord.buy("u1", "KRW-BTC", _snapshot(50_000.0), _settings())

        broker.fail_next_orders(1)
        with pytest.raises(OrderRejectedError):
            await coord.sell("u1", "KRW-BTC", _snapshot(55_000.0), opened)

        assert positions.get_open("u1", "KRW-BTC") is not None
        assert TradeRepo(db_path).get_trades("u1")["total"] == 1

    @pytest.mark.asyncio
    async def test_second_close_of_same_position_raises(self, db_path):
        coord = ExecutionCoordinator(PaperBroker(), PositionRepo(db_path))
        opened = await coord.buy("u1", "KRW-BTC", _snapshot(50_000.0), _settings())
        await coord.sell("u1", "KRW-BTC", _snapshot(55_000.0), opened)

        with pytest.raises(PositionInvariantError):
            await coord.sell("u1", "KRW-BTC", _snapshot(55_000.0), opened)


class TestLocks:
    def test_lock_per_user_symbol(self, db_path):
        coord = ExecutionCoordinator(PaperBroker(), PositionRepo(db_path))
        assert coord.lock_for("u1", "KRW-BTC") is coord.lock_for("u1", "KRW-BTC")
        assert coord.lock_for("u1", "KRW-BTC") is not coord.lock_for("u1", "KRW-ETH")
        assert coord.lock_for("u1", "KRW-BTC") is not coord.lock_for("u2", "KRW-BTC")
