"""
tests/test_position_ledger.py
Tests for position creation, P&L on resolution, idempotence and restart safety.
"""

import asyncio

import pytest

from core.exceptions import InvalidMarketState, PositionNotFound
from database.models import PositionSide, PositionStatus
from app.services.eligibility_gate import GateDecision, TradeAction
from app.services.portfolio import PortfolioState
from app.services.position_ledger import PositionLedger, calculate_pnl
from app.services.supervisor import Supervisor


def _ledger(settings, session_factory) -> PositionLedger:
    return PositionLedger(
        settings, session_factory, PortfolioState(settings.STARTING_CAPITAL), Supervisor(settings),
    )


@pytest.fixture
def ledger(settings, session_factory) -> PositionLedger:
    return _ledger(settings, session_factory)


@pytest.fixture
def open_position(ledger, make_market, make_belief):
    """Coroutine factory: open a position at a given YES price and side."""
    async def _open(
        market_id: str = "mkt-1",
        price: float = 45.0,
        side: PositionSide = PositionSide.YES,
        size: float = 100.0,
    ) -> str:
        action = TradeAction.BUY_YES if side == PositionSide.YES else TradeAction.BUY_NO
        decision = GateDecision(market_id, action, side, 15.0, "All checks passed")
        market = make_market(id=market_id, price=price)
        return await ledger.create(decision, market, make_belief(), size)
    return _open


@pytest.mark.asyncio
class TestCreate:
    async def test_create_persists_open_position(self, ledger, open_position):
        position_id = await open_position(size=150.0)

        position = ledger.get(position_id)
        assert position.status == PositionStatus.OPEN
        assert position.exit_price is None and position.pnl is None

        snapshot = ledger.portfolio.snapshot()
        assert snapshot.allocated_capital == 150.0
        assert snapshot.open_by_category == {"economics": 1}
        assert "mkt-1" in snapshot.open_market_ids

    async def test_duplicate_market_refused(self, open_position):
        await open_position()
        with pytest.raises(InvalidMarketState):
            await open_position()

    async def test_non_admitted_decision_refused(self, ledger, make_market, make_belief):
        decision = GateDecision("mkt-1", TradeAction.NO_TRADE, None, 0.0, "PRICE_INSIDE_BELIEF")
        with pytest.raises(ValueError):
            await ledger.create(decision, make_market(), make_belief(), 100.0)


@pytest.mark.asyncio
class TestResolve:
    async def test_yes_win_pnl(self, ledger, open_position):
        """YES at 45, size 100, resolves YES: +55.00."""
        position = await ledger.resolve(await open_position(price=45.0), PositionSide.YES)
        assert position.status == PositionStatus.WIN
        assert position.exit_price == 100.0
        assert position.pnl == pytest.approx(55.00)
        assert position.actual_outcome == PositionSide.YES

    async def test_yes_loss_pnl(self, ledger, open_position):
        """YES at 60, size 100, resolves NO: -60.00."""
        position = await ledger.resolve(await open_position(price=60.0), PositionSide.NO)
        assert position.status == PositionStatus.LOSS
        assert position.exit_price == 0.0
        assert position.pnl == pytest.approx(-60.00)

    async def test_no_side_wins_when_market_falls(self, ledger, open_position):
        """NO bought at YES price 70 costs 30; settling NO pays +70."""
        position_id = await open_position(price=70.0, side=PositionSide.NO)
        position = await ledger.resolve(position_id, PositionSide.NO)
        assert position.status == PositionStatus.WIN
        assert position.pnl == pytest.approx(70.00)

    async def test_break_even(self, ledger, open_position):
        position_id = await open_position(price=45.0)
        position = await ledger.resolve(position_id, PositionSide.YES, exit_price=45.0)
        assert position.status == PositionStatus.BREAK_EVEN
        assert position.pnl == 0.0

    async def test_resolve_is_idempotent(self, ledger, open_position):
        position_id = await open_position()
        first = await ledger.resolve(position_id, PositionSide.YES)
        state = (first.status, first.pnl, first.exit_price, first.exit_timestamp)

        second = await ledger.resolve(position_id, PositionSide.NO)
        assert (second.status, second.pnl, second.exit_price, second.exit_timestamp) == state
        assert ledger.portfolio.realized_pnl == pytest.approx(55.0)

    async def test_concurrent_resolution_settles_once(self, ledger, open_position):
        position_id = await open_position()
        await asyncio.gather(
            ledger.resolve(position_id, PositionSide.YES),
            ledger.resolve(position_id, PositionSide.YES),
        )
        assert ledger.portfolio.realized_pnl == pytest.approx(55.0)
        assert ledger.supervisor.consecutive_invalidations == 0

    async def test_unknown_position_raises(self, ledger):
        with pytest.raises(PositionNotFound):
            await ledger.resolve("missing", PositionSide.YES)

    async def test_expire_marks_to_last_price(self, ledger, open_position):
        position_id = await open_position(price=45.0)
        position = await ledger.expire(position_id, last_price=50.0)
        assert position.status == PositionStatus.EXPIRED
        assert position.exit_price == 50.0
        assert position.pnl == pytest.approx(5.0)
        assert position.actual_outcome is None

    async def test_resolution_releases_capital(self, ledger, open_position):
        position_id = await open_position(size=100.0)
        await ledger.resolve(position_id, PositionSide.NO)
        snapshot = ledger.portfolio.snapshot()
        assert snapshot.allocated_capital == 0.0
        assert snapshot.total_capital == pytest.approx(9_955.0)


@pytest.mark.asyncio
class TestSupervisorFeed:
    async def test_drawdown_halts_exactly_once(self, ledger, open_position):
        """Three $400 losses take drawdown to 12%; later wins never un-halt."""
        for i in range(3):
            position_id = await open_position(market_id=f"loss-{i}", price=50.0, size=800.0)
            await ledger.resolve(position_id, PositionSide.NO)

        assert ledger.supervisor.is_halted
        assert ledger.supervisor.status().halt_reason.startswith("DRAWDOWN")

        position_id = await open_position(market_id="win-1", price=10.0, size=500.0)
        await ledger.resolve(position_id, PositionSide.YES)

        assert ledger.supervisor.is_halted
        assert len(ledger.supervisor.history) == 1

    async def test_loss_streak_counted(self, ledger, open_position):
        for i in range(2):
            position_id = await open_position(market_id=f"m-{i}", price=50.0, size=10.0)
            await ledger.resolve(position_id, PositionSide.NO)
        assert ledger.supervisor.consecutive_invalidations == 2


@pytest.mark.asyncio
class TestRestart:
    async def test_round_trip_reproduces_open_positions(
        self, settings, session_factory, ledger, open_position,
    ):
        kept = await open_position(market_id="keep", price=30.0, size=120.0)
        settled = await open_position(market_id="done", price=45.0, size=100.0)
        await ledger.resolve(settled, PositionSide.NO)

        restored = _ledger(settings, session_factory)
        assert await restored.load() == 2

        assert [p.id for p in restored.open_positions()] == [kept]
        original, reloaded = ledger.get(kept), restored.get(kept)
        for field in ("market_id", "side", "entry_price", "belief_low", "belief_high", "size", "edge"):
            assert getattr(reloaded, field) == getattr(original, field)
        assert reloaded.entry_timestamp == original.entry_timestamp

        assert restored.get(settled).status == PositionStatus.LOSS
        assert restored.get(settled).pnl == pytest.approx(-45.0)

        before, after = ledger.portfolio.snapshot(), restored.portfolio.snapshot()
        assert after.total_capital == before.total_capital
        assert after.allocated_capital == before.allocated_capital
        assert after.open_market_ids == before.open_market_ids
        assert restored.supervisor.consecutive_invalidations == 1


class TestCalculatePnl:
    def test_no_position_loses_its_cost(self, make_position):
        position = make_position(side=PositionSide.NO, entry_price=70.0, size=100.0)
        assert calculate_pnl(position, 0.0) == pytest.approx(-30.0)
