"""
tests/test_reconciler.py
Tests for the Resolution Reconciler: settlement, expiry, and tolerance of a
failing market source.
"""

import pytest

from core.exceptions import InvalidPayload
from database.models import PositionSide, PositionStatus, utcnow
from app.services.belief_store import BeliefStore
from app.services.eligibility_gate import GateDecision, TradeAction
from app.services.portfolio import PortfolioState
from app.services.position_ledger import PositionLedger
from app.services.resolution_service import reconcile_positions
from app.services.supervisor import Supervisor


@pytest.fixture
def ledger(settings, session_factory) -> PositionLedger:
    return PositionLedger(
        settings, session_factory, PortfolioState(settings.STARTING_CAPITAL), Supervisor(settings),
    )


async def _open(ledger, market, belief, side=PositionSide.YES) -> str:
    action = TradeAction.BUY_YES if side == PositionSide.YES else TradeAction.BUY_NO
    decision = GateDecision(market.id, action, side, 15.0, "All checks passed")
    return await ledger.create(decision, market, belief, 100.0)


@pytest.mark.asyncio
class TestReconcilePositions:
    async def test_resolved_market_settles_position(
        self, ledger, market_source, make_market, make_belief,
    ):
        market = make_market(price=45.0)
        position_id = await _open(ledger, market, make_belief())
        market_source.set(make_market(price=99.5, resolution_outcome=True, resolved_at=utcnow()))

        summary = await reconcile_positions(ledger, market_source)

        assert summary.resolved == 1
        position = ledger.get(position_id)
        assert position.status == PositionStatus.WIN
        assert position.pnl == pytest.approx(55.0)

    async def test_unresolved_market_stays_open(
        self, ledger, market_source, make_market, make_belief,
    ):
        market = make_market()
        position_id = await _open(ledger, market, make_belief())
        market_source.set(market.model_copy(update={"closed": True}))

        summary = await reconcile_positions(ledger, market_source)

        assert summary.pending == 1
        assert ledger.get(position_id).is_open

    async def test_source_failure_leaves_position_open(
        self, ledger, market_source, make_market, make_belief,
    ):
        """A timeout is transient: retried next pass, never a resolution."""
        market = make_market()
        position_id = await _open(ledger, market, make_belief())
        market_source.set(market)
        market_source.failing.add(market.id)

        summary = await reconcile_positions(ledger, market_source)
        assert summary.failed == 1
        assert ledger.get(position_id).is_open

        market_source.failing.clear()
        market_source.set(make_market(resolution_outcome=False, resolved_at=utcnow()))
        summary = await reconcile_positions(ledger, market_source)
        assert summary.resolved == 1
        assert ledger.get(position_id).status == PositionStatus.LOSS

    async def test_invalid_payload_leaves_position_open(
        self, ledger, make_market, make_belief,
    ):
        class BrokenSource:
            async def get_market(self, market_id):
                raise InvalidPayload("garbage")

        position_id = await _open(ledger, make_market(), make_belief())
        summary = await reconcile_positions(ledger, BrokenSource())
        assert summary.failed == 1
        assert ledger.get(position_id).is_open

    async def test_resolved_without_outcome_expires(
        self, ledger, market_source, make_market, make_belief,
    ):
        position_id = await _open(ledger, make_market(price=45.0), make_belief())
        market_source.set(make_market(price=52.0, resolved_at=utcnow()))

        summary = await reconcile_positions(ledger, market_source)

        assert summary.expired == 1
        position = ledger.get(position_id)
        assert position.status == PositionStatus.EXPIRED
        assert position.pnl == pytest.approx(7.0)

    async def test_second_pass_is_noop(self, ledger, market_source, make_market, make_belief):
        position_id = await _open(ledger, make_market(price=45.0), make_belief())
        market_source.set(make_market(resolution_outcome=True, resolved_at=utcnow()))

        await reconcile_positions(ledger, market_source)
        settled = ledger.get(position_id)
        first = (settled.status, settled.pnl, settled.exit_timestamp)

        summary = await reconcile_positions(ledger, market_source)
        assert summary.checked == 0
        again = ledger.get(position_id)
        assert (again.status, again.pnl, again.exit_timestamp) == first

    async def test_one_query_per_market(self, ledger, market_source, make_market, make_belief):
        await _open(ledger, make_market(id="a"), make_belief())
        await _open(ledger, make_market(id="b"), make_belief())
        market_source.set(make_market(id="a"))
        market_source.set(make_market(id="b"))

        await reconcile_positions(ledger, market_source)
        assert sorted(market_source.calls) == ["a", "b"]

    async def test_fetched_snapshot_refreshes_tracked_market(
        self, settings, ledger, market_source, make_market, make_belief,
    ):
        store = BeliefStore(settings)
        store.observe_market(make_market())
        await _open(ledger, make_market(), make_belief())
        market_source.set(make_market(resolution_outcome=True, resolved_at=utcnow()))

        await reconcile_positions(ledger, market_source, store)
        assert store.get("mkt-1").market.is_resolved
