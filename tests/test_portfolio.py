"""
tests/test_portfolio.py
Tests for capital bookkeeping, the daily loss counter and restart rebuild.
"""

from datetime import datetime, timedelta, timezone

import pytest

from database.models import MarketCategory, PositionStatus
from app.services.portfolio import PortfolioState

DAY = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _close(position, pnl: float, status: PositionStatus, when: datetime):
    position.status = status
    position.pnl = pnl
    position.exit_price = 100.0 if pnl > 0 else 0.0
    position.exit_timestamp = when
    return position


class TestPortfolioState:
    def test_open_allocates_capital(self, make_position):
        state = PortfolioState(10_000.0, now=DAY)
        state.on_position_opened(make_position(size=200.0))
        snapshot = state.snapshot(now=DAY)
        assert snapshot.allocated_capital == 200.0
        assert snapshot.available_capital == 9_800.0
        assert snapshot.open_positions == 1
        assert snapshot.open_by_category == {"economics": 1}

    def test_close_realizes_pnl_and_releases_capital(self, make_position):
        state = PortfolioState(10_000.0, now=DAY)
        position = make_position(size=100.0)
        state.on_position_opened(position)
        state.on_position_closed(_close(position, -60.0, PositionStatus.LOSS, DAY), now=DAY)

        snapshot = state.snapshot(now=DAY)
        assert snapshot.allocated_capital == 0.0
        assert snapshot.total_capital == 9_940.0
        assert snapshot.daily_loss == 60.0
        assert snapshot.open_market_ids == frozenset()

    def test_drawdown_from_peak(self, make_position):
        state = PortfolioState(10_000.0, now=DAY)
        winner, loser = make_position(), make_position()
        for p in (winner, loser):
            state.on_position_opened(p)
        state.on_position_closed(_close(winner, 1_000.0, PositionStatus.WIN, DAY), now=DAY)
        state.on_position_closed(_close(loser, -2_200.0, PositionStatus.LOSS, DAY), now=DAY)

        snapshot = state.snapshot(now=DAY)
        assert snapshot.peak_equity == 11_000.0
        assert snapshot.drawdown == pytest.approx(0.2)

    def test_daily_counter_resets_at_utc_boundary(self, make_position):
        state = PortfolioState(10_000.0, now=DAY)
        position = make_position()
        state.on_position_opened(position)
        state.on_position_closed(_close(position, -100.0, PositionStatus.LOSS, DAY), now=DAY)

        assert state.snapshot(now=DAY).daily_loss == 100.0
        assert state.snapshot(now=DAY + timedelta(days=1)).daily_loss == 0.0

    def test_closing_unknown_position_is_ignored(self, make_position):
        state = PortfolioState(10_000.0, now=DAY)
        state.on_position_closed(_close(make_position(), 50.0, PositionStatus.WIN, DAY))
        assert state.realized_pnl == 0.0


class TestRebuild:
    def test_rebuild_matches_live_state(self, make_position):
        """Replaying the ledger reproduces capital, peak and open exposure."""
        open_one = make_position(category=MarketCategory.SPORTS, size=150.0)
        win = _close(make_position(), 300.0, PositionStatus.WIN, DAY - timedelta(days=2))
        loss = _close(make_position(), -120.0, PositionStatus.LOSS, DAY - timedelta(hours=1))

        state = PortfolioState.rebuild(10_000.0, [open_one, win, loss], now=DAY)
        snapshot = state.snapshot(now=DAY)

        assert snapshot.total_capital == pytest.approx(10_180.0)
        assert snapshot.peak_equity == pytest.approx(10_300.0)
        assert snapshot.allocated_capital == 150.0
        assert snapshot.open_by_category == {"sports": 1}
        assert snapshot.daily_loss == pytest.approx(120.0)

    def test_restore_in_place_resets_previous_state(self, make_position):
        state = PortfolioState(10_000.0, now=DAY)
        state.on_position_opened(make_position(size=999.0))
        state.restore([], now=DAY)
        assert state.allocated_capital == 0.0
        assert state.open_positions == 0
