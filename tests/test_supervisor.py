"""
tests/test_supervisor.py
Tests for the OBSERVING/HALTED state machine.
"""

import pytest

from database.models import PositionStatus
from app.services.supervisor import Supervisor, SupervisorState


@pytest.fixture
def supervisor(settings) -> Supervisor:
    return Supervisor(settings)


class TestHaltConditions:
    def test_starts_observing(self, supervisor):
        assert supervisor.state == SupervisorState.OBSERVING
        assert not supervisor.status().halted

    def test_drawdown_over_ceiling_halts(self, supervisor):
        assert supervisor.evaluate(drawdown=0.101) is True
        assert supervisor.is_halted
        assert supervisor.status().halt_reason.startswith("DRAWDOWN")

    def test_drawdown_under_ceiling_does_not_halt(self, supervisor):
        assert supervisor.evaluate(drawdown=0.0999) is False
        assert not supervisor.is_halted

    def test_calibration_needs_enough_samples(self, supervisor):
        assert supervisor.evaluate(0.0, coverage_deviation=40.0, calibration_samples=19) is False
        assert supervisor.evaluate(0.0, coverage_deviation=40.0, calibration_samples=20) is True
        assert supervisor.status().halt_reason.startswith("CALIBRATION")

    def test_consecutive_invalidations(self, supervisor):
        for _ in range(5):
            supervisor.record_outcome(PositionStatus.LOSS)
        assert supervisor.evaluate(0.0) is False

        supervisor.record_outcome(PositionStatus.LOSS)
        assert supervisor.evaluate(0.0) is True
        assert supervisor.status().halt_reason.startswith("INVALIDATIONS")

    def test_win_resets_invalidation_streak(self, supervisor):
        for _ in range(5):
            supervisor.record_outcome(PositionStatus.LOSS)
        supervisor.record_outcome(PositionStatus.WIN)
        supervisor.record_outcome(PositionStatus.LOSS)
        assert supervisor.consecutive_invalidations == 1

    def test_expired_and_break_even_leave_streak_alone(self, supervisor):
        supervisor.record_outcome(PositionStatus.LOSS)
        supervisor.record_outcome(PositionStatus.EXPIRED)
        supervisor.record_outcome(PositionStatus.BREAK_EVEN)
        assert supervisor.consecutive_invalidations == 1


class TestHaltIsTerminal:
    def test_halts_exactly_once(self, supervisor):
        """Repeated breaches after a halt record no further transitions."""
        results = [supervisor.evaluate(drawdown=0.15) for _ in range(3)]
        assert results == [True, False, False]
        assert len(supervisor.history) == 1

    def test_favorable_outcomes_do_not_recover(self, supervisor):
        supervisor.evaluate(drawdown=0.2)
        for _ in range(10):
            supervisor.record_outcome(PositionStatus.WIN)
            supervisor.evaluate(drawdown=0.0)
        assert supervisor.is_halted

    def test_manual_halt(self, supervisor):
        assert supervisor.halt("MANUAL: operator stop") is True
        assert supervisor.halt("MANUAL: again") is False
        assert supervisor.status().halt_reason == "MANUAL: operator stop"

    def test_reset_is_the_only_exit(self, supervisor):
        supervisor.evaluate(drawdown=0.2)
        supervisor.reset("operator restart")
        assert supervisor.state == SupervisorState.OBSERVING
        assert supervisor.status().halt_reason is None
        assert [t.to_state for t in supervisor.history] == [
            SupervisorState.HALTED, SupervisorState.OBSERVING,
        ]

    def test_reset_when_observing_is_noop(self, supervisor):
        supervisor.reset()
        assert supervisor.history == []
