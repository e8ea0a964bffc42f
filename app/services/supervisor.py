"""
app/services/supervisor.py
Process-wide control state: OBSERVING or HALTED.

The gate consults the supervisor before admitting any trade. HALTED is
terminal until an explicit reset; favorable resolutions never lift it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from core.config import Settings
from database.models import PositionStatus, utcnow

logger = logging.getLogger(__name__)


class SupervisorState(str, Enum):
    OBSERVING = "OBSERVING"
    HALTED = "HALTED"


@dataclass(frozen=True)
class SupervisorStatus:
    """Read-only view of the supervisor handed to the gate and routes."""
    state: SupervisorState
    halt_reason: Optional[str] = None
    halted_at: Optional[datetime] = None

    @property
    def halted(self) -> bool:
        return self.state == SupervisorState.HALTED


@dataclass(frozen=True)
class StateTransition:
    from_state: SupervisorState
    to_state: SupervisorState
    timestamp: datetime
    reason: str


class Supervisor:
    """Halts trade admission on drawdown, miscalibration or repeated invalidations."""

    def __init__(self, settings: Settings) -> None:
        self._max_drawdown_pct = settings.MAX_DRAWDOWN_PERCENT
        self._max_coverage_deviation = settings.CALIBRATION_COVERAGE_DEVIATION_HALT
        self._max_invalidations = settings.MAX_CONSECUTIVE_INVALIDATIONS
        self._min_samples = settings.MIN_CALIBRATION_SAMPLES

        self._state = SupervisorState.OBSERVING
        self._halt_reason: Optional[str] = None
        self._halted_at: Optional[datetime] = None
        self._history: list[StateTransition] = []
        self.consecutive_invalidations = 0

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def is_halted(self) -> bool:
        return self._state == SupervisorState.HALTED

    @property
    def history(self) -> list[StateTransition]:
        return list(self._history)

    def status(self) -> SupervisorStatus:
        return SupervisorStatus(self._state, self._halt_reason, self._halted_at)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def record_outcome(self, status: PositionStatus) -> None:
        """Track consecutive invalidated predictions (losses)."""
        if status == PositionStatus.LOSS:
            self.consecutive_invalidations += 1
        elif status == PositionStatus.WIN:
            self.consecutive_invalidations = 0

    def evaluate(
        self,
        drawdown: float,
        coverage_deviation: float = 0.0,
        calibration_samples: int = 0,
    ) -> bool:
        """
        Check every halt condition; returns True if this call halted the system.

        Parameters
        ----------
        drawdown : float
            Fractional decline from peak equity (0.10 = 10%).
        coverage_deviation : float
            |belief coverage - expected coverage| in percentage points.
        calibration_samples : int
            Resolved predictions behind the coverage figure.
        """
        if self.is_halted:
            return False

        drawdown_pct = drawdown * 100.0
        if drawdown_pct > self._max_drawdown_pct:
            return self.halt(
                f"DRAWDOWN: {drawdown_pct:.1f}% exceeds {self._max_drawdown_pct:.1f}% ceiling"
            )

        if (
            calibration_samples >= self._min_samples
            and coverage_deviation > self._max_coverage_deviation
        ):
            return self.halt(
                f"CALIBRATION: coverage deviation {coverage_deviation:.1f} points "
                f"exceeds {self._max_coverage_deviation:.1f}"
            )

        if self.consecutive_invalidations > self._max_invalidations:
            return self.halt(
                f"INVALIDATIONS: {self.consecutive_invalidations} consecutive invalidated "
                f"predictions exceed {self._max_invalidations}"
            )

        return False

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def halt(self, reason: str) -> bool:
        if self.is_halted:
            return False
        now = utcnow()
        self._history.append(StateTransition(self._state, SupervisorState.HALTED, now, reason))
        self._state = SupervisorState.HALTED
        self._halt_reason = reason
        self._halted_at = now
        logger.critical("SUPERVISOR HALT: %s", reason)
        return True

    def reset(self, reason: str = "manual restart") -> None:
        """Explicit external restart; the only way out of HALTED."""
        if not self.is_halted:
            return
        self._history.append(
            StateTransition(self._state, SupervisorState.OBSERVING, utcnow(), reason)
        )
        self._state = SupervisorState.OBSERVING
        self._halt_reason = None
        self._halted_at = None
        self.consecutive_invalidations = 0
        logger.warning("Supervisor reset to OBSERVING: %s", reason)
