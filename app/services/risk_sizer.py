"""
app/services/risk_sizer.py
Fractional-Kelly position sizing for admitted trades.

Maps gate output (side, edge) and the belief interval onto the Kelly math
in core/math_utils.py. Win probability is the conservative bound of the
belief interval for the admitted side: belief_low for YES, and
100 - belief_high for NO (the same bound the edge is measured from).
"""

import logging
from dataclasses import dataclass
from typing import Optional

from core.config import Settings
from core.math_utils import binary_payoff, expected_value, fractional_kelly, kelly_criterion
from core.schemas import Belief
from database.models import PositionSide
from app.services.eligibility_gate import GateDecision
from app.services.portfolio import PortfolioSnapshot

logger = logging.getLogger(__name__)

SIZE_TOO_SMALL = "SizeTooSmall"
INVALID_PAYOFF = "InvalidPayoff"


@dataclass(frozen=True)
class SizingResult:
    """Kelly sizing outcome; size is 0 when rejected."""
    size: float
    win_probability: float
    payout_odds: float
    full_kelly: float
    scaled_kelly: float
    expected_value: float
    rejection_reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.rejection_reason is None


def win_probability(belief: Belief, side: PositionSide) -> float:
    """Believed probability (0-1) that the admitted side settles at 100."""
    if side == PositionSide.YES:
        return belief.belief_low / 100.0
    return (100.0 - belief.belief_high) / 100.0


def size_position(
    decision: GateDecision,
    belief: Belief,
    price: float,
    portfolio: PortfolioSnapshot,
    settings: Settings,
) -> SizingResult:
    """
    Size an admitted trade in currency units.

    raw   = full_kelly * KELLY_FRACTION * available capital
    size  = min(raw, MAX_RISK_PER_TRADE * total, MAX_POSITION_SIZE, available)

    A size at or below MIN_TRADE_SIZE is rejected with SizeTooSmall; that is
    an expected outcome, not a fault.
    """
    if not decision.admitted or decision.side is None:
        raise ValueError(f"size_position called on non-admitted decision for {decision.market_id}")

    side = decision.side
    p_win = win_probability(belief, side)

    cost = price if side == PositionSide.YES else 100.0 - price
    if cost <= 0.0 or cost >= 100.0:
        reason = f"{INVALID_PAYOFF}: contract cost {cost:.2f} leaves no payoff structure"
        logger.info("Sizer REJECTED market %s: %s", decision.market_id, reason)
        return SizingResult(0.0, round(p_win, 4), 0.0, 0.0, 0.0, 0.0, rejection_reason=reason)

    profit_if_win, loss_if_lose = binary_payoff(price, side_is_yes=side == PositionSide.YES)

    full_kelly = kelly_criterion(p_win, profit_if_win, loss_if_lose)
    scaled = fractional_kelly(p_win, profit_if_win, loss_if_lose, settings.KELLY_FRACTION)
    ev = expected_value(p_win, profit_if_win, loss_if_lose)

    available = portfolio.available_capital
    raw_size = scaled * available
    cap = min(
        settings.MAX_RISK_PER_TRADE * portfolio.total_capital,
        settings.MAX_POSITION_SIZE,
        available,
    )
    size = round(max(0.0, min(raw_size, cap)), 2)

    rejection = None
    if size <= settings.MIN_TRADE_SIZE:
        rejection = (
            f"{SIZE_TOO_SMALL}: size ${size:.2f} <= minimum ${settings.MIN_TRADE_SIZE:.2f} "
            f"(kelly={full_kelly:.4f}, available=${available:.2f})"
        )
        logger.info("Sizer REJECTED market %s: %s", decision.market_id, rejection)
        size = 0.0
    else:
        logger.info(
            "Sizer market %s: side=%s p_win=%.3f odds=%.3f kelly=%.4f scaled=%.4f "
            "raw=$%.2f cap=$%.2f size=$%.2f",
            decision.market_id, side.value, p_win, profit_if_win, full_kelly, scaled,
            raw_size, cap, size,
        )

    return SizingResult(
        size=size,
        win_probability=round(p_win, 4),
        payout_odds=round(profit_if_win, 4),
        full_kelly=round(full_kelly, 6),
        scaled_kelly=round(scaled, 6),
        expected_value=round(ev, 6),
        rejection_reason=rejection,
    )
