"""
app/services/eligibility_gate.py
Edge calculation and the ordered admission checks for a single market.

Stateless: identical (market, belief, portfolio, supervisor) inputs always
produce the identical decision. Inaction is the default: a price inside
the belief interval is NO_TRADE before any check runs.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from core.config import Settings
from core.constants import CATEGORY_EDGE_THRESHOLDS, DEFAULT_EDGE_THRESHOLD
from core.schemas import Belief, MarketSnapshot
from database.models import PositionSide
from app.services.portfolio import PortfolioSnapshot
from app.services.supervisor import SupervisorStatus

logger = logging.getLogger(__name__)


class TradeAction(str, Enum):
    BUY_YES = "BUY_YES"
    BUY_NO = "BUY_NO"
    NO_TRADE = "NO_TRADE"


class GateCheck(str, Enum):
    """Ordered admission checks; the value doubles as the rejection code."""
    SUPERVISOR = "SUPERVISOR_HALTED"
    EDGE = "EDGE_BELOW_THRESHOLD"
    CONFIDENCE = "CONFIDENCE_TOO_LOW"
    BELIEF_WIDTH = "BELIEF_TOO_WIDE"
    LIQUIDITY = "LIQUIDITY_TOO_LOW"
    DUPLICATE = "DUPLICATE_EXPOSURE"
    DAILY_LOSS = "DAILY_LOSS_LIMIT"
    EXPOSURE = "EXPOSURE_LIMIT"


NO_PRICE_REASON = "NO_PRICE: market has no valid price"
INSIDE_BELIEF_REASON = "PRICE_INSIDE_BELIEF"


@dataclass(frozen=True)
class CheckResult:
    check: GateCheck
    passed: bool
    reason: str


@dataclass(frozen=True)
class GateDecision:
    """Outcome of one gate evaluation, with the checks that actually ran."""
    market_id: str
    action: TradeAction
    side: Optional[PositionSide]
    edge: float
    reason: str
    trace: tuple[CheckResult, ...] = ()

    @property
    def admitted(self) -> bool:
        return self.action != TradeAction.NO_TRADE


def edge_threshold(category: str) -> float:
    return CATEGORY_EDGE_THRESHOLDS.get(category, DEFAULT_EDGE_THRESHOLD)


def calculate_edge(belief: Belief, price: float) -> tuple[float, Optional[PositionSide]]:
    """
    Distance from price to the nearest belief bound, in percentage points.

    Price below the interval favors YES, above favors NO, inside gives no side.
    """
    if price < belief.belief_low:
        return belief.belief_low - price, PositionSide.YES
    if price > belief.belief_high:
        return price - belief.belief_high, PositionSide.NO
    return 0.0, None


# ------------------------------------------------------------------
# Checks: each returns a CheckResult; order is fixed by _CHECKS
# ------------------------------------------------------------------

@dataclass(frozen=True)
class _GateInput:
    market: MarketSnapshot
    belief: Belief
    portfolio: PortfolioSnapshot
    supervisor: SupervisorStatus
    edge: float
    settings: Settings


def _check_supervisor(g: _GateInput) -> CheckResult:
    if g.supervisor.halted:
        return CheckResult(GateCheck.SUPERVISOR, False, f"System halted: {g.supervisor.halt_reason}")
    return CheckResult(GateCheck.SUPERVISOR, True, "Supervisor observing")


def _check_edge(g: _GateInput) -> CheckResult:
    threshold = edge_threshold(g.market.category.value)
    if g.edge < threshold:
        return CheckResult(
            GateCheck.EDGE, False,
            f"Edge {g.edge:.1f} below {threshold:.1f} for category {g.market.category.value}",
        )
    return CheckResult(GateCheck.EDGE, True, f"Edge {g.edge:.1f} >= {threshold:.1f}")


def _check_confidence(g: _GateInput) -> CheckResult:
    minimum = g.settings.MIN_CONFIDENCE
    if g.belief.confidence < minimum:
        return CheckResult(
            GateCheck.CONFIDENCE, False,
            f"Confidence {g.belief.confidence:.1f} below minimum {minimum:.1f}",
        )
    return CheckResult(GateCheck.CONFIDENCE, True, f"Confidence {g.belief.confidence:.1f}")


def _check_width(g: _GateInput) -> CheckResult:
    maximum = g.settings.MAX_BELIEF_WIDTH
    if g.belief.width > maximum:
        return CheckResult(
            GateCheck.BELIEF_WIDTH, False,
            f"Belief width {g.belief.width:.1f} exceeds maximum {maximum:.1f}",
        )
    return CheckResult(GateCheck.BELIEF_WIDTH, True, f"Belief width {g.belief.width:.1f}")


def _check_liquidity(g: _GateInput) -> CheckResult:
    floor = g.settings.MIN_LIQUIDITY
    if g.market.liquidity < floor:
        return CheckResult(
            GateCheck.LIQUIDITY, False,
            f"Liquidity {g.market.liquidity:.0f} below minimum {floor:.0f}",
        )
    return CheckResult(GateCheck.LIQUIDITY, True, f"Liquidity {g.market.liquidity:.0f}")


def _check_duplicate(g: _GateInput) -> CheckResult:
    if g.market.id in g.portfolio.open_market_ids:
        return CheckResult(
            GateCheck.DUPLICATE, False, f"Open position already exists for market {g.market.id}",
        )
    return CheckResult(GateCheck.DUPLICATE, True, "No existing exposure")


def _check_daily_loss(g: _GateInput) -> CheckResult:
    limit = g.settings.DAILY_LOSS_LIMIT
    if g.portfolio.daily_loss > limit:
        return CheckResult(
            GateCheck.DAILY_LOSS, False,
            f"Daily realized loss ${g.portfolio.daily_loss:.2f} exceeds limit ${limit:.2f}",
        )
    return CheckResult(GateCheck.DAILY_LOSS, True, f"Daily loss ${g.portfolio.daily_loss:.2f}")


def _check_exposure(g: _GateInput) -> CheckResult:
    max_open = g.settings.MAX_OPEN_POSITIONS
    open_count = g.portfolio.open_positions
    if open_count >= max_open:
        return CheckResult(
            GateCheck.EXPOSURE, False, f"Maximum open positions reached ({open_count}/{max_open})",
        )

    # Diversification: same-category share of open positions after admission.
    if open_count > 0:
        category = g.market.category.value
        in_category = g.portfolio.open_by_category.get(category, 0) + 1
        share = in_category / (open_count + 1)
        if share > g.settings.CORRELATION_THRESHOLD:
            return CheckResult(
                GateCheck.EXPOSURE, False,
                f"Category concentration {share:.0%} in {category} exceeds "
                f"{g.settings.CORRELATION_THRESHOLD:.0%}",
            )

    return CheckResult(GateCheck.EXPOSURE, True, f"Open positions {open_count}/{max_open}")


_CHECKS: tuple[Callable[[_GateInput], CheckResult], ...] = (
    _check_supervisor,
    _check_edge,
    _check_confidence,
    _check_width,
    _check_liquidity,
    _check_duplicate,
    _check_daily_loss,
    _check_exposure,
)


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------

def evaluate_market(
    market: MarketSnapshot,
    belief: Belief,
    portfolio: PortfolioSnapshot,
    supervisor: SupervisorStatus,
    settings: Settings,
) -> GateDecision:
    """Run the ordered admission checks; the first failure is the decision."""
    if market.price is None:
        return GateDecision(market.id, TradeAction.NO_TRADE, None, 0.0, NO_PRICE_REASON)

    edge, side = calculate_edge(belief, market.price)
    if side is None:
        return GateDecision(
            market.id, TradeAction.NO_TRADE, None, 0.0,
            f"{INSIDE_BELIEF_REASON}: price {market.price:.1f} within "
            f"[{belief.belief_low:.1f}, {belief.belief_high:.1f}]",
        )

    gate_input = _GateInput(market, belief, portfolio, supervisor, edge, settings)
    trace: list[CheckResult] = []

    for check in _CHECKS:
        result = check(gate_input)
        trace.append(result)
        if not result.passed:
            logger.info(
                "Gate REJECTED market %s (%s edge=%.1f): %s",
                market.id, side.value, edge, result.reason,
            )
            return GateDecision(
                market.id, TradeAction.NO_TRADE, side, round(edge, 4),
                f"{result.check.value}: {result.reason}", tuple(trace),
            )

    action = TradeAction.BUY_YES if side == PositionSide.YES else TradeAction.BUY_NO
    logger.info(
        "Gate ADMITTED market %s: %s edge=%.1f price=%.1f belief=[%.1f, %.1f] conf=%.1f",
        market.id, action.value, edge, market.price,
        belief.belief_low, belief.belief_high, belief.confidence,
    )
    return GateDecision(
        market.id, action, side, round(edge, 4), "All checks passed", tuple(trace),
    )
