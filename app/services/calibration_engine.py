"""
app/services/calibration_engine.py
Accuracy metrics derived from resolved positions.

Pure aggregations over ledger rows: calibration buckets, Brier score,
belief coverage, performance metrics and pattern analysis. Nothing here
mutates a Position.
"""

import logging
import math
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Optional

from core.constants import (
    BELIEF_WIDTH_RANGES,
    BRIER_WARNING_LEVEL,
    BUCKET_ERROR_WARNING,
    BUCKET_MIN_TRADES,
    CALIBRATION_BUCKET_WIDTH,
    CALIBRATION_ERROR_WARNING,
    EDGE_RANGES,
    EXPECTED_BELIEF_COVERAGE,
)
from database.models import Position, PositionSide, PositionStatus, as_utc

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Result records
# ------------------------------------------------------------------

@dataclass(frozen=True)
class CalibrationBucket:
    belief_range: str
    predicted_probability: float    # bucket midpoint, percentage points
    actual_win_rate: float          # percentage points
    trades: int
    calibration_error: float


@dataclass(frozen=True)
class CalibrationReport:
    calibration_buckets: list[CalibrationBucket]
    brier_score: float
    overall_calibration: float
    recommendations: list[str]
    belief_coverage: float          # percent of predictions the interval sided with
    coverage_deviation: float       # |coverage - 85|
    samples: int


@dataclass(frozen=True)
class PerformanceMetrics:
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float                 # 0-1
    total_pnl: float
    average_pnl: float
    average_win: float
    average_loss: float
    profit_factor: float            # math.inf when there are wins and no losses
    max_drawdown: float             # currency
    average_holding_period: float   # hours
    edge_accuracy: float            # 0-1


@dataclass(frozen=True)
class CategoryPerformance:
    category: str
    trades: int
    win_rate: float
    avg_pnl: float


@dataclass(frozen=True)
class RangePerformance:
    min: float
    max: float
    win_rate: float


@dataclass(frozen=True)
class HourPerformance:
    hour: int
    trades: int
    win_rate: float


@dataclass(frozen=True)
class PatternAnalysis:
    best_categories: list[CategoryPerformance]
    worst_categories: list[CategoryPerformance]
    optimal_edge_range: RangePerformance
    optimal_belief_width: RangePerformance
    time_of_day_patterns: list[HourPerformance] = field(default_factory=list)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def predicted_probability(position: Position) -> float:
    """Believed probability (percentage points) that the position's side wins."""
    midpoint = position.belief_midpoint
    return midpoint if position.side == PositionSide.YES else 100.0 - midpoint


def _predictions(positions: Iterable[Position]) -> list[Position]:
    """Resolved positions with a known outcome; EXPIRED carries no outcome."""
    return [
        p for p in positions
        if not p.is_open
        and p.status != PositionStatus.EXPIRED
        and p.actual_outcome is not None
    ]


def _closed(positions: Iterable[Position]) -> list[Position]:
    return [p for p in positions if not p.is_open]


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _in_range(value: float, low: float, high: float, last: bool) -> bool:
    return low <= value <= high if last else low <= value < high


def _bucket_index(probability: float) -> int:
    buckets = int(100 / CALIBRATION_BUCKET_WIDTH)
    return min(int(probability // CALIBRATION_BUCKET_WIDTH), buckets - 1)


def interval_covers(position: Position) -> bool:
    """
    Did the belief interval side with the realized outcome?

    Coverage here means the interval reaches the outcome's half of the scale
    (high >= 50 for YES, low <= 50 for NO), not that it contains the
    settlement value 0 or 100 itself.
    """
    if position.actual_outcome == PositionSide.YES:
        return position.belief_high >= 50.0
    return position.belief_low <= 50.0


# ------------------------------------------------------------------
# Calibration
# ------------------------------------------------------------------

def compute_calibration(positions: Iterable[Position]) -> CalibrationReport:
    """
    Bucket resolved predictions by side-adjusted belief midpoint and compare
    predicted against realized win rate.

    Returns
    -------
    CalibrationReport
        Empty buckets are omitted; with no predictions every figure is 0.
    """
    predictions = _predictions(positions)

    grouped: dict[int, list[Position]] = defaultdict(list)
    for position in predictions:
        grouped[_bucket_index(predicted_probability(position))].append(position)

    buckets: list[CalibrationBucket] = []
    for index in sorted(grouped):
        members = grouped[index]
        low = index * CALIBRATION_BUCKET_WIDTH
        high = low + CALIBRATION_BUCKET_WIDTH
        predicted = low + CALIBRATION_BUCKET_WIDTH / 2.0
        wins = sum(1 for p in members if p.status == PositionStatus.WIN)
        actual = wins / len(members) * 100.0
        buckets.append(CalibrationBucket(
            belief_range=f"{low:.0f}-{high:.0f}%",
            predicted_probability=predicted,
            actual_win_rate=round(actual, 2),
            trades=len(members),
            calibration_error=round(abs(predicted - actual), 2),
        ))

    brier = _mean([
        ((1.0 if p.actual_outcome == p.side else 0.0) - predicted_probability(p) / 100.0) ** 2
        for p in predictions
    ])

    total = sum(b.trades for b in buckets)
    overall = (
        sum(b.calibration_error * b.trades for b in buckets) / total if total else 0.0
    )

    coverage = (
        sum(1 for p in predictions if interval_covers(p)) / len(predictions) * 100.0
        if predictions else 0.0
    )
    deviation = abs(coverage - EXPECTED_BELIEF_COVERAGE) if predictions else 0.0

    return CalibrationReport(
        calibration_buckets=buckets,
        brier_score=round(brier, 4),
        overall_calibration=round(overall, 2),
        recommendations=_recommendations(buckets, brier, overall),
        belief_coverage=round(coverage, 2),
        coverage_deviation=round(deviation, 2),
        samples=len(predictions),
    )


def _recommendations(
    buckets: list[CalibrationBucket], brier: float, overall: float,
) -> list[str]:
    notes: list[str] = []
    if not buckets:
        return notes

    if brier > BRIER_WARNING_LEVEL:
        notes.append(
            f"Brier score {brier:.3f} is worse than {BRIER_WARNING_LEVEL}; "
            "belief intervals are poorly predictive"
        )
    if overall > CALIBRATION_ERROR_WARNING:
        notes.append(
            f"Overall calibration error {overall:.1f} points; widen intervals "
            "or raise the confidence floor"
        )
    for bucket in buckets:
        if bucket.trades < BUCKET_MIN_TRADES or bucket.calibration_error <= BUCKET_ERROR_WARNING:
            continue
        if bucket.actual_win_rate < bucket.predicted_probability:
            notes.append(
                f"Overconfident in {bucket.belief_range}: predicted "
                f"{bucket.predicted_probability:.0f}%, realized {bucket.actual_win_rate:.0f}%"
            )
        else:
            notes.append(
                f"Underconfident in {bucket.belief_range}: predicted "
                f"{bucket.predicted_probability:.0f}%, realized {bucket.actual_win_rate:.0f}%"
            )

    if not notes:
        notes.append("Calibration within tolerances")
    return notes


# ------------------------------------------------------------------
# Performance
# ------------------------------------------------------------------

def compute_performance(positions: Iterable[Position]) -> PerformanceMetrics:
    """Trade statistics over every terminal position."""
    closed = _closed(positions)
    pnls = [p.pnl or 0.0 for p in closed]
    wins = [p.pnl or 0.0 for p in closed if p.status == PositionStatus.WIN]
    losses = [abs(p.pnl or 0.0) for p in closed if p.status == PositionStatus.LOSS]

    gross_profit = sum(x for x in pnls if x > 0)
    gross_loss = abs(sum(x for x in pnls if x < 0))
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    elif gross_profit > 0:
        profit_factor = math.inf
    else:
        profit_factor = 0.0

    # Running realized P&L in exit order; drawdown measured from its high-water mark.
    peak = running = max_drawdown = 0.0
    ordered = sorted(
        (p for p in closed if p.exit_timestamp is not None),
        key=lambda p: as_utc(p.exit_timestamp),
    )
    for position in ordered:
        running += position.pnl or 0.0
        peak = max(peak, running)
        max_drawdown = max(max_drawdown, peak - running)

    holding_hours = [
        (as_utc(p.exit_timestamp) - as_utc(p.entry_timestamp)).total_seconds() / 3600.0
        for p in ordered
    ]

    predictions = _predictions(closed)
    edge_hits = sum(1 for p in predictions if p.actual_outcome == p.side)

    return PerformanceMetrics(
        total_trades=len(closed),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=round(len(wins) / len(closed), 4) if closed else 0.0,
        total_pnl=round(sum(pnls), 2),
        average_pnl=round(_mean(pnls), 2),
        average_win=round(_mean(wins), 2),
        average_loss=round(_mean(losses), 2),
        profit_factor=profit_factor if math.isinf(profit_factor) else round(profit_factor, 4),
        max_drawdown=round(max_drawdown, 2),
        average_holding_period=round(_mean(holding_hours), 2),
        edge_accuracy=round(edge_hits / len(predictions), 4) if predictions else 0.0,
    )


def category_breakdown(positions: Iterable[Position]) -> list[CategoryPerformance]:
    """Win rate and average P&L per category, best win rate first."""
    grouped: dict[str, list[Position]] = defaultdict(list)
    for position in _closed(positions):
        if position.status == PositionStatus.EXPIRED:
            continue
        grouped[position.category.value].append(position)

    rows = [
        CategoryPerformance(
            category=category,
            trades=len(members),
            win_rate=round(
                sum(1 for p in members if p.status == PositionStatus.WIN) / len(members), 4,
            ),
            avg_pnl=round(_mean([p.pnl or 0.0 for p in members]), 2),
        )
        for category, members in grouped.items()
    ]
    rows.sort(key=lambda row: row.win_rate, reverse=True)
    return rows


def _best_range(
    positions: list[Position],
    ranges: Sequence[tuple[float, float]],
    measure,
) -> RangePerformance:
    best: Optional[RangePerformance] = None
    for i, (low, high) in enumerate(ranges):
        last = i == len(ranges) - 1
        members = [p for p in positions if _in_range(measure(p), low, high, last)]
        decided = [p for p in members if p.status in (PositionStatus.WIN, PositionStatus.LOSS)]
        if not decided:
            continue
        rate = sum(1 for p in decided if p.status == PositionStatus.WIN) / len(decided)
        if best is None or rate > best.win_rate:
            best = RangePerformance(min=low, max=high, win_rate=round(rate, 4))
    return best or RangePerformance(min=0.0, max=0.0, win_rate=0.0)


def analyze_patterns(positions: Iterable[Position]) -> PatternAnalysis:
    """Which categories, edges, belief widths and entry hours have paid off."""
    closed = _closed(positions)
    categories = category_breakdown(closed)

    by_hour: dict[int, list[Position]] = defaultdict(list)
    for position in closed:
        if position.status == PositionStatus.EXPIRED:
            continue
        by_hour[as_utc(position.entry_timestamp).hour].append(position)

    hours = [
        HourPerformance(
            hour=hour,
            trades=len(members),
            win_rate=round(
                sum(1 for p in members if p.status == PositionStatus.WIN) / len(members), 4,
            ),
        )
        for hour, members in sorted(by_hour.items())
    ]
    hours.sort(key=lambda row: row.win_rate, reverse=True)

    return PatternAnalysis(
        best_categories=categories[:3],
        worst_categories=list(reversed(categories[-3:])),
        optimal_edge_range=_best_range(closed, EDGE_RANGES, lambda p: p.edge),
        optimal_belief_width=_best_range(closed, BELIEF_WIDTH_RANGES, lambda p: p.belief_width),
        time_of_day_patterns=hours[:5],
    )
