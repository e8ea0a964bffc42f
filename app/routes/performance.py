"""
app/routes/performance.py
Trade performance metrics and pattern analysis over resolved positions.
"""

import logging
import math
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field, field_validator

from core.schemas import CamelModel
from app.services.calibration_engine import analyze_patterns, compute_performance
from app.services.trading_service import TradingService, get_trading_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/performance", tags=["performance"])


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class PerformanceResponse(CamelModel):
    """Response for GET /performance. profitFactor is null when unbounded."""
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    total_pnl: float = Field(alias="totalPnL")
    average_pnl: float = Field(alias="averagePnL")
    average_win: float
    average_loss: float
    profit_factor: Optional[float]
    max_drawdown: float
    average_holding_period: float
    edge_accuracy: float

    @field_validator("profit_factor", mode="before")
    @classmethod
    def _finite_or_null(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and math.isinf(value):
            return None
        return value


class CategoryRow(CamelModel):
    category: str
    trades: int
    win_rate: float
    avg_pnl: float


class RangeRow(CamelModel):
    min: float
    max: float
    win_rate: float


class HourRow(CamelModel):
    hour: int
    trades: int
    win_rate: float


class PatternsResponse(CamelModel):
    """Response for GET /performance/patterns."""
    best_categories: list[CategoryRow]
    worst_categories: list[CategoryRow]
    optimal_edge_range: RangeRow
    optimal_belief_width: RangeRow
    time_of_day_patterns: list[HourRow]


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("", response_model=PerformanceResponse)
async def get_performance(
    service: TradingService = Depends(get_trading_service),
) -> PerformanceResponse:
    metrics = compute_performance(service.ledger.all_positions())
    return PerformanceResponse.model_validate(asdict(metrics))


@router.get("/patterns", response_model=PatternsResponse)
async def get_patterns(
    service: TradingService = Depends(get_trading_service),
) -> PatternsResponse:
    patterns = analyze_patterns(service.ledger.all_positions())
    return PatternsResponse.model_validate(asdict(patterns))
