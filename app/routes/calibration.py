"""
app/routes/calibration.py
Calibration endpoint: predicted vs. realized win rate per belief bucket,
Brier score, belief coverage and recommendations.
"""

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends

from core.schemas import CamelModel
from app.services.calibration_engine import compute_calibration
from app.services.trading_service import TradingService, get_trading_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/calibration", tags=["calibration"])


class CalibrationBucketRow(CamelModel):
    """One belief bucket; probabilities and rates in percentage points."""
    belief_range: str
    predicted_probability: float
    actual_win_rate: float
    trades: int
    calibration_error: float


class CalibrationResponse(CamelModel):
    """Response for GET /calibration."""
    calibration_buckets: list[CalibrationBucketRow]
    brier_score: float
    overall_calibration: float
    recommendations: list[str]
    belief_coverage: float
    coverage_deviation: float
    samples: int


@router.get("", response_model=CalibrationResponse)
async def get_calibration(
    service: TradingService = Depends(get_trading_service),
) -> CalibrationResponse:
    report = compute_calibration(service.ledger.all_positions())
    return CalibrationResponse.model_validate(asdict(report))
