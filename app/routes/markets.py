"""
app/routes/markets.py
Tracked markets with their current beliefs.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from core.schemas import CamelModel
from app.services.trading_service import TradingService, get_trading_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/markets", tags=["markets"])


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class UnknownRow(BaseModel):
    id: str
    description: str
    added_at: datetime


class BeliefRow(BaseModel):
    """Belief block keeps its stored snake_case field names."""
    belief_low: float
    belief_high: float
    confidence: float
    unknowns: list[UnknownRow]
    last_updated: datetime


class MarketRow(CamelModel):
    """One tracked market."""
    market_id: str
    question: str
    category: str
    current_price: Optional[float]
    liquidity: float
    closes_at: Optional[datetime]
    belief: BeliefRow
    signal_count: int
    last_checked: datetime


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("", response_model=list[MarketRow])
async def list_markets(
    category: Optional[str] = Query(None, description="Filter by category"),
    service: TradingService = Depends(get_trading_service),
) -> list[dict[str, Any]]:
    """Every market the Belief Store currently tracks."""
    views = service.market_views()
    if category:
        views = [v for v in views if v["category"] == category.lower()]
    return views
