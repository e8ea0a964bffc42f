"""
app/routes/positions.py
Read-only position endpoints backed by the Position Ledger.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from core.exceptions import PositionNotFound
from core.schemas import CamelModel
from database.models import Position, PositionStatus
from app.services.trading_service import TradingService, get_trading_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/positions", tags=["positions"])


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class PositionRow(CamelModel):
    """A single position; prices in percentage points."""
    id: str
    market_id: str
    market_question: str
    category: str
    side: str
    entry_price: float
    belief_low: float
    belief_high: float
    confidence: float
    edge: float
    size: float
    entry_timestamp: datetime
    status: str
    exit_price: Optional[float]
    pnl: Optional[float]
    exit_timestamp: Optional[datetime]
    actual_outcome: Optional[str]


class PositionsResponse(CamelModel):
    """Response for GET /positions."""
    count: int
    positions: list[PositionRow]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _position_to_row(p: Position) -> PositionRow:
    return PositionRow(
        id=p.id,
        market_id=p.market_id,
        market_question=p.market_question,
        category=p.category.value,
        side=p.side.value,
        entry_price=p.entry_price,
        belief_low=p.belief_low,
        belief_high=p.belief_high,
        confidence=p.confidence,
        edge=p.edge,
        size=p.size,
        entry_timestamp=p.entry_timestamp,
        status=p.status.value,
        exit_price=p.exit_price,
        pnl=p.pnl,
        exit_timestamp=p.exit_timestamp,
        actual_outcome=p.actual_outcome.value if p.actual_outcome else None,
    )


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("", response_model=PositionsResponse)
async def list_positions(
    status: Optional[PositionStatus] = Query(None, description="Filter by status"),
    service: TradingService = Depends(get_trading_service),
) -> PositionsResponse:
    """All positions, newest first."""
    positions = service.ledger.all_positions()
    if status is not None:
        positions = [p for p in positions if p.status == status]
    rows = [_position_to_row(p) for p in reversed(positions)]
    return PositionsResponse(count=len(rows), positions=rows)


@router.get("/{position_id}", response_model=PositionRow)
async def get_position(
    position_id: str,
    service: TradingService = Depends(get_trading_service),
) -> PositionRow:
    try:
        return _position_to_row(service.ledger.get(position_id))
    except PositionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
