"""
app/routes/status.py
Supervisor status endpoint.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from core.schemas import CamelModel
from app.services.trading_service import TradingService, get_trading_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/status", tags=["status"])


class StatusResponse(CamelModel):
    """Response for GET /status."""
    state: str
    markets: int
    halted: bool
    halt_reason: Optional[str] = None


@router.get("", response_model=StatusResponse, response_model_exclude_none=True)
async def get_status(service: TradingService = Depends(get_trading_service)) -> StatusResponse:
    """OBSERVING or HALTED, with the halt reason when halted."""
    return StatusResponse.model_validate(service.status())
