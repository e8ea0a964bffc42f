"""
app/routes/portfolio.py
Capital view: equity, allocation, unrealized P&L and drawdown.
"""

import logging

from fastapi import APIRouter, Depends

from core.schemas import CamelModel
from app.services.trading_service import TradingService, get_trading_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/portfolio", tags=["portfolio"])


class PortfolioResponse(CamelModel):
    """Response for GET /portfolio. Drawdown is in percent."""
    total_value: float
    available_capital: float
    allocated_capital: float
    open_positions: int
    unrealized_pnl: float
    drawdown: float


@router.get("", response_model=PortfolioResponse)
async def get_portfolio(service: TradingService = Depends(get_trading_service)) -> PortfolioResponse:
    return PortfolioResponse.model_validate(service.portfolio_view())
