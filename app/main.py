"""
app/main.py
FastAPI entry point for the belief-and-risk decision engine.

The lifespan restores state from the database, starts the timers, and on
exit lets in-flight jobs finish before stopping them.
"""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

import database.models as _models  # noqa: F401 — registers tables with SQLModel metadata
from core.config import get_settings
from core.constants import SYSTEM_VERSION
from database.connection import async_session, engine, get_session
from database.models import utcnow
from app.routes.calibration import router as calibration_router
from app.routes.markets import router as markets_router
from app.routes.performance import router as performance_router
from app.routes.portfolio import router as portfolio_router
from app.routes.positions import router as positions_router
from app.routes.status import router as status_router
from app.services.polymarket_client import PolymarketClient
from app.services.scheduler import start_scheduler
from app.services.trading_service import TradingService

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _default_service() -> TradingService:
    settings = get_settings()
    return TradingService(settings, async_session, PolymarketClient(settings), engine=engine)


def create_app(service: Optional[TradingService] = None, start_jobs: bool = True) -> FastAPI:
    """Build the API around one TradingService (the production one by default)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Startup: restore state and start timers. Shutdown: drain jobs, stop timers."""
        trading = service or _default_service()
        app.state.trading_service = trading
        await trading.startup()
        logger.info("Database initialized — state restored")
        if start_jobs:
            start_scheduler(trading)
        try:
            yield
        finally:
            await trading.shutdown()
            close = getattr(trading.source, "close", None)
            if close is not None:
                await close()

    app = FastAPI(
        title="Belief Engine API",
        version=SYSTEM_VERSION,
        lifespan=lifespan,
    )

    app.include_router(status_router)
    app.include_router(markets_router)
    app.include_router(portfolio_router)
    app.include_router(performance_router)
    app.include_router(calibration_router)
    app.include_router(positions_router)

    @app.get("/health")
    async def health_check(session: AsyncSession = Depends(get_session)) -> dict:
        """Prove the API and database are alive."""
        try:
            await session.execute(text("SELECT 1"))
            return {
                "status": "healthy",
                "db": "connected",
                "timestamp": utcnow().isoformat(),
            }
        except Exception as exc:
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unhealthy",
                    "db": str(exc),
                    "timestamp": utcnow().isoformat(),
                },
            )

    return app


configure_logging(get_settings().LOG_LEVEL)
app = create_app()
