"""
app/services/trading_service.py
Pipeline orchestration: owns one instance of every core component and runs
the three timer-driven jobs against them.

    market cycle     observe -> drain signals -> gate -> sizer -> ledger.create
    reconciliation   poll OPEN positions -> resolve/expire -> supervisor
    cleanup          evict finished markets -> drop their snapshots

Jobs register themselves as in-flight so shutdown() can let them finish
before the timers stop.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional, TypeVar

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import sessionmaker

from core.config import Settings
from core.exceptions import InvalidMarketState, InvalidPayload, SignalRejected, SourceUnavailable
from core.schemas import MarketSnapshot, Signal
from database.connection import init_db
from database.models import utcnow
from app.services.belief_store import BeliefStore, load_beliefs, save_beliefs
from app.services.eligibility_gate import GateDecision, evaluate_market
from app.services.memory_governor import MemoryGovernor
from app.services.polymarket_client import MarketSource
from app.services.portfolio import PortfolioState
from app.services.position_ledger import PositionLedger, calculate_pnl, side_price
from app.services.resolution_service import ReconcileSummary, reconcile_positions
from app.services.risk_sizer import size_position
from app.services.signal_inbox import SignalInbox
from app.services.supervisor import Supervisor

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CycleSummary:
    markets: int = 0
    tracked: int = 0
    signals_applied: int = 0
    signals_rejected: int = 0
    signals_dropped: int = 0
    admitted: int = 0
    opened: int = 0


class TradingService:
    """The decision engine as one process-wide object."""

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker,
        source: MarketSource,
        engine: Optional[AsyncEngine] = None,
        inbox: Optional[SignalInbox] = None,
    ) -> None:
        self.settings = settings
        self.source = source
        self._session_factory = session_factory
        self._engine = engine

        self.belief_store = BeliefStore(settings)
        self.portfolio = PortfolioState(settings.STARTING_CAPITAL)
        self.supervisor = Supervisor(settings)
        self.ledger = PositionLedger(settings, session_factory, self.portfolio, self.supervisor)
        self.inbox = inbox or SignalInbox()
        self.governor = MemoryGovernor(self.belief_store, self.inbox)

        self._in_flight: set[asyncio.Task] = set()
        self._stopping = False
        self.started_at = utcnow()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def startup(self) -> None:
        """Create tables and restore ledger, portfolio, supervisor and beliefs."""
        await init_db(self._engine)
        await self.ledger.load()
        await load_beliefs(self.belief_store, self._session_factory)
        self.ledger.check_supervisor()
        self._stopping = False
        logger.info(
            "Trading service ready: %d markets, %d open positions, supervisor %s",
            len(self.belief_store), self.portfolio.open_positions, self.supervisor.state.value,
        )

    async def shutdown(self) -> None:
        """Refuse new jobs, let in-flight ones finish, then stop the timers."""
        from app.services.scheduler import stop_scheduler

        self._stopping = True
        current = asyncio.current_task()
        pending = [task for task in self._in_flight if task is not current]
        if pending:
            logger.info("Waiting for %d in-flight jobs before shutdown", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
        stop_scheduler()
        logger.info("Trading service stopped")

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def _run_job(self, name: str, job: Callable[[], Awaitable[T]]) -> Optional[T]:
        if self._stopping:
            logger.debug("Skipping %s: shutdown in progress", name)
            return None
        task = asyncio.current_task()
        if task is not None:
            self._in_flight.add(task)
        try:
            return await job()
        finally:
            if task is not None:
                self._in_flight.discard(task)

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def submit_signal(self, market_id: str, signal: Signal | dict[str, Any]) -> Signal:
        """Entry point for external collectors; applied on the next market cycle."""
        return self.inbox.push(market_id, signal)

    # ------------------------------------------------------------------
    # Market cycle
    # ------------------------------------------------------------------

    async def run_market_cycle(self) -> Optional[CycleSummary]:
        return await self._run_job("market cycle", self._market_cycle)

    async def _market_cycle(self) -> CycleSummary:
        summary = CycleSummary()
        try:
            markets = await self.source.get_markets()
        except (SourceUnavailable, InvalidPayload) as exc:
            logger.warning("Market fetch failed, retrying next cycle: %s", exc)
            return summary

        summary.markets = len(markets)
        for market in markets:
            await self.process_market(market, summary)

        listed = {market.id for market in markets}
        listed.update(state.market.id for state in self.belief_store)
        summary.signals_dropped = self.inbox.retain(listed)

        try:
            await save_beliefs(self.belief_store, self._session_factory)
        except Exception as exc:
            logger.error("Failed to persist belief snapshots: %s", exc)

        summary.tracked = len(self.belief_store)
        logger.info(
            "Market cycle: %d fetched, %d tracked, signals %d applied/%d rejected, "
            "%d admitted, %d opened",
            summary.markets, summary.tracked, summary.signals_applied,
            summary.signals_rejected, summary.admitted, summary.opened,
        )
        return summary

    async def process_market(
        self, market: MarketSnapshot, summary: Optional[CycleSummary] = None,
    ) -> Optional[GateDecision]:
        """Observe one market, apply its queued signals, then gate and size it."""
        summary = summary or CycleSummary()
        try:
            state = self.belief_store.observe_market(market)
        except InvalidMarketState as exc:
            logger.debug("Not tracking market %s: %s", market.id, exc)
            self.inbox.discard(market.id)
            return None

        for signal in self.inbox.drain(market.id):
            try:
                self.belief_store.update(market.id, signal)
                summary.signals_applied += 1
            except SignalRejected as exc:
                summary.signals_rejected += 1
                logger.info("Signal rejected for market %s: %s", market.id, exc)

        current = state.market
        if current.price is None or current.closed or current.is_resolved or current.is_past_close():
            return None

        snapshot = self.portfolio.snapshot()
        decision = evaluate_market(
            state.market, state.belief, snapshot, self.supervisor.status(), self.settings,
        )
        if not decision.admitted:
            return decision
        summary.admitted += 1

        sizing = size_position(decision, state.belief, state.market.price, snapshot, self.settings)
        if not sizing.accepted:
            return decision

        try:
            await self.ledger.create(decision, state.market, state.belief, sizing.size)
            summary.opened += 1
        except InvalidMarketState as exc:
            logger.info("Position not opened for market %s: %s", market.id, exc)
        return decision

    # ------------------------------------------------------------------
    # Reconciliation & cleanup
    # ------------------------------------------------------------------

    async def run_reconciliation(self) -> Optional[ReconcileSummary]:
        return await self._run_job(
            "reconciliation",
            lambda: reconcile_positions(self.ledger, self.source, self.belief_store),
        )

    async def run_cleanup(self) -> Optional[list[str]]:
        return await self._run_job("cleanup", self._cleanup)

    async def _cleanup(self) -> list[str]:
        evicted = self.governor.run_cleanup()
        if evicted:
            try:
                await save_beliefs(self.belief_store, self._session_factory)
            except Exception as exc:
                logger.error("Failed to drop evicted belief snapshots: %s", exc)
        return evicted

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        supervisor = self.supervisor.status()
        return {
            "state": supervisor.state.value,
            "markets": len(self.belief_store),
            "halted": supervisor.halted,
            "halt_reason": supervisor.halt_reason,
        }

    def market_views(self) -> list[dict[str, Any]]:
        views = []
        for state in self.belief_store:
            market = state.market
            views.append({
                "market_id": market.id,
                "question": market.question,
                "category": market.category.value,
                "current_price": market.price,
                "liquidity": market.liquidity,
                "closes_at": market.closes_at,
                "belief": state.belief.model_dump(mode="json"),
                "signal_count": len(state.signal_history),
                "last_checked": state.last_checked,
            })
        return views

    def unrealized_pnl(self) -> float:
        """Open positions marked to the latest observed price (entry price if none)."""
        total = 0.0
        for position in self.ledger.open_positions():
            state = self.belief_store.get(position.market_id)
            yes_price = position.entry_price
            if state is not None and state.market.price is not None:
                yes_price = state.market.price
            total += calculate_pnl(position, side_price(position.side, yes_price))
        return round(total, 2)

    def portfolio_view(self) -> dict[str, Any]:
        snapshot = self.portfolio.snapshot()
        unrealized = self.unrealized_pnl()
        return {
            "total_value": round(snapshot.total_capital + unrealized, 2),
            "available_capital": round(snapshot.available_capital, 2),
            "allocated_capital": snapshot.allocated_capital,
            "open_positions": snapshot.open_positions,
            "unrealized_pnl": unrealized,
            "drawdown": round(snapshot.drawdown * 100.0, 2),
        }


def get_trading_service(request: Request) -> TradingService:
    """FastAPI dependency returning the service built in the app lifespan."""
    return request.app.state.trading_service
