"""
app/services/position_ledger.py
Durable collection of positions from admission to resolution.

The ledger is the only writer of Position rows and the only caller of the
PortfolioState transitions. Every mutation is serialized behind one lock and
re-validates the position's status after acquiring it, so overlapping
reconciliation passes cannot double-resolve a position.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlmodel import select

from core.config import Settings
from core.exceptions import InvalidMarketState, PositionNotFound
from core.schemas import Belief, MarketSnapshot
from database.models import Position, PositionSide, PositionStatus, as_utc, utcnow
from app.services.calibration_engine import compute_calibration
from app.services.eligibility_gate import GateDecision
from app.services.portfolio import PortfolioState
from app.services.supervisor import Supervisor

logger = logging.getLogger(__name__)


def settlement_price(side: PositionSide, outcome: PositionSide) -> float:
    """Binary settlement in the position's own terms: 100 if its side won, else 0."""
    return 100.0 if side == outcome else 0.0


def side_price(side: PositionSide, yes_price: float) -> float:
    """Convert a YES-contract price into the price of the given side."""
    return yes_price if side == PositionSide.YES else 100.0 - yes_price


def calculate_pnl(position: Position, exit_price: float) -> float:
    """
    P&L in currency for a position closed at exit_price (side terms).

    pnl = (exit - entry_cost) * size / 100, where entry_cost is the price paid
    for the held side. YES at 45 settling at 100 on size 100 gives +55.00.
    """
    entry_cost = side_price(position.side, position.entry_price)
    return round((exit_price - entry_cost) * position.size / 100.0, 2)


def classify(pnl: float) -> PositionStatus:
    if pnl > 0:
        return PositionStatus.WIN
    if pnl < 0:
        return PositionStatus.LOSS
    return PositionStatus.BREAK_EVEN


class PositionLedger:
    """Positions keyed by id, mirrored to the database on every transition."""

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker,
        portfolio: PortfolioState,
        supervisor: Supervisor,
    ) -> None:
        self._settings = settings
        self._session_factory = session_factory
        self.portfolio = portfolio
        self.supervisor = supervisor
        self._positions: dict[str, Position] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Restart
    # ------------------------------------------------------------------

    async def load(self, now: Optional[datetime] = None) -> int:
        """
        Restore every position from the database, rebuild the portfolio and
        replay the supervisor's consecutive-invalidation counter.

        Returns the number of positions loaded.
        """
        async with self._session_factory() as session:
            rows = (await session.execute(select(Position))).scalars().all()

        self._positions = {}
        for row in rows:
            row.entry_timestamp = as_utc(row.entry_timestamp)
            row.exit_timestamp = as_utc(row.exit_timestamp)
            self._positions[row.id] = row

        self.portfolio.restore(self._positions.values(), now=now)

        self.supervisor.consecutive_invalidations = 0
        for position in sorted(self.terminal_positions(), key=lambda p: p.exit_timestamp):
            self.supervisor.record_outcome(position.status)

        logger.info(
            "Ledger restored %d positions (%d open), capital=$%.2f",
            len(self._positions), len(self.open_positions()), self.portfolio.total_capital,
        )
        return len(self._positions)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, position_id: str) -> Position:
        position = self._positions.get(position_id)
        if position is None:
            raise PositionNotFound(position_id)
        return position

    def all_positions(self) -> list[Position]:
        return sorted(self._positions.values(), key=lambda p: p.entry_timestamp)

    def open_positions(self) -> list[Position]:
        return [p for p in self.all_positions() if p.is_open]

    def terminal_positions(self) -> list[Position]:
        return [p for p in self.all_positions() if not p.is_open]

    def open_for_market(self, market_id: str) -> Optional[Position]:
        for position in self._positions.values():
            if position.is_open and position.market_id == market_id:
                return position
        return None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _persist(self, position: Position) -> None:
        session: AsyncSession
        async with self._session_factory() as session:
            await session.merge(position)
            await session.commit()

    async def create(
        self,
        decision: GateDecision,
        market: MarketSnapshot,
        belief: Belief,
        size: float,
    ) -> str:
        """Persist a new OPEN position for an admitted decision and return its id."""
        if not decision.admitted or decision.side is None:
            raise ValueError(f"Cannot open a position for non-admitted market {decision.market_id}")
        if market.price is None:
            raise InvalidMarketState(f"Market {market.id} has no price")

        async with self._lock:
            # Another task may have opened this market while we were suspended.
            if self.open_for_market(market.id) is not None:
                raise InvalidMarketState(f"Market {market.id} already has an OPEN position")

            position = Position(
                id=str(uuid.uuid4()),
                market_id=market.id,
                market_question=market.question,
                category=market.category,
                side=decision.side,
                entry_price=market.price,
                belief_low=belief.belief_low,
                belief_high=belief.belief_high,
                confidence=belief.confidence,
                edge=decision.edge,
                size=size,
                entry_timestamp=utcnow(),
            )
            await self._persist(position)
            self._positions[position.id] = position
            self.portfolio.on_position_opened(position)

        logger.info(
            "Position OPENED %s: market=%s %s @ %.1f size=$%.2f edge=%.1f",
            position.id, market.id, position.side.value, position.entry_price,
            size, decision.edge,
        )
        return position.id

    async def resolve(
        self,
        position_id: str,
        outcome: PositionSide,
        exit_price: Optional[float] = None,
    ) -> Position:
        """
        Settle a position against the market outcome.

        Idempotent: an already-terminal position is returned untouched.
        exit_price is in the position's side terms and defaults to the
        binary settlement price.
        """
        async with self._lock:
            position = self.get(position_id)
            if not position.is_open:
                logger.debug("Position %s already %s, skipping", position_id, position.status.value)
                return position

            exit_value = settlement_price(position.side, outcome) if exit_price is None else exit_price
            pnl = calculate_pnl(position, exit_value)
            await self._close(position, classify(pnl), exit_value, pnl, outcome)

        self._after_resolution(position)
        return position

    async def expire(self, position_id: str, last_price: Optional[float] = None) -> Position:
        """
        Close a position whose market ended without a resolvable outcome.

        P&L is marked against the last observed YES price (entry price when
        none was ever observed, which makes the wash exact).
        """
        async with self._lock:
            position = self.get(position_id)
            if not position.is_open:
                return position

            yes_price = position.entry_price if last_price is None else last_price
            exit_value = side_price(position.side, yes_price)
            pnl = calculate_pnl(position, exit_value)
            await self._close(position, PositionStatus.EXPIRED, exit_value, pnl, None)

        self._after_resolution(position)
        return position

    async def _close(
        self,
        position: Position,
        status: PositionStatus,
        exit_price: float,
        pnl: float,
        outcome: Optional[PositionSide],
    ) -> None:
        previous = (position.status, position.exit_price, position.pnl,
                    position.exit_timestamp, position.actual_outcome)

        position.status = status
        position.exit_price = exit_price
        position.pnl = pnl
        position.exit_timestamp = utcnow()
        position.actual_outcome = outcome
        try:
            await self._persist(position)
        except Exception:
            (position.status, position.exit_price, position.pnl,
             position.exit_timestamp, position.actual_outcome) = previous
            logger.error("Failed to persist resolution of position %s", position.id)
            raise

        self.portfolio.on_position_closed(position, now=position.exit_timestamp)
        logger.info(
            "Position %s %s: market=%s %s entry=%.1f exit=%.1f pnl=$%.2f",
            status.value, position.id, position.market_id, position.side.value,
            position.entry_price, exit_price, pnl,
        )

    def _after_resolution(self, position: Position) -> None:
        self.supervisor.record_outcome(position.status)
        self.check_supervisor()

    def check_supervisor(self) -> bool:
        """Feed drawdown and the latest calibration to the supervisor."""
        report = compute_calibration(self._positions.values())
        snapshot = self.portfolio.snapshot()
        return self.supervisor.evaluate(
            snapshot.drawdown,
            coverage_deviation=report.coverage_deviation,
            calibration_samples=report.samples,
        )
