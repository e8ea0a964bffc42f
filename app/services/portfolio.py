"""
app/services/portfolio.py
Process-wide capital state. Mutated only by the Position Ledger through
on_position_opened / on_position_closed; everyone else reads a snapshot.
"""

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType

from database.models import Position, as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Immutable view of the portfolio handed to the gate and the sizer."""
    total_capital: float
    allocated_capital: float
    realized_pnl: float
    daily_realized_pnl: float
    peak_equity: float
    open_positions: int
    open_by_category: Mapping[str, int] = field(default_factory=dict)
    open_market_ids: frozenset[str] = frozenset()

    @property
    def available_capital(self) -> float:
        return max(0.0, self.total_capital - self.allocated_capital)

    @property
    def daily_loss(self) -> float:
        return max(0.0, -self.daily_realized_pnl)

    @property
    def drawdown(self) -> float:
        """Fractional decline from peak equity (0.0 - 1.0)."""
        if self.peak_equity <= 0:
            return 0.0
        return max(0.0, (self.peak_equity - self.total_capital) / self.peak_equity)


class PortfolioState:
    """Capital bookkeeping for OPEN and resolved positions."""

    def __init__(self, starting_capital: float, now: datetime | None = None) -> None:
        self.starting_capital = starting_capital
        self._reset(now)

    def _reset(self, now: datetime | None = None) -> None:
        self.realized_pnl = 0.0
        self.allocated_capital = 0.0
        self.peak_equity = self.starting_capital
        self.daily_realized_pnl = 0.0
        self._day: date = (now or utcnow()).date()
        self._open_by_category: Counter[str] = Counter()
        self._open_market_ids: set[str] = set()
        self._open_sizes: dict[str, float] = {}

    @property
    def total_capital(self) -> float:
        return self.starting_capital + self.realized_pnl

    @property
    def open_positions(self) -> int:
        return len(self._open_sizes)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def roll_day(self, now: datetime | None = None) -> None:
        """Reset the daily loss counter at the UTC day boundary."""
        today = (now or utcnow()).date()
        if today != self._day:
            logger.info(
                "Daily P&L reset (previous %s: $%.2f)", self._day.isoformat(), self.daily_realized_pnl,
            )
            self._day = today
            self.daily_realized_pnl = 0.0

    def on_position_opened(self, position: Position) -> None:
        self._open_sizes[position.id] = position.size
        self.allocated_capital += position.size
        self._open_by_category[position.category.value] += 1
        self._open_market_ids.add(position.market_id)

    def on_position_closed(self, position: Position, now: datetime | None = None) -> None:
        size = self._open_sizes.pop(position.id, None)
        if size is None:
            return
        self.allocated_capital = max(0.0, self.allocated_capital - size)
        self._open_by_category[position.category.value] -= 1
        if self._open_by_category[position.category.value] <= 0:
            del self._open_by_category[position.category.value]
        self._open_market_ids.discard(position.market_id)

        pnl = position.pnl or 0.0
        self.realized_pnl += pnl
        self.roll_day(now)
        self.daily_realized_pnl += pnl
        self.peak_equity = max(self.peak_equity, self.total_capital)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def snapshot(self, now: datetime | None = None) -> PortfolioSnapshot:
        self.roll_day(now)
        return PortfolioSnapshot(
            total_capital=round(self.total_capital, 2),
            allocated_capital=round(self.allocated_capital, 2),
            realized_pnl=round(self.realized_pnl, 2),
            daily_realized_pnl=round(self.daily_realized_pnl, 2),
            peak_equity=round(self.peak_equity, 2),
            open_positions=self.open_positions,
            open_by_category=MappingProxyType(dict(self._open_by_category)),
            open_market_ids=frozenset(self._open_market_ids),
        )

    def restore(self, positions: Iterable[Position], now: datetime | None = None) -> None:
        """Reset in place and replay the ledger after a restart."""
        now = now or utcnow()
        self._reset(now)
        positions = list(positions)

        closed = sorted(
            (p for p in positions if not p.is_open and p.exit_timestamp is not None),
            key=lambda p: as_utc(p.exit_timestamp),
        )
        for position in closed:
            pnl = position.pnl or 0.0
            self.realized_pnl += pnl
            self.peak_equity = max(self.peak_equity, self.total_capital)
            if as_utc(position.exit_timestamp).date() == now.date():
                self.daily_realized_pnl += pnl

        for position in positions:
            if position.is_open:
                self.on_position_opened(position)

    @classmethod
    def rebuild(
        cls,
        starting_capital: float,
        positions: Iterable[Position],
        now: datetime | None = None,
    ) -> "PortfolioState":
        """Reconstruct the portfolio from the ledger."""
        state = cls(starting_capital, now=now)
        state.restore(positions, now=now)
        return state
