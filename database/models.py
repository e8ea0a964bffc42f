"""
database/models.py
SQLModel table definitions for the belief-and-risk decision engine.
Positions are never deleted, only marked terminal; belief snapshots are
keyed by market id and dropped when the market is evicted.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    """Timezone-aware UTC now (replaces the deprecated utcnow call)."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Tag naive datetimes as UTC (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class MarketCategory(str, Enum):
    WEATHER = "weather"
    SPORTS = "sports"
    POLITICS = "politics"
    ECONOMICS = "economics"
    CRYPTO = "crypto"
    TECHNOLOGY = "technology"
    ENTERTAINMENT = "entertainment"
    WORLD = "world"
    OTHER = "other"


class PositionSide(str, Enum):
    YES = "YES"
    NO = "NO"


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    WIN = "WIN"
    LOSS = "LOSS"
    EXPIRED = "EXPIRED"
    BREAK_EVEN = "BREAK_EVEN"


TERMINAL_STATUSES = frozenset({
    PositionStatus.WIN,
    PositionStatus.LOSS,
    PositionStatus.EXPIRED,
    PositionStatus.BREAK_EVEN,
})


# ---------------------------------------------------------------------------
# Position: a sized trade tracked from admission to resolution
# ---------------------------------------------------------------------------

class Position(SQLModel, table=True):
    """A paper/live position in a binary prediction market."""

    id: str = Field(primary_key=True)
    market_id: str = Field(index=True)
    market_question: str = ""
    category: MarketCategory
    side: PositionSide

    # Entry (prices in percentage points of the YES contract)
    entry_price: float
    belief_low: float
    belief_high: float
    confidence: float
    edge: float
    size: float
    entry_timestamp: datetime = Field(default_factory=utcnow)

    # Lifecycle: filled exactly once when the position leaves OPEN
    status: PositionStatus = Field(default=PositionStatus.OPEN, index=True)
    exit_price: Optional[float] = None
    pnl: Optional[float] = None
    exit_timestamp: Optional[datetime] = None
    actual_outcome: Optional[PositionSide] = None

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def belief_midpoint(self) -> float:
        return (self.belief_low + self.belief_high) / 2.0

    @property
    def belief_width(self) -> float:
        return self.belief_high - self.belief_low


# ---------------------------------------------------------------------------
# BeliefSnapshot: persisted Belief Store entry for restart safety
# ---------------------------------------------------------------------------

class BeliefSnapshot(SQLModel, table=True):
    """One market's belief, retained signals and last observed snapshot."""

    market_id: str = Field(primary_key=True)

    belief_low: float
    belief_high: float
    confidence: float
    unknowns: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    last_updated: datetime = Field(default_factory=utcnow)

    signal_history: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    market: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    last_checked: datetime = Field(default_factory=utcnow)
