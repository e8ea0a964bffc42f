"""
tests/conftest.py
Shared fixtures for the test suite.
"""

from collections.abc import AsyncGenerator, Callable
from datetime import timedelta
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import database.models as _models  # noqa: F401 — registers table metadata
from core.config import Settings
from core.exceptions import SourceUnavailable
from core.schemas import Belief, MarketSnapshot
from database.models import MarketCategory, Position, PositionSide, utcnow


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> Settings:
    """Defaults only; never reads a developer's .env."""
    return Settings(_env_file=None, DATABASE_URL="sqlite+aiosqlite:///:memory:")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite shared across sessions via a single connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_db_session(session_factory: sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Provide an in-memory SQLite async session for tests."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Record factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_market() -> Callable[..., MarketSnapshot]:
    def _make(**overrides: Any) -> MarketSnapshot:
        defaults: dict[str, Any] = dict(
            id="mkt-1",
            question="Will the Fed cut rates in December?",
            category=MarketCategory.ECONOMICS,
            price=20.0,
            liquidity=5_000.0,
            closes_at=utcnow() + timedelta(days=30),
        )
        defaults.update(overrides)
        return MarketSnapshot(**defaults)
    return _make


@pytest.fixture
def make_belief() -> Callable[..., Belief]:
    def _make(**overrides: Any) -> Belief:
        defaults: dict[str, Any] = dict(belief_low=40.0, belief_high=60.0, confidence=70.0)
        defaults.update(overrides)
        return Belief(**defaults)
    return _make


@pytest.fixture
def make_position() -> Callable[..., Position]:
    counter = {"n": 0}

    def _make(**overrides: Any) -> Position:
        counter["n"] += 1
        defaults: dict[str, Any] = dict(
            id=f"pos-{counter['n']}",
            market_id=f"mkt-{counter['n']}",
            market_question="Test market",
            category=MarketCategory.ECONOMICS,
            side=PositionSide.YES,
            entry_price=45.0,
            belief_low=55.0,
            belief_high=70.0,
            confidence=70.0,
            edge=10.0,
            size=100.0,
            entry_timestamp=utcnow() - timedelta(hours=2),
        )
        defaults.update(overrides)
        return Position(**defaults)
    return _make


# ---------------------------------------------------------------------------
# Market source
# ---------------------------------------------------------------------------

class FakeMarketSource:
    """In-memory market source; ids in `failing` raise SourceUnavailable."""

    def __init__(self, markets: list[MarketSnapshot] | None = None) -> None:
        self.markets: dict[str, MarketSnapshot] = {m.id: m for m in markets or []}
        self.failing: set[str] = set()
        self.down = False
        self.calls: list[str] = []
        self.closed = False

    def set(self, market: MarketSnapshot) -> None:
        self.markets[market.id] = market

    async def get_markets(self) -> list[MarketSnapshot]:
        self.calls.append("*")
        if self.down:
            raise SourceUnavailable("source down")
        return list(self.markets.values())

    async def get_market(self, market_id: str) -> MarketSnapshot:
        self.calls.append(market_id)
        if self.down or market_id in self.failing:
            raise SourceUnavailable(f"timeout fetching {market_id}")
        return self.markets[market_id]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def market_source() -> FakeMarketSource:
    return FakeMarketSource()
