"""
core/schemas.py
Tagged record types for everything that crosses the external boundary
(market snapshots, signals) plus the Belief record owned by the Belief Store.

Payloads are validated on ingress; a bad payload raises InvalidPayload
instead of leaking a partial object into the pipeline.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from core.exceptions import InvalidPayload
from database.models import MarketCategory, as_utc, utcnow


class SignalType(str, Enum):
    AUTHORITATIVE = "authoritative"
    PROCEDURAL = "procedural"
    QUANTITATIVE = "quantitative"
    INTERPRETIVE = "interpretive"
    SPECULATIVE = "speculative"


class SignalDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


# ---------------------------------------------------------------------------
# MarketSnapshot: one immutable observation of an external market
# ---------------------------------------------------------------------------

class MarketSnapshot(BaseModel):
    """A market as reported by the market source at one point in time."""

    model_config = {"frozen": True}

    id: str = Field(min_length=1)
    question: str = ""
    category: MarketCategory = MarketCategory.OTHER
    price: Optional[float] = Field(default=None, ge=0.0, le=100.0)  # YES price, pp
    liquidity: float = Field(default=0.0, ge=0.0)
    closes_at: Optional[datetime] = None
    closed: bool = False
    resolution_outcome: Optional[bool] = None
    resolved_at: Optional[datetime] = None

    @field_validator("closes_at", "resolved_at")
    @classmethod
    def _tag_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @field_validator("category", mode="before")
    @classmethod
    def _unknown_category_is_other(cls, value: Any) -> Any:
        if isinstance(value, str) and value.lower() not in MarketCategory._value2member_map_:
            return MarketCategory.OTHER
        return value.lower() if isinstance(value, str) else value

    @property
    def is_resolved(self) -> bool:
        return self.resolution_outcome is not None or self.resolved_at is not None

    def is_past_close(self, now: datetime | None = None) -> bool:
        if self.closes_at is None:
            return False
        return self.closes_at <= (now or utcnow())


# ---------------------------------------------------------------------------
# Signal: opaque per-market event emitted by the signal collectors
# ---------------------------------------------------------------------------

class Signal(BaseModel):
    """A single piece of evidence about a market's outcome."""

    model_config = {"frozen": True}

    type: SignalType
    direction: SignalDirection
    strength: int = Field(ge=1, le=5)
    conflicts_with_existing: bool = False
    timestamp: datetime = Field(default_factory=utcnow)
    source: Optional[str] = None
    description: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _tag_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


# ---------------------------------------------------------------------------
# Belief: probability interval the system holds for one market
# ---------------------------------------------------------------------------

class Unknown(BaseModel):
    """An open question that keeps confidence down until resolved."""
    id: str
    description: str
    added_at: datetime = Field(default_factory=utcnow)


class Belief(BaseModel):
    """Probability interval in percentage points, with confidence."""

    belief_low: float = Field(ge=0.0, le=100.0)
    belief_high: float = Field(ge=0.0, le=100.0)
    confidence: float = Field(ge=0.0, le=100.0)
    unknowns: list[Unknown] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _ordered(self) -> "Belief":
        if self.belief_low > self.belief_high:
            raise ValueError(
                f"belief_low {self.belief_low} exceeds belief_high {self.belief_high}"
            )
        return self

    @property
    def width(self) -> float:
        return self.belief_high - self.belief_low

    @property
    def midpoint(self) -> float:
        return (self.belief_low + self.belief_high) / 2.0


# ---------------------------------------------------------------------------
# Ingress helpers
# ---------------------------------------------------------------------------

def parse_market(payload: dict[str, Any]) -> MarketSnapshot:
    """Validate a raw market dict into a MarketSnapshot."""
    try:
        return MarketSnapshot.model_validate(payload)
    except ValidationError as exc:
        raise InvalidPayload(f"Invalid market payload: {exc}") from exc


def parse_signal(payload: dict[str, Any]) -> Signal:
    """Validate a raw signal dict into a Signal."""
    try:
        return Signal.model_validate(payload)
    except ValidationError as exc:
        raise InvalidPayload(f"Invalid signal payload: {exc}") from exc


class CamelModel(BaseModel):
    """Outbound record whose JSON field names are camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
