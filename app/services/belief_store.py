"""
app/services/belief_store.py
Per-market belief state: probability interval, confidence, open unknowns,
and a bounded window of the signals that produced it.

The store is pure state. Signals move the interval by at most a capped step
per observation; confidence is recomputed from the retained signal window.
Persistence helpers at the bottom snapshot the store to the database and
restore it on restart.
"""

import logging
import uuid
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from core.config import Settings
from core.constants import (
    BASE_CONFIDENCE,
    CONFIDENCE_AUTHORITATIVE_BONUS,
    CONFIDENCE_PROCEDURAL_BONUS,
    CONFLICT_PENALTY,
    CONFLICT_WIDENING_RATIO,
    INITIAL_BELIEF_HIGH,
    INITIAL_BELIEF_LOW,
    MAX_CONFIDENCE_BOUND,
    MAX_RANGE_SHIFT_RATIO,
    MAX_SIGNAL_STRENGTH,
    MIN_CONFIDENCE_BOUND,
    SIGNAL_IMPACT_CAPS,
    TIME_DECAY_PER_DAY,
    UNKNOWN_PENALTY,
)
from core.exceptions import InvalidMarketState, SignalRejected
from core.math_utils import clamp
from core.schemas import (
    Belief,
    MarketSnapshot,
    Signal,
    SignalDirection,
    SignalType,
    Unknown,
)
from database.models import BeliefSnapshot, as_utc, utcnow

logger = logging.getLogger(__name__)

_DIRECTION_SIGN = {
    SignalDirection.UP: 1.0,
    SignalDirection.DOWN: -1.0,
    SignalDirection.NEUTRAL: 0.0,
}


@dataclass
class MarketState:
    """Everything the store tracks for one market."""
    market: MarketSnapshot
    belief: Belief
    signal_history: deque[Signal]
    last_checked: datetime = field(default_factory=utcnow)


def calculate_confidence(
    unknown_count: int,
    authoritative_count: int,
    procedural_count: int,
    has_conflicts: bool,
    days_since_last_signal: float,
) -> float:
    """Confidence reflects the stability of the belief, not optimism about the outcome."""
    confidence = BASE_CONFIDENCE
    confidence += authoritative_count * CONFIDENCE_AUTHORITATIVE_BONUS
    confidence += procedural_count * CONFIDENCE_PROCEDURAL_BONUS
    confidence -= unknown_count * UNKNOWN_PENALTY
    if has_conflicts:
        confidence -= CONFLICT_PENALTY
    confidence -= days_since_last_signal * TIME_DECAY_PER_DAY
    return clamp(confidence, MIN_CONFIDENCE_BOUND, MAX_CONFIDENCE_BOUND)


def _step_limited(old: float, new: float, max_step: float) -> float:
    return clamp(new, old - max_step, old + max_step)


class BeliefStore:
    """Owns every Belief; all mutation goes through these methods."""

    def __init__(self, settings: Settings) -> None:
        self._max_step = settings.MAX_BELIEF_STEP
        self._history_limit = settings.MAX_SIGNAL_HISTORY
        self._states: dict[str, MarketState] = {}
        self._dirty: set[str] = set()
        self._evicted: set[str] = set()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, market_id: object) -> bool:
        return market_id in self._states

    def __iter__(self) -> Iterator[MarketState]:
        return iter(list(self._states.values()))

    def get(self, market_id: str) -> MarketState | None:
        return self._states.get(market_id)

    def belief(self, market_id: str) -> Belief:
        return self._require(market_id).belief

    def _require(self, market_id: str) -> MarketState:
        state = self._states.get(market_id)
        if state is None:
            raise InvalidMarketState(
                f"Market {market_id} has no tracked belief (evicted or never observed)"
            )
        return state

    # ------------------------------------------------------------------
    # Observations
    # ------------------------------------------------------------------

    def observe_market(self, snapshot: MarketSnapshot, now: datetime | None = None) -> MarketState:
        """Record a market snapshot, creating the belief on first sight."""
        now = now or utcnow()
        state = self._states.get(snapshot.id)

        if state is None:
            if snapshot.price is None:
                raise InvalidMarketState(f"Market {snapshot.id} has no valid price")
            if snapshot.closed or snapshot.is_resolved or snapshot.is_past_close(now):
                raise InvalidMarketState(f"Market {snapshot.id} is closed or resolved")

            state = MarketState(
                market=snapshot,
                belief=Belief(
                    belief_low=INITIAL_BELIEF_LOW,
                    belief_high=INITIAL_BELIEF_HIGH,
                    confidence=BASE_CONFIDENCE,
                    last_updated=now,
                ),
                signal_history=deque(maxlen=self._history_limit),
                last_checked=now,
            )
            self._states[snapshot.id] = state
            self._evicted.discard(snapshot.id)
            logger.debug("Tracking new market %s (%s)", snapshot.id, snapshot.category.value)
        else:
            if snapshot.price is None:
                # Keep the last good price; everything else is fresher.
                snapshot = snapshot.model_copy(update={"price": state.market.price})
            state.market = snapshot
            state.last_checked = now

        self._dirty.add(snapshot.id)
        return state

    def update(self, market_id: str, signal: Signal) -> Belief:
        """Apply one signal to a market's belief and recompute confidence."""
        state = self._require(market_id)
        history = state.signal_history

        if signal.type == SignalType.SPECULATIVE and not history:
            raise SignalRejected(
                f"Speculative signal cannot move belief for {market_id} without prior evidence"
            )

        old = state.belief
        width = old.width
        impact_cap = SIGNAL_IMPACT_CAPS[signal.type.value]
        max_shift = impact_cap * 100.0 * (signal.strength / MAX_SIGNAL_STRENGTH)
        shift = min(max_shift, width * MAX_RANGE_SHIFT_RATIO) * _DIRECTION_SIGN[signal.direction]

        new_low = old.belief_low + shift
        new_high = old.belief_high + shift

        if signal.conflicts_with_existing:
            widening = width * CONFLICT_WIDENING_RATIO
            new_low -= widening
            new_high += widening

        new_low = clamp(_step_limited(old.belief_low, new_low, self._max_step), 0.0, 100.0)
        new_high = clamp(_step_limited(old.belief_high, new_high, self._max_step), 0.0, 100.0)

        previous = history[-1] if history else None
        history.append(signal)

        days_since = 0.0
        if previous is not None:
            days_since = abs((signal.timestamp - previous.timestamp).total_seconds()) / 86_400.0

        confidence = calculate_confidence(
            unknown_count=len(old.unknowns),
            authoritative_count=sum(1 for s in history if s.type == SignalType.AUTHORITATIVE),
            procedural_count=sum(1 for s in history if s.type == SignalType.PROCEDURAL),
            has_conflicts=any(s.conflicts_with_existing for s in history),
            days_since_last_signal=days_since,
        )

        state.belief = Belief(
            belief_low=round(new_low, 4),
            belief_high=round(new_high, 4),
            confidence=round(confidence, 4),
            unknowns=old.unknowns,
            last_updated=utcnow(),
        )
        self._dirty.add(market_id)

        logger.debug(
            "Belief %s: [%.1f, %.1f] -> [%.1f, %.1f] conf=%.1f (%s/%s x%d)",
            market_id, old.belief_low, old.belief_high,
            state.belief.belief_low, state.belief.belief_high, state.belief.confidence,
            signal.type.value, signal.direction.value, signal.strength,
        )
        return state.belief

    # ------------------------------------------------------------------
    # Unknowns
    # ------------------------------------------------------------------

    def add_unknown(self, market_id: str, description: str) -> Unknown:
        """Append an open question; duplicates (by description) are returned as-is."""
        state = self._require(market_id)
        key = description.strip().casefold()
        for existing in state.belief.unknowns:
            if existing.description.strip().casefold() == key:
                return existing

        unknown = Unknown(id=uuid.uuid4().hex[:12], description=description.strip())
        old = state.belief
        lowered = max(MIN_CONFIDENCE_BOUND, old.confidence - UNKNOWN_PENALTY)
        state.belief = old.model_copy(update={
            "unknowns": [*old.unknowns, unknown],
            "confidence": min(old.confidence, lowered),
            "last_updated": utcnow(),
        })
        self._dirty.add(market_id)
        return unknown

    def resolve_unknown(self, market_id: str, unknown_id: str) -> bool:
        state = self._require(market_id)
        remaining = [u for u in state.belief.unknowns if u.id != unknown_id]
        if len(remaining) == len(state.belief.unknowns):
            return False
        state.belief = state.belief.model_copy(update={
            "unknowns": remaining,
            "last_updated": utcnow(),
        })
        self._dirty.add(market_id)
        return True

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def evict(self, market_id: str) -> bool:
        if self._states.pop(market_id, None) is None:
            return False
        self._dirty.discard(market_id)
        self._evicted.add(market_id)
        return True

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def take_dirty(self) -> tuple[list[BeliefSnapshot], list[str]]:
        """Snapshots of changed markets and ids evicted since the last call."""
        snapshots = [self.to_snapshot(mid) for mid in self._dirty if mid in self._states]
        evicted = list(self._evicted)
        self._dirty.clear()
        self._evicted.clear()
        return snapshots, evicted

    def requeue(self, dirty: list[str], evicted: list[str]) -> None:
        """Re-mark ids whose snapshot write failed so the next save retries them."""
        self._dirty.update(mid for mid in dirty if mid in self._states)
        self._evicted.update(mid for mid in evicted if mid not in self._states)

    def to_snapshot(self, market_id: str) -> BeliefSnapshot:
        state = self._require(market_id)
        belief = state.belief
        return BeliefSnapshot(
            market_id=market_id,
            belief_low=belief.belief_low,
            belief_high=belief.belief_high,
            confidence=belief.confidence,
            unknowns=[u.model_dump(mode="json") for u in belief.unknowns],
            last_updated=belief.last_updated,
            signal_history=[s.model_dump(mode="json") for s in state.signal_history],
            market=state.market.model_dump(mode="json"),
            last_checked=state.last_checked,
        )

    def restore(self, snapshots: list[BeliefSnapshot]) -> int:
        """Rebuild state from persisted snapshots; returns markets restored."""
        for row in snapshots:
            history: deque[Signal] = deque(
                (Signal.model_validate(s) for s in row.signal_history),
                maxlen=self._history_limit,
            )
            self._states[row.market_id] = MarketState(
                market=MarketSnapshot.model_validate(row.market),
                belief=Belief(
                    belief_low=row.belief_low,
                    belief_high=row.belief_high,
                    confidence=row.confidence,
                    unknowns=[Unknown.model_validate(u) for u in row.unknowns],
                    last_updated=as_utc(row.last_updated),
                ),
                signal_history=history,
                last_checked=as_utc(row.last_checked),
            )
        return len(snapshots)


# ------------------------------------------------------------------
# Persistence
# ------------------------------------------------------------------

async def save_beliefs(
    store: BeliefStore,
    session_factory: Callable[[], AsyncSession],
) -> int:
    """Write changed snapshots and drop evicted ones. Returns rows written."""
    snapshots, evicted = store.take_dirty()
    if not snapshots and not evicted:
        return 0

    try:
        async with session_factory() as session:
            for snapshot in snapshots:
                await session.merge(snapshot)
            if evicted:
                await session.execute(
                    delete(BeliefSnapshot).where(BeliefSnapshot.market_id.in_(evicted))
                )
            await session.commit()
    except Exception:
        store.requeue([s.market_id for s in snapshots], evicted)
        raise

    return len(snapshots)


async def load_beliefs(
    store: BeliefStore,
    session_factory: Callable[[], AsyncSession],
) -> int:
    async with session_factory() as session:
        rows = (await session.execute(select(BeliefSnapshot))).scalars().all()
    restored = store.restore(list(rows))
    logger.info("Restored %d belief snapshots", restored)
    return restored
