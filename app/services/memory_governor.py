"""
app/services/memory_governor.py
Periodic eviction of stale per-market state.

Signal history is already a fixed-size window inside the Belief Store; this
module drops whole markets once they are closed, resolved or past close.
"""

import logging
from datetime import datetime
from typing import Optional

from database.models import utcnow
from app.services.belief_store import BeliefStore
from app.services.signal_inbox import SignalInbox

logger = logging.getLogger(__name__)


class MemoryGovernor:
    """Evicts Belief Store entries (and queued signals) for finished markets."""

    def __init__(self, belief_store: BeliefStore, inbox: Optional[SignalInbox] = None) -> None:
        self._store = belief_store
        self._inbox = inbox

    def run_cleanup(self, now: Optional[datetime] = None) -> list[str]:
        """Returns the ids evicted on this pass."""
        now = now or utcnow()
        evicted: list[str] = []

        for state in self._store:
            market = state.market
            if market.closed or market.is_resolved or market.is_past_close(now):
                if self._store.evict(market.id):
                    evicted.append(market.id)
                    if self._inbox is not None:
                        self._inbox.discard(market.id)

        if evicted:
            logger.info(
                "Memory cleanup: evicted %d markets, %d still tracked", len(evicted), len(self._store),
            )
        return evicted
