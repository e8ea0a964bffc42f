"""
app/services/signal_inbox.py
Per-market queue between the external signal collectors and the market cycle.

Collectors push raw or validated signals at any time; the market cycle drains
a market's queue right after observing it, so Belief Store updates always
happen before the gate evaluates that market.
"""

import logging
from collections import deque
from collections.abc import Collection
from typing import Any, Union

from core.constants import SIGNAL_INBOX_CAPACITY
from core.schemas import Signal, parse_signal

logger = logging.getLogger(__name__)


class SignalInbox:
    """Bounded FIFO of pending signals per market; the oldest are dropped first."""

    def __init__(self, capacity: int = SIGNAL_INBOX_CAPACITY) -> None:
        self._capacity = capacity
        self._queues: dict[str, deque[Signal]] = {}
        self.dropped = 0

    def __len__(self) -> int:
        return sum(len(q) for q in self._queues.values())

    def pending(self, market_id: str) -> int:
        queue = self._queues.get(market_id)
        return len(queue) if queue else 0

    def push(self, market_id: str, signal: Union[Signal, dict[str, Any]]) -> Signal:
        """Queue a signal; dicts are validated first (InvalidPayload on failure)."""
        if not isinstance(signal, Signal):
            signal = parse_signal(signal)

        queue = self._queues.setdefault(market_id, deque(maxlen=self._capacity))
        if len(queue) == self._capacity:
            self.dropped += 1
            logger.warning("Signal inbox full for market %s, dropping oldest", market_id)
        queue.append(signal)
        return signal

    def drain(self, market_id: str) -> list[Signal]:
        """Remove and return every queued signal for a market, oldest first."""
        queue = self._queues.pop(market_id, None)
        if not queue:
            return []
        return sorted(queue, key=lambda s: s.timestamp)

    def discard(self, market_id: str) -> int:
        queue = self._queues.pop(market_id, None)
        return len(queue) if queue else 0

    def retain(self, market_ids: Collection[str]) -> int:
        """Drop every queue whose market is not in market_ids; returns signals dropped."""
        orphaned = [market_id for market_id in self._queues if market_id not in market_ids]
        dropped = sum(self.discard(market_id) for market_id in orphaned)
        if orphaned:
            logger.info(
                "Signal inbox: dropped %d signals for %d unlisted markets", dropped, len(orphaned),
            )
        return dropped
