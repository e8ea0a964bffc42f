"""
app/services/resolution_service.py
Resolution Reconciler: polls the market source for every OPEN position and
settles the ones whose market has resolved.

Called by the scheduler every RESOLUTION_CHECK_INTERVAL_MS. A failed or
ambiguous query never closes a position; it stays OPEN for the next pass.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from core.exceptions import InvalidPayload, PositionNotFound, SourceUnavailable
from core.schemas import MarketSnapshot
from database.models import PositionSide
from app.services.belief_store import BeliefStore
from app.services.polymarket_client import MarketSource
from app.services.position_ledger import PositionLedger

logger = logging.getLogger(__name__)


@dataclass
class ReconcileSummary:
    checked: int = 0
    resolved: int = 0
    expired: int = 0
    pending: int = 0
    failed: int = 0


def _last_price(
    snapshot: MarketSnapshot, market_id: str, belief_store: Optional[BeliefStore],
) -> Optional[float]:
    if snapshot.price is not None:
        return snapshot.price
    if belief_store is not None:
        state = belief_store.get(market_id)
        if state is not None:
            return state.market.price
    return None


async def reconcile_positions(
    ledger: PositionLedger,
    source: MarketSource,
    belief_store: Optional[BeliefStore] = None,
) -> ReconcileSummary:
    """
    Check every OPEN position against the market source.

    - resolution outcome present      -> resolve (exit 100/0 in side terms)
    - resolved timestamp, no outcome  -> EXPIRED at the last observed price
    - anything else                   -> left OPEN

    Returns
    -------
    ReconcileSummary
        Counts for this pass.
    """
    summary = ReconcileSummary()
    snapshots: dict[str, MarketSnapshot] = {}

    for position in ledger.open_positions():
        summary.checked += 1
        market_id = position.market_id

        try:
            snapshot = snapshots.get(market_id)
            if snapshot is None:
                snapshot = await source.get_market(market_id)
                snapshots[market_id] = snapshot
                # Resolved markets drop out of the listing; refresh tracked state here.
                if belief_store is not None and market_id in belief_store:
                    belief_store.observe_market(snapshot)
        except (SourceUnavailable, InvalidPayload) as exc:
            summary.failed += 1
            logger.warning(
                "Resolution check failed for market %s (position %s): %s",
                market_id, position.id, exc,
            )
            continue

        try:
            # Re-read after the await: an overlapping pass may have settled it.
            if not ledger.get(position.id).is_open:
                continue

            if snapshot.resolution_outcome is not None:
                outcome = PositionSide.YES if snapshot.resolution_outcome else PositionSide.NO
                await ledger.resolve(position.id, outcome)
                summary.resolved += 1
            elif snapshot.resolved_at is not None:
                await ledger.expire(
                    position.id, _last_price(snapshot, market_id, belief_store),
                )
                summary.expired += 1
            else:
                summary.pending += 1
        except PositionNotFound:
            logger.error("Position %s vanished from the ledger during reconciliation", position.id)
            summary.failed += 1
        except Exception as exc:
            logger.error("Error settling position %s (market %s): %s", position.id, market_id, exc)
            summary.failed += 1

    if summary.resolved or summary.expired:
        logger.info(
            "Reconciliation: checked=%d resolved=%d expired=%d pending=%d failed=%d",
            summary.checked, summary.resolved, summary.expired, summary.pending, summary.failed,
        )
    return summary
