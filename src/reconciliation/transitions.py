"""
Lifecycle transition detection.

Diffs the previous tick's classified collections against the current ones
and synthesizes history records:

- an active position whose identity disappeared -> FILLED (closed out)
- a pending order whose identity is gone from BOTH pending and active
  -> CANCELLED; gone from pending but present in active means it filled

Identity is ``ticket`` when the engine assigned one, else
``(symbol, layer)`` observed at classification time. Ticketless identity is
an approximation: when a ticketless scaling position loses an inner layer,
the layers behind it shift down and the record written is the last layer's.
No symbol-level guessing is done: a watchlist lock (layer 0) or a
ticketless order whose key reappears nowhere is recorded as cancelled, even
if the symbol now holds a ticketed order or position.

Detection only runs while the stream is connected; while disconnected the
baseline is frozen so a reconnect never diffs against an empty world.
"""
from typing import Hashable, List, Optional, Sequence, Set, Tuple, Union

from src.constants import CANCELLED_REASON
from src.domain.models import (
    ActivePosition,
    ClosedTradeRecord,
    FinalStatus,
    PendingOrder,
    now_display_time,
)
from src.monitoring.logger import get_logger
from src.reconciliation.classifier import Classification

logger = get_logger(__name__)

Tracked = Union[ActivePosition, PendingOrder]


def identity_key(record: Tracked) -> Tuple[Hashable, ...]:
    if record.ticket:
        return ("ticket", record.ticket)
    return ("symbol", record.symbol, record.layer)


def detect_transitions(
    prev_active: Sequence[ActivePosition],
    prev_pending: Sequence[PendingOrder],
    curr_active: Sequence[ActivePosition],
    curr_pending: Sequence[PendingOrder],
    *,
    cancelled_time: Optional[str] = None,
) -> List[ClosedTradeRecord]:
    """Return new history records, closed positions first, then cancellations."""
    active_ids = {identity_key(p) for p in curr_active}
    pending_ids = {identity_key(o) for o in curr_pending}

    seen: Set[Tuple] = set()
    closed: List[ClosedTradeRecord] = []
    for position in prev_active:
        key = identity_key(position)
        if key in active_ids or key in seen:
            continue
        seen.add(key)
        closed.append(ClosedTradeRecord.from_active(position))

    label = cancelled_time or now_display_time()
    cancelled: List[ClosedTradeRecord] = []
    for order in prev_pending:
        key = identity_key(order)
        if key in pending_ids or key in active_ids or key in seen:
            continue
        seen.add(key)
        cancelled.append(ClosedTradeRecord.from_pending(order, reason=CANCELLED_REASON, time=label))

    return closed + cancelled


class TransitionDetector:
    """Holds the previous tick's snapshot and diffs each new one exactly once."""

    def __init__(self):
        self._prev_active: Tuple[ActivePosition, ...] = ()
        self._prev_pending: Tuple[PendingOrder, ...] = ()

    @property
    def baseline(self) -> Classification:
        return Classification(active_positions=self._prev_active, pending_orders=self._prev_pending)

    def observe(self, current: Classification, *, connected: bool) -> List[ClosedTradeRecord]:
        if not connected:
            return []

        records = detect_transitions(
            self._prev_active,
            self._prev_pending,
            current.active_positions,
            current.pending_orders,
        )
        self._prev_active = current.active_positions
        self._prev_pending = current.pending_orders

        if records:
            logger.info(
                "LIFECYCLE_TRANSITIONS",
                closed=sum(1 for r in records if r.final_status == FinalStatus.FILLED),
                cancelled=sum(1 for r in records if r.final_status == FinalStatus.CANCELLED),
                symbols=sorted({r.symbol for r in records}),
            )
        return records

    def reset(self) -> None:
        self._prev_active = ()
        self._prev_pending = ()
