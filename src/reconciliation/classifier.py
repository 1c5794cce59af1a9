"""
Position/order classification.

Derives two disjoint collections from the canonical symbol state and the
price map: active positions and pending orders. Both are rebuilt from
scratch on every tick and never mutated in place.

Pending-ness precedence for an entry (must stay in this order):
    1. explicit ``type == "PENDING"``            -> pending
    2. numeric ``pnl`` or ``profit`` present      -> active
    3. ``reason`` contains "pending" (any case)   -> pending
    4. otherwise                                  -> active

Rule 2 exists because the engine's reason text often lags the real order
state, while a filled order always carries PnL.
"""
from dataclasses import dataclass
from typing import List, Mapping, Tuple

from src.constants import DEFAULT_ACTIVE_REASON
from src.domain.models import (
    ActivePosition,
    PendingOrder,
    SymbolState,
    TradeEntry,
    format_display_time,
)
from src.reconciliation.pnl import resolve_pnl


@dataclass(frozen=True)
class Classification:
    active_positions: Tuple[ActivePosition, ...] = ()
    pending_orders: Tuple[PendingOrder, ...] = ()

    @property
    def total_unrealized_pnl(self) -> float:
        return sum(p.pnl for p in self.active_positions)

    def __iter__(self):
        # Allows ``active, pending = classify(...)``
        return iter((self.active_positions, self.pending_orders))


def is_pending_entry(entry: TradeEntry) -> bool:
    if entry.is_explicit_pending:
        return True
    if entry.has_reported_pnl:
        return False
    return "pending" in entry.reason.lower()


def classify(
    symbol_states: Mapping[str, SymbolState],
    prices: Mapping[str, float],
) -> Classification:
    active: List[ActivePosition] = []
    pending: List[PendingOrder] = []

    for symbol, state in symbol_states.items():
        current_price = prices.get(symbol)

        if state.is_watchlist_lock:
            pending.append(PendingOrder(
                symbol=symbol,
                bias=state.trend_bias,
                status=state.status,
                current_price=current_price or 0.0,
            ))
            continue

        for index, entry in enumerate(state.entries):
            layer = index + 1
            if is_pending_entry(entry):
                pending.append(PendingOrder(
                    symbol=symbol,
                    bias=state.trend_bias,
                    status=state.status,
                    current_price=current_price or 0.0,
                    limit_price=entry.price,
                    ticket=entry.ticket,
                    volume=entry.volume,
                    layer=layer,
                ))
            else:
                active.append(ActivePosition(
                    symbol=symbol,
                    type=state.trend_bias,
                    entry_price=entry.price,
                    pnl=resolve_pnl(entry, current_price, state.trend_bias),
                    layer=layer,
                    reason=entry.reason or DEFAULT_ACTIVE_REASON,
                    time=format_display_time(entry.time),
                    status=state.status,
                    ticket=entry.ticket,
                    volume=entry.volume,
                ))

    return Classification(active_positions=tuple(active), pending_orders=tuple(pending))
