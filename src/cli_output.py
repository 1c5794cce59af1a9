"""
Shared CLI output helpers: fatal error reporting and one-line renderings.
"""
from __future__ import annotations

import sys
import traceback
from typing import Optional, Sequence

from src.domain.models import ClosedTradeRecord, FinalStatus, LogEntry


def print_critical_error(title: str, error: Exception, *, include_type: bool = True) -> None:
    print("=" * 80, file=sys.stderr)
    print(f"CRITICAL ERROR - {title}", file=sys.stderr)
    print("=" * 80, file=sys.stderr)
    print(f"Error: {error}", file=sys.stderr)
    if include_type:
        print(f"Type: {type(error).__name__}", file=sys.stderr)
    traceback.print_exc(file=sys.stderr)
    print("=" * 80, file=sys.stderr)


def format_tick_line(snapshot) -> str:
    """Status line for one reconciliation tick (``DashboardSnapshot``)."""
    account = snapshot.account
    equity = f"${account.equity:,.2f}" if account is not None else "-"
    return (
        f"[gen {snapshot.generation}] {snapshot.connection.value:<17} "
        f"engine={'ON' if snapshot.bot_active else 'OFF'} "
        f"active={len(snapshot.active_positions)} pending={len(snapshot.pending_orders)} "
        f"uPnL={snapshot.total_unrealized_pnl:,.2f} equity={equity} "
        f"history={len(snapshot.history)}"
    )


def format_history_row(record: ClosedTradeRecord) -> str:
    icon = "✅" if record.final_status == FinalStatus.FILLED else "⛔"
    return (
        f"  {record.time:>8} | {record.symbol:<7} | {record.type.value:<6} | "
        f"L{record.layer} @ {record.entry_price:,.2f} | {record.pnl:,.2f} | "
        f"{record.final_status.value} {icon}"
    )


def format_log_row(entry: LogEntry) -> str:
    return f"  {entry.time:>8} [{entry.type.value.upper():<7}] {entry.trigger:<7} {entry.msg}"


def new_history_records(
    history: Sequence[ClosedTradeRecord],
    newest_seen: Optional[ClosedTradeRecord],
) -> Sequence[ClosedTradeRecord]:
    """
    Records prepended since ``newest_seen`` was the head of the ledger.

    Matched by object identity, so it keeps working once the ledger is at
    its cap. If ``newest_seen`` is gone (ledger cleared), everything present
    is new.
    """
    if newest_seen is None:
        return history
    for index, record in enumerate(history):
        if record is newest_seen:
            return history[:index]
    return history
