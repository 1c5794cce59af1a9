"""
Performance metrics for the dashboard.

Calculates key performance indicators:
- Win rate, profit factor, expectancy over closed trades
- Average win/loss and risk-reward ratio
- Per-symbol realized PnL
- Live portfolio exposure from the current classification
"""
from typing import Dict, Iterable, Optional, Sequence

from src.domain.models import AccountState, ActivePosition, ClosedTradeRecord, FinalStatus, TrendBias


# Reported when there are winners but no losers
PROFIT_FACTOR_NO_LOSSES = 100.0


def calculate_history_metrics(records: Iterable[ClosedTradeRecord]) -> Dict:
    """
    Calculate trade statistics over the history ledger.

    Only FILLED records count as trades; cancellations never had PnL.
    A zero-PnL trade counts as a loss.

    Args:
        records: History records, any order

    Returns:
        Dict with performance metrics
    """
    trades = [r for r in records if r.final_status == FinalStatus.FILLED]

    if not trades:
        return {
            "total_trades": 0,
            "win_rate": 0.0,
            "profit_factor": 0.0,
            "avg_win": 0.0,
            "avg_loss": 0.0,
            "risk_reward_ratio": 0.0,
            "expectancy": 0.0,
            "best_trade": 0.0,
            "worst_trade": 0.0,
            "total_pnl": 0.0,
            "symbol_pnl": {},
        }

    wins = [t for t in trades if t.pnl > 0]
    losses = [t for t in trades if t.pnl <= 0]

    total_profit = sum(t.pnl for t in wins)
    total_loss = abs(sum(t.pnl for t in losses))

    if total_loss > 0:
        profit_factor = total_profit / total_loss
    elif total_profit > 0:
        profit_factor = PROFIT_FACTOR_NO_LOSSES
    else:
        profit_factor = 0.0

    win_rate = len(wins) / len(trades) * 100
    avg_win = total_profit / len(wins) if wins else 0.0
    avg_loss = total_loss / len(losses) if losses else 0.0
    risk_reward_ratio = avg_win / avg_loss if avg_loss > 0 else 0.0

    # (WinRate * AvgWin) - (LossRate * AvgLoss)
    expectancy = (win_rate / 100) * avg_win - (1 - win_rate / 100) * avg_loss

    symbol_pnl: Dict[str, float] = {}
    for trade in trades:
        symbol_pnl[trade.symbol] = symbol_pnl.get(trade.symbol, 0.0) + trade.pnl

    return {
        "total_trades": len(trades),
        "win_rate": win_rate,
        "profit_factor": profit_factor,
        "avg_win": avg_win,
        "avg_loss": avg_loss,
        "risk_reward_ratio": risk_reward_ratio,
        "expectancy": expectancy,
        "best_trade": max([t.pnl for t in trades] + [0.0]),
        "worst_trade": min([t.pnl for t in trades] + [0.0]),
        "total_pnl": sum(t.pnl for t in trades),
        "symbol_pnl": symbol_pnl,
        "winning_trades": len(wins),
        "losing_trades": len(losses),
    }


def calculate_portfolio_metrics(
    positions: Sequence[ActivePosition],
    account: Optional[AccountState] = None,
) -> Dict:
    """
    Live exposure over the current active positions.

    Exposure is the plain sum of entry prices (no contract sizing), matching
    what the engine reports per entry.
    """
    exposure = sum(p.entry_price for p in positions)
    equity = account.equity if account is not None else 0.0

    return {
        "active_longs": sum(1 for p in positions if p.type == TrendBias.LONG),
        "active_shorts": sum(1 for p in positions if p.type == TrendBias.SHORT),
        "total_unrealized_pnl": sum(p.pnl for p in positions),
        "open_pnl": account.open_pnl if account is not None else 0.0,
        "exposure": exposure,
        "exposure_pct": (exposure / equity * 100) if equity else 0.0,
    }
