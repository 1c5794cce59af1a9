"""
Unrealized PnL resolution for classified positions.

Trust order:
    1. ``entry.pnl`` reported by the engine
    2. ``entry.profit`` (broker-native spelling of the same value)
    3. price-move estimate in points when a current price is known
    4. 0
"""
from typing import Optional

from src.constants import PNL_POINTS_SCALE
from src.domain.models import TradeEntry, TrendBias


def estimate_pnl_points(entry_price: float, current_price: float, bias: TrendBias) -> float:
    """Relative move scaled to points; negated for shorts."""
    if not entry_price:
        return 0.0
    raw_diff = (current_price - entry_price) / entry_price
    if bias == TrendBias.SHORT:
        raw_diff = -raw_diff
    return raw_diff * PNL_POINTS_SCALE


def resolve_pnl(entry: TradeEntry, current_price: Optional[float], bias: TrendBias) -> float:
    if entry.pnl is not None:
        return entry.pnl
    if entry.profit is not None:
        return entry.profit
    if current_price:
        return estimate_pnl_points(entry.price, current_price, bias)
    return 0.0
