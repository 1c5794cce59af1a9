"""
Canonical symbol-state merging.

The engine sends deltas (changed symbols only), so a symbol missing from a
fragment is unchanged, never removed. Merges are shallow per symbol: an
incoming state replaces the stored one wholesale, entry list included.
Both functions return a new mapping and leave their inputs untouched.
"""
from typing import Dict, Iterable, Mapping

from src.domain.models import SymbolState


def merge_symbol_states(
    current: Mapping[str, SymbolState],
    fragment: Mapping[str, SymbolState],
) -> Dict[str, SymbolState]:
    """Last write wins per symbol; idempotent for a repeated fragment."""
    updated = dict(current)
    updated.update(fragment)
    return updated


def merge_fragments(
    current: Mapping[str, SymbolState],
    fragments: Iterable[Mapping[str, SymbolState]],
) -> Dict[str, SymbolState]:
    """Fold fragments in arrival order."""
    merged = dict(current)
    for fragment in fragments:
        merged = merge_symbol_states(merged, fragment)
    return merged


def merge_prices(current: Mapping[str, float], update: Mapping[str, float]) -> Dict[str, float]:
    """Symbols are only ever added or refreshed; a known price is never dropped."""
    merged = dict(current)
    merged.update(update)
    return merged


def seed_universe(symbols: Iterable[str]) -> Dict[str, SymbolState]:
    """Default state for every symbol the dashboard shows before the first sync."""
    return {symbol: SymbolState.default() for symbol in symbols}
