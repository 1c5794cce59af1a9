"""
Payload normalization for engine stream events.

The engine has shipped symbol state in several shapes across releases:

    {"symbols": {"BTCUSD": {...}}}             SYMBOLS_KEY
    {"symbols": [{"symbol": "BTCUSD", ...}]}   SYMBOLS_KEY (sequence body)
    {"data": {"symbols": ...}}                 DATA_SYMBOLS_KEY
    {"BTCUSD": {...}, "ETHUSD": {...}}         BARE
    [{"symbol": "BTCUSD", ...}, ...]           SEQUENCE

and prices as ``{"prices": {...}}``, ``{"data": {...}}`` or a bare
``{symbol: price}`` object. Each decoder returns a tagged result naming the
shape it matched, with UNRECOGNIZED as the explicit failure variant, so
handlers never sniff shapes themselves.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from src.domain.models import SymbolState, as_number
from src.exceptions import PayloadShapeError


# Top-level keys that wrap or annotate a payload and are never symbols
WRAPPER_KEYS = frozenset({"symbols", "data", "prices", "active", "activeStrategy"})


class PayloadShape(str, Enum):
    SYMBOLS_KEY = "symbols"
    DATA_SYMBOLS_KEY = "data.symbols"
    PRICES_KEY = "prices"
    DATA_KEY = "data"
    BARE = "bare"
    SEQUENCE = "sequence"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class StateDecodeResult:
    shape: PayloadShape
    symbols: Dict[str, SymbolState] = field(default_factory=dict)
    dropped: int = 0  # records discarded: not an object, or no symbol field

    @property
    def recognized(self) -> bool:
        return self.shape != PayloadShape.UNRECOGNIZED


@dataclass(frozen=True)
class PriceDecodeResult:
    shape: PayloadShape
    prices: Dict[str, float] = field(default_factory=dict)
    dropped: int = 0  # non-numeric values discarded

    @property
    def recognized(self) -> bool:
        return self.shape != PayloadShape.UNRECOGNIZED


@dataclass(frozen=True)
class EngineFlags:
    """Global engine annotations that ride along with state events."""
    active: Optional[bool] = None
    strategy_name: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.active is None and self.strategy_name is None


# ---------------------------------------------------------------------------
# Symbol state
# ---------------------------------------------------------------------------

def _symbols_from_sequence(records: List[Any]) -> Tuple[Dict[str, SymbolState], int]:
    """Key each record on its own ``symbol`` field; drop records without one."""
    symbols: Dict[str, SymbolState] = {}
    dropped = 0
    for record in records:
        symbol = record.get("symbol") if isinstance(record, Mapping) else None
        if not symbol or not isinstance(symbol, str):
            dropped += 1
            continue
        symbols[symbol] = SymbolState.from_dict(record)
    return symbols, dropped


def _symbols_from_mapping(body: Mapping[str, Any], *, skip_wrappers: bool) -> Tuple[Dict[str, SymbolState], int]:
    symbols: Dict[str, SymbolState] = {}
    dropped = 0
    for symbol, record in body.items():
        if skip_wrappers and symbol in WRAPPER_KEYS:
            continue
        if not isinstance(record, Mapping):
            dropped += 1
            continue
        symbols[str(symbol)] = SymbolState.from_dict(record)
    return symbols, dropped


def _decode_symbols_body(shape: PayloadShape, body: Any) -> StateDecodeResult:
    if isinstance(body, list):
        symbols, dropped = _symbols_from_sequence(body)
    else:
        symbols, dropped = _symbols_from_mapping(body, skip_wrappers=False)
    return StateDecodeResult(shape=shape, symbols=symbols, dropped=dropped)


def decode_state_event(raw: Any) -> StateDecodeResult:
    """Classify a symbol-state payload and reduce it to the mapping form."""
    if isinstance(raw, list):
        symbols, dropped = _symbols_from_sequence(raw)
        return StateDecodeResult(shape=PayloadShape.SEQUENCE, symbols=symbols, dropped=dropped)

    if not isinstance(raw, Mapping):
        return StateDecodeResult(shape=PayloadShape.UNRECOGNIZED)

    if isinstance(raw.get("symbols"), (Mapping, list)):
        return _decode_symbols_body(PayloadShape.SYMBOLS_KEY, raw["symbols"])

    data = raw.get("data")
    if isinstance(data, Mapping) and isinstance(data.get("symbols"), (Mapping, list)):
        return _decode_symbols_body(PayloadShape.DATA_SYMBOLS_KEY, data["symbols"])

    symbols, dropped = _symbols_from_mapping(raw, skip_wrappers=True)
    if not symbols and dropped:
        # Non-empty object with nothing that looks like a symbol record
        return StateDecodeResult(shape=PayloadShape.UNRECOGNIZED, dropped=dropped)
    return StateDecodeResult(shape=PayloadShape.BARE, symbols=symbols, dropped=dropped)


def normalize_state_event(raw: Any) -> Optional[Dict[str, SymbolState]]:
    """Return ``{symbol: SymbolState}`` for any known shape, else None."""
    result = decode_state_event(raw)
    return result.symbols if result.recognized else None


def decode_state_or_raise(event: str, raw: Any) -> StateDecodeResult:
    result = decode_state_event(raw)
    if not result.recognized:
        raise PayloadShapeError(event, f"type={type(raw).__name__}")
    return result


def extract_engine_flags(raw: Any) -> EngineFlags:
    """Pull the ``active`` / ``activeStrategy`` annotations off a state payload."""
    if not isinstance(raw, Mapping):
        return EngineFlags()
    active = raw.get("active")
    strategy = raw.get("activeStrategy")
    return EngineFlags(
        active=bool(active) if active is not None else None,
        strategy_name=str(strategy) if strategy else None,
    )


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------

def decode_price_event(raw: Any) -> PriceDecodeResult:
    """Classify a price payload and reduce it to ``{symbol: price}``."""
    if not isinstance(raw, Mapping):
        return PriceDecodeResult(shape=PayloadShape.UNRECOGNIZED)

    if isinstance(raw.get("prices"), Mapping):
        shape, body = PayloadShape.PRICES_KEY, raw["prices"]
    elif isinstance(raw.get("data"), Mapping):
        shape, body = PayloadShape.DATA_KEY, raw["data"]
    else:
        shape, body = PayloadShape.BARE, raw

    prices: Dict[str, float] = {}
    dropped = 0
    for symbol, value in body.items():
        price = as_number(value)
        if price is None:
            dropped += 1
            continue
        prices[str(symbol)] = price

    if not prices and dropped:
        return PriceDecodeResult(shape=PayloadShape.UNRECOGNIZED, dropped=dropped)
    return PriceDecodeResult(shape=shape, prices=prices, dropped=dropped)


def normalize_price_event(raw: Any) -> Optional[Dict[str, float]]:
    """Return ``{symbol: price}`` for any known shape, else None."""
    result = decode_price_event(raw)
    return result.prices if result.recognized else None


def decode_prices_or_raise(event: str, raw: Any) -> PriceDecodeResult:
    result = decode_price_event(raw)
    if not result.recognized:
        raise PayloadShapeError(event, f"type={type(raw).__name__}")
    return result
