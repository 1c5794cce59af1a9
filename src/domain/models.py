"""
Domain models for the dashboard state layer.

These are the client-side views of what the strategy engine reports.
Payloads arrive loosely typed, so every model has a lenient ``from_dict``
and a ``to_dict`` that uses the dashboard wire keys.

All records are frozen. Containers are converted to tuples and read-only
mappings on construction so a snapshot handed to a consumer can't be
mutated back into the canonical store.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from src.constants import (
    DEFAULT_HMA_PERIODS,
    EPOCH_MILLIS_THRESHOLD,
    TIME_DISPLAY_FORMAT,
)


class TrendBias(str, Enum):
    """Directional stance for a symbol."""
    LONG = "LONG"
    SHORT = "SHORT"
    HEDGED = "HEDGED"
    NONE = "NONE"

    @classmethod
    def parse(cls, value: Any) -> "TrendBias":
        """Map engine spellings (BULL/BUY, BEAR/SELL) onto the canonical bias."""
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().upper()
        if key in _BIAS_SYNONYMS:
            return _BIAS_SYNONYMS[key]
        try:
            return cls(key)
        except ValueError:
            return cls.NONE


_BIAS_SYNONYMS = {
    "BULL": TrendBias.LONG,
    "BUY": TrendBias.LONG,
    "BEAR": TrendBias.SHORT,
    "SELL": TrendBias.SHORT,
}


class SymbolStatus(str, Enum):
    """Engine lifecycle status for a symbol."""
    SCANNING = "SCANNING"
    LOCKED = "LOCKED"
    SCALING = "SCALING"
    INVALIDATED = "INVALIDATED"
    MONITOR = "MONITOR"
    IDLE = "IDLE"

    @classmethod
    def parse(cls, value: Any) -> "SymbolStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.SCANNING


class HmaTrend(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    FLAT = "FLAT"

    @classmethod
    def parse(cls, value: Any) -> "HmaTrend":
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.FLAT


class ConfluenceVote(str, Enum):
    BULL = "BULL"
    BEAR = "BEAR"
    NEUTRAL = "NEUTRAL"

    @classmethod
    def parse(cls, value: Any) -> "ConfluenceVote":
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.NEUTRAL


class FinalStatus(str, Enum):
    """How a record left the derived collections."""
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"


class LogType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

def as_number(value: Any) -> Optional[float]:
    """Return a finite float for numbers or numeric strings, else None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def as_ticket(value: Any) -> Optional[int]:
    """Broker ticket, or None when absent. A zero ticket counts as absent."""
    number = as_number(value)
    if number is None or number != int(number):
        return None
    return int(number) or None


def format_display_time(epoch: Optional[float]) -> str:
    """Format an epoch (seconds or milliseconds) as local HH:MM:SS."""
    if epoch is None:
        return ""
    seconds = epoch / 1000.0 if epoch > EPOCH_MILLIS_THRESHOLD else epoch
    try:
        return datetime.fromtimestamp(seconds).strftime(TIME_DISPLAY_FORMAT)
    except (OverflowError, OSError, ValueError):
        return ""


def now_display_time() -> str:
    return datetime.now().strftime(TIME_DISPLAY_FORMAT)


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _optional_dict(**values: Any) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


# ---------------------------------------------------------------------------
# Engine-reported state
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TradeEntry:
    """
    One resting or filled order within a symbol.

    ``pnl`` and ``profit`` are redundant spellings of the same authoritative
    value (``profit`` is the broker-native name); either one being present
    means the order is filled.
    """
    price: float
    time: float
    reason: str = ""
    type: Optional[str] = None
    pnl: Optional[float] = None
    profit: Optional[float] = None
    ticket: Optional[int] = None
    volume: Optional[float] = None

    @property
    def is_explicit_pending(self) -> bool:
        return (self.type or "").strip().upper() == "PENDING"

    @property
    def has_reported_pnl(self) -> bool:
        return self.pnl is not None or self.profit is not None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TradeEntry":
        raw_type = data.get("type")
        return cls(
            price=as_number(_first(data, "price", "entry_price", "entryPrice")) or 0.0,
            time=as_number(data.get("time")) or 0.0,
            reason=str(data.get("reason") or ""),
            type=str(raw_type) if raw_type is not None else None,
            pnl=as_number(data.get("pnl")),
            profit=as_number(data.get("profit")),
            ticket=as_ticket(data.get("ticket")),
            volume=as_number(data.get("volume")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "price": self.price,
            "time": self.time,
            "reason": self.reason,
            **_optional_dict(
                type=self.type,
                pnl=self.pnl,
                profit=self.profit,
                ticket=self.ticket,
                volume=self.volume,
            ),
        }


@dataclass(frozen=True)
class SymbolState:
    """
    Everything the engine reports for one instrument.

    ``entries`` order is layer order (layer = index + 1). It is never
    re-sorted; a new fragment for the symbol replaces the whole state.
    """
    trend_bias: TrendBias = TrendBias.NONE
    status: SymbolStatus = SymbolStatus.SCANNING
    entries: Tuple[TradeEntry, ...] = ()
    hma_values: Mapping[str, float] = field(default_factory=dict)
    hma_trends: Mapping[int, HmaTrend] = field(default_factory=dict)
    oscillators: Optional[Mapping[str, float]] = None
    confluence: Optional[Mapping[str, ConfluenceVote]] = None

    def __post_init__(self):
        object.__setattr__(self, "entries", tuple(self.entries))
        object.__setattr__(self, "hma_values", MappingProxyType(dict(self.hma_values)))
        object.__setattr__(self, "hma_trends", MappingProxyType(dict(self.hma_trends)))
        if self.oscillators is not None:
            object.__setattr__(self, "oscillators", MappingProxyType(dict(self.oscillators)))
        if self.confluence is not None:
            object.__setattr__(self, "confluence", MappingProxyType(dict(self.confluence)))

    @property
    def entry_count(self) -> int:
        return len(self.entries)

    @property
    def is_watchlist_lock(self) -> bool:
        """LOCKED with nothing placed yet: setup identified, not executed."""
        return self.status == SymbolStatus.LOCKED and not self.entries

    @classmethod
    def default(cls) -> "SymbolState":
        return cls(hma_trends={period: HmaTrend.FLAT for period in DEFAULT_HMA_PERIODS})

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SymbolState":
        raw_entries = data.get("entries") or []
        entries = tuple(
            TradeEntry.from_dict(e) for e in raw_entries if isinstance(e, Mapping)
        ) if isinstance(raw_entries, (list, tuple)) else ()

        hma_values = {}
        raw_values = _first(data, "hma_values", "hmaValues")
        if isinstance(raw_values, Mapping):
            for key, value in raw_values.items():
                number = as_number(value)
                if number is not None:
                    hma_values[str(key)] = number

        hma_trends = {}
        raw_trends = _first(data, "hma_trends", "hmaTrends")
        if isinstance(raw_trends, Mapping):
            for period, trend in raw_trends.items():
                number = as_number(period)
                if number is not None:
                    hma_trends[int(number)] = HmaTrend.parse(trend)

        oscillators = None
        raw_osc = data.get("oscillators")
        if isinstance(raw_osc, Mapping):
            oscillators = {
                str(k): n for k, n in ((k, as_number(v)) for k, v in raw_osc.items()) if n is not None
            }

        confluence = None
        raw_conf = data.get("confluence")
        if isinstance(raw_conf, Mapping):
            confluence = {str(k): ConfluenceVote.parse(v) for k, v in raw_conf.items()}

        return cls(
            trend_bias=TrendBias.parse(_first(data, "trend_bias", "trendBias", "bias")),
            status=SymbolStatus.parse(data.get("status")),
            entries=entries,
            hma_values=hma_values,
            hma_trends=hma_trends,
            oscillators=oscillators,
            confluence=confluence,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trend_bias": self.trend_bias.value,
            "status": self.status.value,
            "entry_count": self.entry_count,
            "entries": [e.to_dict() for e in self.entries],
            "hma_values": dict(self.hma_values),
            "hma_trends": {period: trend.value for period, trend in self.hma_trends.items()},
            **_optional_dict(
                oscillators=dict(self.oscillators) if self.oscillators is not None else None,
                confluence={k: v.value for k, v in self.confluence.items()} if self.confluence is not None else None,
            ),
        }


# ---------------------------------------------------------------------------
# Derived collections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ActivePosition:
    """A filled entry, recomputed on every reconciliation tick."""
    symbol: str
    type: TrendBias
    entry_price: float
    pnl: float
    layer: int
    reason: str
    time: str
    status: Optional[SymbolStatus] = None
    ticket: Optional[int] = None
    volume: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "type": self.type.value,
            "entryPrice": self.entry_price,
            "pnl": self.pnl,
            "layer": self.layer,
            "reason": self.reason,
            "time": self.time,
            **_optional_dict(
                status=self.status.value if self.status else None,
                ticket=self.ticket,
                volume=self.volume,
            ),
        }


@dataclass(frozen=True)
class PendingOrder:
    """
    A resting order, or a watchlist lock (``layer == 0``, no ticket).

    ``layer`` is the entry's 1-based position at observation time; it is only
    used as the secondary identity for ticketless orders.
    """
    symbol: str
    bias: TrendBias
    status: SymbolStatus
    current_price: float
    limit_price: Optional[float] = None
    ticket: Optional[int] = None
    volume: Optional[float] = None
    layer: int = 0

    @property
    def is_watchlist_lock(self) -> bool:
        return self.layer == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "bias": self.bias.value,
            "status": self.status.value,
            "currentPrice": self.current_price,
            **_optional_dict(
                limitPrice=self.limit_price,
                ticket=self.ticket,
                volume=self.volume,
            ),
        }


@dataclass(frozen=True)
class ClosedTradeRecord:
    """A position or order snapshot taken when it left the derived collections."""
    symbol: str
    type: TrendBias
    entry_price: float
    pnl: float
    layer: int
    reason: str
    time: str
    final_status: FinalStatus
    status: Optional[SymbolStatus] = None
    ticket: Optional[int] = None
    volume: Optional[float] = None

    @classmethod
    def from_active(cls, position: ActivePosition) -> "ClosedTradeRecord":
        return cls(
            symbol=position.symbol,
            type=position.type,
            entry_price=position.entry_price,
            pnl=position.pnl,
            layer=position.layer,
            reason=position.reason,
            time=position.time,
            final_status=FinalStatus.FILLED,
            status=position.status,
            ticket=position.ticket,
            volume=position.volume,
        )

    @classmethod
    def from_pending(cls, order: PendingOrder, *, reason: str, time: str) -> "ClosedTradeRecord":
        entry_price = order.limit_price if order.limit_price else order.current_price
        return cls(
            symbol=order.symbol,
            type=order.bias,
            entry_price=entry_price,
            pnl=0.0,
            layer=0,
            reason=reason,
            time=time,
            final_status=FinalStatus.CANCELLED,
            status=order.status,
            ticket=order.ticket,
            volume=order.volume,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClosedTradeRecord":
        symbol = data.get("symbol")
        if not symbol:
            raise ValueError("history record without symbol")
        status = data.get("status")
        raw_final = str(data.get("finalStatus") or data.get("final_status") or "FILLED").upper()
        return cls(
            symbol=str(symbol),
            type=TrendBias.parse(data.get("type")),
            entry_price=as_number(_first(data, "entryPrice", "entry_price")) or 0.0,
            pnl=as_number(data.get("pnl")) or 0.0,
            layer=int(as_number(data.get("layer")) or 0),
            reason=str(data.get("reason") or ""),
            time=str(data.get("time") or ""),
            final_status=FinalStatus.CANCELLED if raw_final == "CANCELLED" else FinalStatus.FILLED,
            status=SymbolStatus.parse(status) if status else None,
            ticket=as_ticket(data.get("ticket")),
            volume=as_number(data.get("volume")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "type": self.type.value,
            "entryPrice": self.entry_price,
            "pnl": self.pnl,
            "layer": self.layer,
            "reason": self.reason,
            "time": self.time,
            "finalStatus": self.final_status.value,
            **_optional_dict(
                status=self.status.value if self.status else None,
                ticket=self.ticket,
                volume=self.volume,
            ),
        }


# ---------------------------------------------------------------------------
# Account and telemetry
# ---------------------------------------------------------------------------

ONLINE_STATUSES = frozenset({"ONLINE", "CONNECTED"})


@dataclass(frozen=True)
class AccountState:
    """Account financials; replaced wholesale on every account update."""
    balance: float = 0.0
    equity: float = 0.0
    realized_pnl: float = 0.0
    win_rate: float = 0.0
    total_trades: int = 0
    max_drawdown: float = 0.0
    status: Optional[str] = None

    @property
    def open_pnl(self) -> float:
        return self.equity - self.balance

    @property
    def reports_online(self) -> bool:
        return (self.status or "").upper() in ONLINE_STATUSES

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AccountState":
        status = data.get("status")
        return cls(
            balance=as_number(data.get("balance")) or 0.0,
            equity=as_number(data.get("equity")) or 0.0,
            realized_pnl=as_number(_first(data, "realized_pnl", "realizedPnl")) or 0.0,
            win_rate=as_number(_first(data, "win_rate", "winRate")) or 0.0,
            total_trades=int(as_number(_first(data, "total_trades", "totalTrades")) or 0),
            max_drawdown=as_number(_first(data, "max_drawdown", "maxDrawdown")) or 0.0,
            status=str(status) if status is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balance": self.balance,
            "equity": self.equity,
            "realized_pnl": self.realized_pnl,
            "win_rate": self.win_rate,
            "total_trades": self.total_trades,
            "max_drawdown": self.max_drawdown,
            **_optional_dict(status=self.status),
        }


@dataclass(frozen=True)
class LogEntry:
    """One line of user-facing telemetry."""
    time: str
    type: LogType
    trigger: str
    msg: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LogEntry":
        try:
            log_type = LogType(str(data.get("type") or "info").lower())
        except ValueError:
            log_type = LogType.INFO
        return cls(
            time=str(data.get("time") or ""),
            type=log_type,
            trigger=str(data.get("trigger") or ""),
            msg=str(data.get("msg") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.time, "type": self.type.value, "trigger": self.trigger, "msg": self.msg}
