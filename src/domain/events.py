"""
Event schemas for the engine stream.

The transport reduces raw socket events to a small typed feed. Every event
carries the generation of the session that produced it so consumers can
drop anything emitted by a superseded connection with an integer compare.
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class StreamEventKind(str, Enum):
    """Kinds on the typed feed."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    STATE = "state"
    PRICES = "prices"
    ACCOUNT = "account"
    UNKNOWN_EVENT = "unknownEvent"


class ConnectionState(str, Enum):
    """
    Transport state machine.

    CONNECTING -> CONNECTED -> SOFT_DISCONNECTED (grace window running)
    -> DISCONNECTED, or back to CONNECTED if the link recovers in time.
    """
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SOFT_DISCONNECTED = "soft_disconnected"
    DISCONNECTED = "disconnected"


class OutboundEvent(str, Enum):
    """Fire-and-forget control events sent to the engine."""
    REQUEST_FULL_STATE = "request_full_state"
    SUBSCRIBE_ALL = "subscribe_all"
    START_ENGINE = "start_engine"
    STOP_ENGINE = "stop_engine"
    PANIC_CLOSE = "panic_close"
    KILL_ALL = "kill_all"
    CLOSE_POSITION = "close_position"
    UPDATE_RISK = "update_risk"
    NEW_LOG = "new_log_client"


# Inbound socket event name -> feed kind
INBOUND_EVENT_KINDS: Dict[str, StreamEventKind] = {
    "strategy_state": StreamEventKind.STATE,
    "strategy_update": StreamEventKind.STATE,
    "heartbeat": StreamEventKind.STATE,
    "market_data": StreamEventKind.PRICES,
    "market_update": StreamEventKind.PRICES,
    "account_update": StreamEventKind.ACCOUNT,
}

# Sent on every (re)connect so the client never relies on deltas alone
ON_CONNECT_REQUESTS = (OutboundEvent.REQUEST_FULL_STATE, OutboundEvent.SUBSCRIBE_ALL)


def kind_for_event(name: str) -> StreamEventKind:
    return INBOUND_EVENT_KINDS.get(name, StreamEventKind.UNKNOWN_EVENT)


@dataclass(frozen=True)
class StreamEvent:
    """
    One item on the typed feed.

    ``name`` keeps the raw socket event name (``heartbeat`` vs
    ``strategy_update`` matters for telemetry, not for reconciliation).
    """
    kind: StreamEventKind
    payload: Any
    generation: int
    name: str = ""
    received_at: float = field(default_factory=time.time)
