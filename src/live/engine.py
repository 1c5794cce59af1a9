"""
Reconciliation engine: the owned, per-login session object.

Consumes the typed stream feed and keeps the client-side picture of the
strategy engine consistent:

    stream event -> normalize -> merge into canonical store
                 -> classify (active / pending) -> diff against last tick
                 -> history records -> persisted ledger (+ remote mirror)

One instance is built when the dashboard authenticates and closed on logout.
Nothing here is module-global; callers hold a reference to the engine.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from src.config.config import Config
from src.constants import DEFAULT_STRATEGY_NAME
from src.domain.events import ConnectionState, StreamEvent, StreamEventKind
from src.domain.models import (
    AccountState,
    ActivePosition,
    ClosedTradeRecord,
    LogEntry,
    PendingOrder,
    SymbolState,
)
from src.exceptions import PayloadShapeError, StaleGenerationError
from src.monitoring.logger import get_logger
from src.reconciliation.classifier import Classification, classify
from src.reconciliation.merger import merge_prices, merge_symbol_states, seed_universe
from src.reconciliation.normalizer import (
    decode_prices_or_raise,
    decode_state_or_raise,
    extract_engine_flags,
)
from src.reconciliation.transitions import TransitionDetector
from src.storage.equity_sampler import SessionEquitySampler
from src.storage.history_store import HistoryStore, LogStore
from src.storage.remote_sync import RemoteMirror, sync_stores_from_remote
from src.transport.session import StreamSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class DashboardSnapshot:
    """Read-only view of the engine after a tick."""
    generation: int
    connection: ConnectionState
    bot_active: bool
    strategy_name: str
    symbols: Mapping[str, SymbolState]
    prices: Mapping[str, float]
    account: Optional[AccountState]
    active_positions: Tuple[ActivePosition, ...]
    pending_orders: Tuple[PendingOrder, ...]
    history: Tuple[ClosedTradeRecord, ...]
    logs: Tuple[LogEntry, ...]
    equity_samples: Tuple[float, ...] = field(default_factory=tuple)

    @property
    def connected(self) -> bool:
        return self.connection == ConnectionState.CONNECTED

    @property
    def total_unrealized_pnl(self) -> float:
        return sum(p.pnl for p in self.active_positions)


class ReconciliationEngine:
    """Canonical client state for one authenticated dashboard session."""

    def __init__(
        self,
        config: Config,
        *,
        session: Optional[StreamSession] = None,
        mirror: Optional[RemoteMirror] = None,
    ):
        self.config = config
        store = config.store

        self.session = session or StreamSession(config.transport)
        self.mirror = mirror or RemoteMirror(
            config.transport.url,
            headers=config.transport.extra_headers,
            timeout_seconds=store.remote_timeout_seconds,
            enabled=store.remote_sync_enabled,
        )
        self.history = HistoryStore(store.history_path, store.history_cap, mirror=self.mirror.mirror_history)
        self.logs = LogStore(store.logs_path, store.logs_cap, mirror=self._broadcast_logs)
        self.equity = SessionEquitySampler(store.equity_samples)
        self.detector = TransitionDetector()

        self.symbols: Dict[str, SymbolState] = seed_universe(config.universe)
        self.prices: Dict[str, float] = {}
        self.account: Optional[AccountState] = None
        self.bot_active = False
        self.strategy_name = DEFAULT_STRATEGY_NAME
        self.classification = Classification()

        self._sync_lock = asyncio.Lock()
        self._background: Set[asyncio.Task] = set()
        self._consumer: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Restore local ledgers, pull the remote copy, then open the stream."""
        self.history.restore()
        self.logs.restore()
        await self.sync_from_remote()

        self.logs.info("SYS", f"Initializing Socket (STABLE STREAM): {self.config.transport.url}")
        await self.session.connect()
        self._consumer = asyncio.create_task(self.run())

    async def sync_from_remote(self) -> bool:
        """Startup sync; a call while one is already running is a no-op."""
        if self._sync_lock.locked():
            logger.debug("REMOTE_SYNC_ALREADY_RUNNING")
            return False
        async with self._sync_lock:
            return await sync_stores_from_remote(self.mirror, self.history, self.logs)

    async def run(self) -> None:
        """Consume the session feed until it closes."""
        async for event in self.session.events():
            self.handle_event(event)

    async def close(self) -> None:
        await self.session.close()
        if self._consumer is not None:
            await self._consumer
            self._consumer = None
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.mirror.drain()

    async def force_reset(self) -> int:
        """Manual bridge reset: new socket, new generation. Canonical state is kept."""
        self.logs.warning("SYS", "Forcing Bridge Reset...")
        return await self.session.hard_reconnect()

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def handle_event(self, event: StreamEvent) -> bool:
        """Apply one feed event. Returns True if a reconciliation tick ran."""
        try:
            self.session.check_generation(event)
        except StaleGenerationError:
            # Expected while a hard reconnect is in flight
            return False

        kind = event.kind
        if kind == StreamEventKind.CONNECTED:
            self.logs.success("NET", "Bridge Stabilized (Live)")
        elif kind == StreamEventKind.DISCONNECTED:
            reason = event.payload.get("reason") if isinstance(event.payload, Mapping) else event.payload
            self.logs.error("NET", f"Disconnected: {reason}")
            return False
        elif kind == StreamEventKind.STATE:
            if not self._apply_state(event):
                return False
        elif kind == StreamEventKind.PRICES:
            if not self._apply_prices(event):
                return False
        elif kind == StreamEventKind.ACCOUNT:
            if not self._apply_account(event):
                return False
        else:
            logger.debug("STREAM_EVENT_IGNORED", event_name=event.name, generation=event.generation)
            return False

        self.reconcile()
        return True

    def _apply_state(self, event: StreamEvent) -> bool:
        payload = event.payload
        flags = extract_engine_flags(payload)
        if flags.active is not None:
            self.bot_active = flags.active
        if flags.strategy_name:
            self.strategy_name = flags.strategy_name

        try:
            result = decode_state_or_raise(event.name, payload)
        except PayloadShapeError as e:
            logger.warning("STATE_PAYLOAD_UNRECOGNIZED", event_name=e.event, detail=e.detail)
            self.logs.warning("DEBUG", f"Discarded unrecognized {e.event} payload")
            return False

        if result.dropped:
            logger.debug("STATE_RECORDS_DROPPED", event_name=event.name, shape=result.shape.value, dropped=result.dropped)
        self.symbols = merge_symbol_states(self.symbols, result.symbols)

        if event.name == "strategy_state":
            self.logs.info("SYS", "Received Strategy Sync")
        elif event.name == "heartbeat" and isinstance(payload, list):
            self.logs.info("SYS", f"Heartbeat: {len(payload)} symbols")
        return True

    def _apply_prices(self, event: StreamEvent) -> bool:
        try:
            result = decode_prices_or_raise(event.name, event.payload)
        except PayloadShapeError as e:
            logger.warning("PRICE_PAYLOAD_UNRECOGNIZED", event_name=e.event, detail=e.detail)
            return False
        if not result.prices:
            return False
        self.prices = merge_prices(self.prices, result.prices)
        return True

    def _apply_account(self, event: StreamEvent) -> bool:
        payload = event.payload
        if not isinstance(payload, Mapping):
            logger.warning("ACCOUNT_PAYLOAD_UNRECOGNIZED", event_name=event.name, payload_type=type(payload).__name__)
            return False
        account = AccountState.from_dict(payload)
        if account.reports_online and self.session.confirm_alive():
            logger.info("STREAM_CONFIRMED_BY_ACCOUNT_STATUS", status=account.status)
        self.account = account
        self.equity.sample(account)
        return True

    # ------------------------------------------------------------------
    # Reconciliation tick
    # ------------------------------------------------------------------

    def reconcile(self) -> List[ClosedTradeRecord]:
        """Classify the canonical store and record lifecycle transitions."""
        self.classification = classify(self.symbols, self.prices)
        records = self.detector.observe(self.classification, connected=self.session.is_connected)
        if records:
            self.history.record(records)
        return records

    def snapshot(self) -> DashboardSnapshot:
        return DashboardSnapshot(
            generation=self.session.generation,
            connection=self.session.state,
            bot_active=self.bot_active,
            strategy_name=self.strategy_name,
            symbols=MappingProxyType(dict(self.symbols)),
            prices=MappingProxyType(dict(self.prices)),
            account=self.account,
            active_positions=self.classification.active_positions,
            pending_orders=self.classification.pending_orders,
            history=self.history.items,
            logs=self.logs.items,
            equity_samples=self.equity.samples,
        )

    def clear_history(self) -> None:
        """Wipe the trade ledger locally; the mirror hook pushes the empty list."""
        self.history.clear()
        self.logs.warning("HISTORY", "Trade history cleared")

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    async def toggle_engine(self) -> bool:
        action = "stop" if self.bot_active else "start"
        self.logs.info("SYS", f"Sending {action.upper()} command...")
        if action == "start":
            return await self.session.start_engine()
        return await self.session.stop_engine()

    async def close_symbol(self, symbol: str, ticket: Optional[int] = None, volume: Optional[float] = None) -> bool:
        self.logs.info("MANUAL", f"Sending CLOSE command for {symbol} (Ticket: {ticket or 'ALL'})...")
        return await self.session.close_position(symbol, ticket, volume)

    async def panic_close(self) -> bool:
        """Close every active position individually, then fire the global kill."""
        self.logs.warning("MANUAL", "INITIATING PANIC CLOSE (ALL POSITIONS)...")
        positions = self.classification.active_positions
        for position in positions:
            await self.close_symbol(position.symbol, position.ticket, position.volume)
        if positions:
            self.logs.info("MANUAL", f"Sent close commands for {len(positions)} positions.")
        return await self.session.panic_close()

    async def update_risk(self, risk_config: Dict[str, Any]) -> bool:
        if not self.session.is_connected:
            self.logs.error("NET", "Socket not connected")
            return False
        sent = await self.session.update_risk(risk_config)
        if sent:
            self.logs.success("RISK", "Risk configuration sent to engine")
        return sent

    def _broadcast_logs(self, items: Tuple[LogEntry, ...], added: Tuple[LogEntry, ...]) -> None:
        """LogStore mirror hook: relay new lines to the engine while connected."""
        if not added or not self.session.is_connected:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        for entry in added:
            task = loop.create_task(self.session.broadcast_log(entry.to_dict()))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
