"""
Streaming session to the strategy engine.

Wraps one python-socketio AsyncClient and turns its callbacks into a typed,
ordered event feed (``StreamEvent``). The engine sits behind a reverse
tunnel that drops large frames and injects an interstitial page, so the
session:

- starts on HTTP long-polling and upgrades to websocket after the handshake,
  sending the tunnel's skip header on every request;
- reconnects forever on a fixed delay (no exponential backoff);
- runs an inactivity watchdog: no packet of any kind for
  ``inactivity_timeout_seconds`` forces a reconnect;
- debounces transport disconnects: a drop enters SOFT_DISCONNECTED and is
  only surfaced as ``disconnected`` if the link is still down after
  ``disconnect_grace_seconds``.

``hard_reconnect`` discards the client entirely and builds a new one under
a new generation number. Every event carries the generation that produced
it; callbacks from an older generation are dropped on arrival.
"""
import asyncio
import json
from typing import Any, AsyncIterator, Callable, Dict, Optional

import socketio

from src.config.config import TransportConfig
from src.domain.events import (
    ON_CONNECT_REQUESTS,
    ConnectionState,
    OutboundEvent,
    StreamEvent,
    StreamEventKind,
    kind_for_event,
)
from src.exceptions import StaleGenerationError, TransportError
from src.monitoring.logger import get_logger

logger = get_logger(__name__)

_CLOSED = object()


class StreamSession:
    """One logical streaming connection, possibly across many sockets."""

    def __init__(
        self,
        config: TransportConfig,
        *,
        client_factory: Optional[Callable[[], socketio.AsyncClient]] = None,
    ):
        self.config = config
        self._client_factory = client_factory or self._build_client
        self._client: Optional[socketio.AsyncClient] = None
        self._generation = 0
        self._state = ConnectionState.DISCONNECTED
        self._queue: asyncio.Queue = asyncio.Queue()
        self._connect_task: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.TimerHandle] = None
        self._grace: Optional[asyncio.TimerHandle] = None
        self._background: set = set()
        self._closed = True
        self._packets_seen = 0
        self._connected = asyncio.Event()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def is_current(self, generation: int) -> bool:
        return generation == self._generation and not self._closed

    def check_generation(self, event: StreamEvent) -> None:
        if event.generation != self._generation:
            raise StaleGenerationError(event.generation, self._generation)

    async def wait_connected(self, timeout: float) -> None:
        """Block until the session is CONNECTED."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Not connected to {self.config.url} after {timeout}s (state={self._state.value})"
            ) from e

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _build_client(self) -> socketio.AsyncClient:
        delay = self.config.reconnect_delay_seconds
        return socketio.AsyncClient(
            reconnection=True,
            reconnection_attempts=0,  # unlimited
            reconnection_delay=delay,
            reconnection_delay_max=delay,
            randomization_factor=0,
            logger=False,
            engineio_logger=False,
        )

    async def connect(self) -> "StreamSession":
        """Start streaming. Returns the session itself as the handle."""
        if not self._closed:
            return self
        self._closed = False
        self._start(self._generation)
        return self

    async def hard_reconnect(self) -> int:
        """Tear the client down and rebuild it under a new generation."""
        old = self._client
        self._generation += 1
        generation = self._generation
        logger.warning("STREAM_HARD_RECONNECT", generation=generation, url=self.config.url)

        self._cancel_timers()
        await self._cancel_connect_task()
        if old is not None:
            await self._teardown(old)

        self._closed = False
        self._start(generation)
        return generation

    async def close(self) -> None:
        """Stop for good (logout). Ends the ``events()`` iterator."""
        self._closed = True
        self._cancel_timers()
        await self._cancel_connect_task()
        if self._client is not None:
            await self._teardown(self._client)
            self._client = None
        self._set_state(ConnectionState.DISCONNECTED)
        self._queue.put_nowait(_CLOSED)

    def _start(self, generation: int) -> None:
        client = self._client_factory()
        self._register_handlers(client, generation)
        self._client = client
        self._packets_seen = 0
        self._set_state(ConnectionState.CONNECTING)
        self._connect_task = asyncio.create_task(self._connect_loop(client, generation))

    async def _connect_loop(self, client: socketio.AsyncClient, generation: int) -> None:
        """Initial handshake with unlimited fixed-delay retries."""
        if self.config.connect_delay_seconds:
            await asyncio.sleep(self.config.connect_delay_seconds)

        attempt = 0
        delay = self.config.reconnect_delay_seconds
        while self.is_current(generation) and not client.connected:
            attempt += 1
            logger.info("STREAM_CONNECTING", url=self.config.url, attempt=attempt, generation=generation)
            try:
                await client.connect(
                    self.config.url,
                    headers=dict(self.config.extra_headers),
                    transports=list(self.config.transports),
                    socketio_path=self.config.socketio_path,
                    wait_timeout=self.config.handshake_timeout_seconds,
                )
                return
            except socketio.exceptions.ConnectionError as e:
                logger.warning(
                    "STREAM_CONNECT_FAILED",
                    error=str(e),
                    attempt=attempt,
                    retry_in_s=delay,
                    generation=generation,
                )
                await asyncio.sleep(delay)

    async def _cancel_connect_task(self) -> None:
        task = self._connect_task
        self._connect_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _teardown(self, client: socketio.AsyncClient) -> None:
        try:
            await client.disconnect()
        except Exception as e:
            # Old socket may already be half-closed by the tunnel
            logger.debug("STREAM_TEARDOWN_ERROR", error=str(e), error_type=type(e).__name__)

    # ------------------------------------------------------------------
    # Socket callbacks
    # ------------------------------------------------------------------

    def _register_handlers(self, client: socketio.AsyncClient, generation: int) -> None:
        async def on_connect():
            self._handle_connect(generation)

        async def on_connect_error(data=None):
            if self.is_current(generation):
                logger.warning("STREAM_CONNECT_ERROR", detail=str(data)[:200], generation=generation)

        async def on_disconnect(*args):
            # Newer python-socketio passes the reason, older versions pass nothing
            reason = str(args[0]) if args else "transport close"
            self._handle_disconnect(generation, reason)

        async def on_any(event, *args):
            self._handle_packet(generation, event, args[0] if args else None)

        client.on("connect", on_connect)
        client.on("connect_error", on_connect_error)
        client.on("disconnect", on_disconnect)
        client.on("*", on_any)

    def _handle_connect(self, generation: int) -> None:
        if not self.is_current(generation):
            return
        self._cancel_grace()
        self._packets_seen = 0
        self._set_state(ConnectionState.CONNECTED)
        self._reset_watchdog(generation)
        self._enqueue(StreamEventKind.CONNECTED, {"transport": self._transport_name()}, "connect", generation)
        self._spawn(self._send_on_connect(generation))

    def _handle_disconnect(self, generation: int, reason: str) -> None:
        if not self.is_current(generation):
            return
        logger.warning("STREAM_TRANSPORT_DROP", reason=reason, generation=generation)
        self._set_state(ConnectionState.SOFT_DISCONNECTED)
        self._cancel_grace()
        loop = asyncio.get_running_loop()
        self._grace = loop.call_later(
            self.config.disconnect_grace_seconds, self._confirm_disconnect, generation, reason
        )

    def _handle_packet(self, generation: int, name: str, payload: Any) -> None:
        if not self.is_current(generation):
            return
        self._reset_watchdog(generation)
        if self._state == ConnectionState.SOFT_DISCONNECTED:
            self.confirm_alive()

        if self._packets_seen < self.config.debug_packet_count:
            self._packets_seen += 1
            raw = json.dumps(payload, default=str)
            logger.debug(
                "STREAM_PACKET",
                event_name=name,
                size_kb=round(len(raw) / 1024, 1),
                preview=raw[:40],
                generation=generation,
            )
        self._enqueue(kind_for_event(name), payload, name, generation)

    def _confirm_disconnect(self, generation: int, reason: str) -> None:
        self._grace = None
        if not self.is_current(generation):
            return
        if self._client is not None and self._client.connected:
            logger.info("STREAM_FLAP_ABSORBED", reason=reason, generation=generation)
            self._set_state(ConnectionState.CONNECTED)
            return
        self._set_state(ConnectionState.DISCONNECTED)
        self._enqueue(StreamEventKind.DISCONNECTED, {"reason": reason}, "disconnect", generation)

    def confirm_alive(self) -> bool:
        """External evidence the link is up (e.g. account status hint)."""
        if self._state != ConnectionState.SOFT_DISCONNECTED:
            return False
        self._cancel_grace()
        self._set_state(ConnectionState.CONNECTED)
        return True

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _reset_watchdog(self, generation: int) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
        loop = asyncio.get_running_loop()
        self._watchdog = loop.call_later(
            self.config.inactivity_timeout_seconds, self._on_inactivity, generation
        )

    def _on_inactivity(self, generation: int) -> None:
        self._watchdog = None
        if not self.is_current(generation):
            return
        logger.warning(
            "STREAM_INACTIVITY_TIMEOUT",
            timeout_s=self.config.inactivity_timeout_seconds,
            generation=generation,
        )
        self._spawn(self._force_reconnect(generation))

    async def _force_reconnect(self, generation: int) -> None:
        """Drop the silent socket and redial on the same generation."""
        client = self._client
        if client is None or not self.is_current(generation):
            return
        await self._teardown(client)
        if not self.is_current(generation):
            return
        await self._cancel_connect_task()
        self._set_state(ConnectionState.CONNECTING)
        self._connect_task = asyncio.create_task(self._connect_loop(client, generation))

    def _cancel_grace(self) -> None:
        if self._grace is not None:
            self._grace.cancel()
            self._grace = None

    def _cancel_timers(self) -> None:
        self._cancel_grace()
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    # ------------------------------------------------------------------
    # Feed
    # ------------------------------------------------------------------

    def _enqueue(self, kind: StreamEventKind, payload: Any, name: str, generation: int) -> None:
        self._queue.put_nowait(StreamEvent(kind=kind, payload=payload, generation=generation, name=name))

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Events in arrival order until ``close()``."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    # ------------------------------------------------------------------
    # Outbound control events
    # ------------------------------------------------------------------

    async def emit(self, event: OutboundEvent, data: Any = None) -> bool:
        """Fire-and-forget. Returns False when there is no live socket."""
        client = self._client
        if client is None or not client.connected:
            logger.warning("STREAM_EMIT_DROPPED", event_name=event.value, state=self._state.value)
            return False
        try:
            if data is None:
                await client.emit(event.value)
            else:
                await client.emit(event.value, data)
        except socketio.exceptions.SocketIOError as e:
            logger.warning("STREAM_EMIT_FAILED", event_name=event.value, error=str(e))
            return False
        return True

    async def _send_on_connect(self, generation: int) -> None:
        for request in ON_CONNECT_REQUESTS:
            if not self.is_current(generation):
                return
            await self.emit(request)

    async def start_engine(self) -> bool:
        return await self.emit(OutboundEvent.START_ENGINE)

    async def stop_engine(self) -> bool:
        return await self.emit(OutboundEvent.STOP_ENGINE)

    async def panic_close(self) -> bool:
        sent = await self.emit(OutboundEvent.PANIC_CLOSE)
        return await self.emit(OutboundEvent.KILL_ALL) and sent

    async def close_position(self, symbol: str, ticket: Optional[int] = None, volume: Optional[float] = None) -> bool:
        return await self.emit(
            OutboundEvent.CLOSE_POSITION,
            {"symbol": symbol, "ticket": ticket, "volume": volume},
        )

    async def update_risk(self, risk_config: Dict[str, Any]) -> bool:
        return await self.emit(OutboundEvent.UPDATE_RISK, dict(risk_config))

    async def broadcast_log(self, entry: Dict[str, Any]) -> bool:
        if not self.is_connected:
            return False
        return await self.emit(OutboundEvent.NEW_LOG, entry)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if state == ConnectionState.CONNECTED:
            self._connected.set()
        else:
            self._connected.clear()
        if state != self._state:
            logger.info("STREAM_STATE", previous=self._state.value, state=state.value, generation=self._generation)
            self._state = state

    def _transport_name(self) -> Optional[str]:
        try:
            return self._client.transport() if self._client is not None else None
        except AttributeError:
            return None

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
