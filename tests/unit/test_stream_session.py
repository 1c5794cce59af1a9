"""
Unit tests for src/transport/session.py -- the streaming session.

The python-socketio client is replaced by FakeSocketClient, which records
connects/emits and lets a test play the server side (packets, drops).
Timers come from the ``fast_transport`` fixture (milliseconds).

Tests cover:
  - Connect options (transports, tunnel header) and on-connect requests
  - Inbound event routing onto the typed feed
  - Disconnect grace window: flap absorbed vs. disconnect confirmed
  - Inactivity watchdog forcing a redial
  - Hard reconnect: new client, new generation, stale callbacks dropped
  - Outbound emits while connected / disconnected
"""
import asyncio
import pytest
import socketio
from structlog.testing import capture_logs

from src.domain.events import ConnectionState, StreamEventKind
from src.exceptions import StaleGenerationError, TransportError
from src.transport.session import StreamSession


class FakeSocketClient:
    """Just enough of socketio.AsyncClient for the session."""

    def __init__(self, fail_connects: int = 0):
        self.handlers = {}
        self.connected = False
        self.fail_connects = fail_connects
        self.connect_calls = []
        self.disconnect_calls = 0
        self.emitted = []

    def on(self, event, handler):
        self.handlers[event] = handler

    async def connect(self, url, **kwargs):
        self.connect_calls.append((url, kwargs))
        if self.fail_connects:
            self.fail_connects -= 1
            raise socketio.exceptions.ConnectionError("Connection refused by the server")
        self.connected = True
        await self.handlers["connect"]()

    async def disconnect(self):
        self.disconnect_calls += 1
        was_connected = self.connected
        self.connected = False
        if was_connected:
            await self.handlers["disconnect"]("client disconnect")

    async def emit(self, event, data=None):
        self.emitted.append((event, data))

    def transport(self):
        return "polling"

    # -- server side -------------------------------------------------------

    async def push(self, event, data):
        await self.handlers["*"](event, data)

    async def drop(self, reason="transport close"):
        self.connected = False
        await self.handlers["disconnect"](reason)

    async def recover(self):
        self.connected = True
        await self.handlers["connect"]()


def _queued(session: StreamSession) -> list:
    """Pop everything currently on the feed without blocking."""
    events = []
    while not session._queue.empty():
        events.append(session._queue.get_nowait())
    return events


async def _settle(seconds: float = 0.02) -> None:
    await asyncio.sleep(seconds)


@pytest.fixture
def clients():
    return []


@pytest.fixture
def make_session(fast_transport, clients):
    def _make(**client_kwargs) -> StreamSession:
        def factory():
            client = FakeSocketClient(**client_kwargs)
            clients.append(client)
            return client
        return StreamSession(fast_transport, client_factory=factory)
    return _make


# ---------------------------------------------------------------------------
# Connect
# ---------------------------------------------------------------------------

class TestConnect:

    @pytest.mark.asyncio
    async def test_connect_options_and_requests(self, make_session, clients):
        session = make_session()
        await session.connect()
        await session.wait_connected(1.0)
        await _settle()

        url, options = clients[0].connect_calls[0]
        assert url == "http://engine.test"
        assert options["transports"] == ["polling", "websocket"]
        assert options["socketio_path"] == "/socket.io/"
        assert options["headers"]["ngrok-skip-browser-warning"] == "69420"
        assert [name for name, _ in clients[0].emitted] == ["request_full_state", "subscribe_all"]

        events = _queued(session)
        assert [e.kind for e in events] == [StreamEventKind.CONNECTED]
        assert events[0].generation == 0
        await session.close()

    @pytest.mark.asyncio
    async def test_retries_failed_handshake(self, make_session, clients):
        session = make_session(fail_connects=2)
        await session.connect()
        await session.wait_connected(1.0)

        assert len(clients) == 1
        assert len(clients[0].connect_calls) == 3
        assert session.is_connected
        await session.close()

    @pytest.mark.asyncio
    async def test_wait_connected_times_out(self, make_session):
        session = make_session(fail_connects=1000)
        await session.connect()
        with pytest.raises(TransportError):
            await session.wait_connected(0.05)
        await session.close()

    @pytest.mark.asyncio
    async def test_connect_twice_is_noop(self, make_session, clients):
        session = make_session()
        await session.connect()
        await session.connect()
        await _settle()
        assert len(clients) == 1
        await session.close()


# ---------------------------------------------------------------------------
# Inbound routing
# ---------------------------------------------------------------------------

class TestInbound:

    @pytest.mark.asyncio
    async def test_events_are_typed(self, make_session, clients):
        session = make_session()
        await session.connect()
        await session.wait_connected(1.0)
        _queued(session)

        client = clients[0]
        await client.push("strategy_update", {"symbols": {}})
        await client.push("heartbeat", [])
        await client.push("market_update", {"prices": {"ETHUSD": 2050}})
        await client.push("account_update", {"equity": 1000})
        await client.push("chat_message", "hi")

        events = _queued(session)
        assert [e.kind for e in events] == [
            StreamEventKind.STATE,
            StreamEventKind.STATE,
            StreamEventKind.PRICES,
            StreamEventKind.ACCOUNT,
            StreamEventKind.UNKNOWN_EVENT,
        ]
        assert events[2].name == "market_update"
        assert events[2].payload == {"prices": {"ETHUSD": 2050}}
        await session.close()

    @pytest.mark.asyncio
    async def test_only_first_packets_are_debug_logged(self, make_session, clients):
        session = make_session()
        await session.connect()
        await session.wait_connected(1.0)

        _queued(session)

        with capture_logs() as logs:
            for n in range(12):
                await clients[0].push("market_data", {"BTCUSD": 60000 + n})

        packet_logs = [e for e in logs if e["event"] == "STREAM_PACKET"]
        assert len(packet_logs) == 10
        assert packet_logs[0]["event_name"] == "market_data"
        assert len(packet_logs[0]["preview"]) <= 40
        assert len(_queued(session)) == 12
        await session.close()


# ---------------------------------------------------------------------------
# Disconnect grace window
# ---------------------------------------------------------------------------

class TestGraceWindow:

    @pytest.mark.asyncio
    async def test_flap_is_absorbed(self, make_session, clients):
        session = make_session()
        await session.connect()
        await session.wait_connected(1.0)
        _queued(session)

        await clients[0].drop()
        assert session.state == ConnectionState.SOFT_DISCONNECTED
        await clients[0].recover()
        await _settle(0.1)

        assert session.state == ConnectionState.CONNECTED
        kinds = [e.kind for e in _queued(session)]
        assert StreamEventKind.DISCONNECTED not in kinds
        await session.close()

    @pytest.mark.asyncio
    async def test_disconnect_confirmed_after_grace(self, make_session, clients):
        session = make_session()
        await session.connect()
        await session.wait_connected(1.0)
        _queued(session)

        await clients[0].drop("ping timeout")
        await _settle(0.1)

        assert session.state == ConnectionState.DISCONNECTED
        events = _queued(session)
        assert [e.kind for e in events] == [StreamEventKind.DISCONNECTED]
        assert events[0].payload == {"reason": "ping timeout"}
        await session.close()

    @pytest.mark.asyncio
    async def test_confirm_alive_cancels_pending_disconnect(self, make_session, clients):
        session = make_session()
        await session.connect()
        await session.wait_connected(1.0)
        _queued(session)

        await clients[0].drop()
        assert session.confirm_alive() is True
        await _settle(0.1)

        assert session.state == ConnectionState.CONNECTED
        assert _queued(session) == []
        await session.close()

    @pytest.mark.asyncio
    async def test_confirm_alive_noop_when_connected(self, make_session):
        session = make_session()
        await session.connect()
        await session.wait_connected(1.0)
        assert session.confirm_alive() is False
        await session.close()


# ---------------------------------------------------------------------------
# Inactivity watchdog
# ---------------------------------------------------------------------------

class TestWatchdog:

    @pytest.mark.asyncio
    async def test_silence_forces_redial(self, make_session, clients):
        session = make_session()
        await session.connect()
        await session.wait_connected(1.0)

        await _settle(0.35)

        client = clients[0]
        assert client.disconnect_calls >= 1
        assert len(client.connect_calls) >= 2
        await session.close()

    @pytest.mark.asyncio
    async def test_packets_keep_link_alive(self, make_session, clients):
        session = make_session()
        await session.connect()
        await session.wait_connected(1.0)

        for _ in range(5):
            await _settle(0.08)
            await clients[0].push("heartbeat", [])

        assert clients[0].disconnect_calls == 0
        await session.close()


# ---------------------------------------------------------------------------
# Hard reconnect
# ---------------------------------------------------------------------------

class TestHardReconnect:

    @pytest.mark.asyncio
    async def test_new_client_and_generation(self, make_session, clients):
        session = make_session()
        await session.connect()
        await session.wait_connected(1.0)

        generation = await session.hard_reconnect()
        await session.wait_connected(1.0)

        assert generation == 1 == session.generation
        assert len(clients) == 2
        assert clients[0].disconnect_calls == 1
        assert clients[1].connected
        await session.close()

    @pytest.mark.asyncio
    async def test_old_generation_callbacks_are_dropped(self, make_session, clients):
        session = make_session()
        await session.connect()
        await session.wait_connected(1.0)
        old = clients[0]

        await session.hard_reconnect()
        await session.wait_connected(1.0)
        _queued(session)

        await old.handlers["*"]("market_data", {"BTCUSD": 1})
        await old.handlers["disconnect"]("transport close")
        await clients[1].push("market_data", {"BTCUSD": 2})

        events = _queued(session)
        assert [(e.generation, e.payload) for e in events] == [(1, {"BTCUSD": 2})]
        assert session.state == ConnectionState.CONNECTED
        await session.close()

    @pytest.mark.asyncio
    async def test_check_generation(self, make_session):
        session = make_session()
        await session.connect()
        await session.wait_connected(1.0)
        stale = _queued(session)[0]

        await session.hard_reconnect()
        with pytest.raises(StaleGenerationError):
            session.check_generation(stale)
        await session.close()


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------

class TestOutbound:

    @pytest.mark.asyncio
    async def test_emit_while_disconnected_is_dropped(self, make_session):
        session = make_session()
        assert await session.start_engine() is False

    @pytest.mark.asyncio
    async def test_control_events(self, make_session, clients):
        session = make_session()
        await session.connect()
        await session.wait_connected(1.0)
        await _settle()
        client = clients[0]
        client.emitted.clear()

        assert await session.close_position("BTCUSD", 100, 0.1)
        assert await session.panic_close()
        assert await session.update_risk({"riskPerStack": 1.0})
        assert await session.stop_engine()

        assert client.emitted == [
            ("close_position", {"symbol": "BTCUSD", "ticket": 100, "volume": 0.1}),
            ("panic_close", None),
            ("kill_all", None),
            ("update_risk", {"riskPerStack": 1.0}),
            ("stop_engine", None),
        ]
        await session.close()

    @pytest.mark.asyncio
    async def test_close_ends_feed(self, make_session):
        session = make_session()
        await session.connect()
        await session.wait_connected(1.0)
        await session.close()

        events = [e async for e in session.events()]
        assert [e.kind for e in events] == [StreamEventKind.CONNECTED]
        assert session.state == ConnectionState.DISCONNECTED
