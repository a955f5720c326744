"""Tests for AlpacaStream (mocked transport)."""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import patch

import aiohttp
import pytest

from app.hub.interface import ConnectionState
from app.hub.messages import TradeMessage
from app.hub.upstream import AlpacaStream

AUTH_OK = [{"T": "success", "msg": "authenticated"}]
CONNECTED = [{"T": "success", "msg": "connected"}]


class FakeUpstreamSocket:
    """Replays text frames like aiohttp's ClientWebSocketResponse.

    With ``hold_open`` the socket stays open after the last frame until closed.
    """

    def __init__(self, frames, hold_open: bool = False) -> None:
        self._frames = [json.dumps(f) if not isinstance(f, str) else f for f in frames]
        self._hold_open = hold_open
        self._released = asyncio.Event()
        self.sent: list[dict] = []
        self.closed = False
        self.fail_sends_with: Exception | None = None

    async def send_json(self, data: dict) -> None:
        if self.fail_sends_with is not None:
            raise self.fail_sends_with
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True
        self._released.set()

    def exception(self):
        return None

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self._frames:
            yield SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=frame)
        if self._hold_open:
            await self._released.wait()


def connect_sequence(*outcomes):
    """Build a _connect replacement that returns/raises outcomes in order.

    Once outcomes run out every further attempt is refused.
    """
    remaining = list(outcomes)

    async def _connect():
        _connect.calls += 1
        outcome = remaining.pop(0) if remaining else aiohttp.ClientConnectionError("refused")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    _connect.calls = 0
    return _connect


@pytest.fixture
def received():
    return []


@pytest.fixture
def make_stream(registry, cache, received):
    async def on_message(message):
        received.append(message)

    def _make(**kwargs) -> AlpacaStream:
        kwargs.setdefault("reconnect_delay", 0.0)
        return AlpacaStream(
            api_key="test-key",
            secret_key="test-secret",
            registry=registry,
            cache=cache,
            on_message=on_message,
            url="wss://example.invalid/v2/sip",
            **kwargs,
        )

    return _make


@pytest.mark.asyncio
class TestAlpacaStream:
    async def test_session_authenticates_and_restores_subscriptions(self, make_stream, registry, received):
        registry.add(["AAPL"])
        trade = {"T": "t", "S": "AAPL", "t": "2024-03-01T15:00:00Z", "p": 190.0, "s": 5}
        ws = FakeUpstreamSocket([CONNECTED, AUTH_OK, [trade]])
        stream = make_stream(max_reconnect_attempts=0)

        with patch.object(stream, "_connect", connect_sequence(ws)):
            await stream.open()
            await stream.wait_closed()

        assert ws.sent[0] == {"action": "auth", "key": "test-key", "secret": "test-secret"}
        assert ws.sent[1] == {"action": "subscribe", "trades": ["AAPL"], "quotes": ["AAPL"], "bars": ["AAPL"]}
        assert len(received) == 1
        assert isinstance(received[0], TradeMessage)
        assert ws.closed

    async def test_reconnect_gives_up_after_max_attempts(self, make_stream):
        stream = make_stream(max_reconnect_attempts=5)
        connect = connect_sequence()

        with patch.object(stream, "_connect", connect):
            await stream.open()
            await stream.wait_closed()
            await asyncio.sleep(0.01)

        assert connect.calls == 6  # initial attempt + 5 retries
        assert stream.reconnect_attempts == 5
        assert stream.state is ConnectionState.CLOSED

    async def test_authentication_resets_attempt_counter(self, make_stream):
        refused = aiohttp.ClientConnectionError("refused")
        ws = FakeUpstreamSocket([AUTH_OK])
        stream = make_stream(max_reconnect_attempts=2)
        connect = connect_sequence(refused, refused, ws)

        with patch.object(stream, "_connect", connect):
            await stream.open()
            await stream.wait_closed()

        # 3 calls to reach the socket, then 2 fresh retries after it closed.
        assert connect.calls == 5
        assert stream.reconnect_attempts == 2

    async def test_provider_error_keeps_session_open(self, make_stream, registry):
        registry.add(["MSFT"])
        ws = FakeUpstreamSocket([[{"T": "error", "code": 406, "msg": "connection limit exceeded"}], AUTH_OK])
        stream = make_stream(max_reconnect_attempts=0)

        with patch.object(stream, "_connect", connect_sequence(ws)):
            await stream.open()
            await stream.wait_closed()

        assert [c["action"] for c in ws.sent] == ["auth", "subscribe"]

    async def test_state_while_connected(self, make_stream):
        ws = FakeUpstreamSocket([AUTH_OK], hold_open=True)
        stream = make_stream()

        with patch.object(stream, "_connect", connect_sequence(ws)):
            await stream.open()
            for _ in range(10):
                await asyncio.sleep(0)
            assert stream.state is ConnectionState.AUTHENTICATED

            await stream.close()

        assert ws.closed
        assert stream.state is ConnectionState.CLOSED

    async def test_close_stops_reconnecting(self, make_stream):
        ws = FakeUpstreamSocket([AUTH_OK], hold_open=True)
        stream = make_stream()
        connect = connect_sequence(ws)

        with patch.object(stream, "_connect", connect):
            await stream.open()
            await asyncio.sleep(0.01)
            await stream.close()
            await asyncio.sleep(0.01)

        assert connect.calls == 1
        await stream.close()  # Should not raise

    async def test_subscribe_while_authenticated_sends_command(self, make_stream, registry):
        ws = FakeUpstreamSocket([AUTH_OK], hold_open=True)
        stream = make_stream()

        with patch.object(stream, "_connect", connect_sequence(ws)):
            await stream.open()
            await asyncio.sleep(0.01)
            await stream.subscribe_symbols(["TSLA"])
            await stream.close()

        assert ws.sent[-1]["action"] == "subscribe"
        assert ws.sent[-1]["bars"] == ["TSLA"]
        assert "TSLA" in registry

    async def test_send_failure_is_logged_not_raised(self, make_stream, registry):
        ws = FakeUpstreamSocket([AUTH_OK], hold_open=True)
        stream = make_stream()

        with patch.object(stream, "_connect", connect_sequence(ws)):
            await stream.open()
            await asyncio.sleep(0.01)
            ws.fail_sends_with = ConnectionResetError("reset")
            assert await stream.subscribe_symbols(["TSLA"])
            await stream.close()

        assert "TSLA" in registry  # replayed after the next authentication

    async def test_bad_frames_ignored(self, make_stream, received):
        stream = make_stream()
        await stream._handle_frame("not json")
        await stream._handle_frame(json.dumps({"T": "t"}))
        await stream._handle_frame(json.dumps([{"T": "subscription", "bars": ["AAPL"]}]))
        assert len(received) == 1  # the unknown message is forwarded to the router, which ignores it

    async def test_malformed_item_keeps_session_and_rest_of_frame(self, make_stream, received):
        bad = {"T": "t", "S": "AAPL", "p": 1.0, "t": None}
        good = {"T": "t", "S": "AAPL", "t": "2024-03-01T15:00:00Z", "p": 190.0, "s": 5}
        ws = FakeUpstreamSocket([AUTH_OK, [bad, good]])
        stream = make_stream(max_reconnect_attempts=0)
        connect = connect_sequence(ws)

        with patch.object(stream, "_connect", connect):
            await stream.open()
            await stream.wait_closed()

        trades = [m for m in received if isinstance(m, TradeMessage)]
        assert [t.price for t in trades] == [190.0]
        assert connect.calls == 1
        assert stream.reconnect_attempts == 0

    async def test_handler_failure_isolated_per_item(self, registry, cache):
        delivered = []

        async def on_message(message):
            if message.price == 1.0:
                raise RuntimeError("router blew up")
            delivered.append(message)

        stream = AlpacaStream("k", "s", registry, cache, on_message, reconnect_delay=0.0)
        first = {"T": "t", "S": "AAPL", "t": "2024-03-01T15:00:00Z", "p": 1.0}
        second = {"T": "t", "S": "AAPL", "t": "2024-03-01T15:00:01Z", "p": 2.0}

        await stream._handle_frame(json.dumps([first, second]))  # Should not raise

        assert [m.price for m in delivered] == [2.0]

    async def test_open_is_idempotent(self, make_stream):
        ws = FakeUpstreamSocket([], hold_open=True)
        stream = make_stream()
        connect = connect_sequence(ws)

        with patch.object(stream, "_connect", connect):
            await stream.open()
            await stream.open()
            await asyncio.sleep(0.01)
            await stream.close()

        assert connect.calls == 1
