"""Fakes and fixtures for hub tests.

``FakeClient`` stands in for a Starlette WebSocket, ``RecordingFeed`` for the
upstream stream (it records commands instead of sending them) and
``StubTradeSource`` for the REST latest-trade lookup.
"""

import json
from datetime import datetime, timezone

import pytest
from starlette.websockets import WebSocketState

from app.hub.broadcaster import ClientBroadcaster
from app.hub.cache import PriceCache
from app.hub.config import ALL_CHANNELS
from app.hub.hub import MarketDataHub
from app.hub.interface import ConnectionState, LatestTradeSource, UpstreamFeed
from app.hub.messages import TradeMessage
from app.hub.poller import FallbackPoller
from app.hub.registry import SubscriptionRegistry
from app.hub.router import MessageRouter

# Friday 2024-03-01; EST (UTC-5) applies.
IN_HOURS = datetime(2024, 3, 1, 15, 0, tzinfo=timezone.utc)  # 10:00 ET
AFTER_HOURS = datetime(2024, 3, 1, 22, 0, tzinfo=timezone.utc)  # 17:00 ET


class FakeClient:
    """Minimal WebSocket double: records sent text, can be closed or broken."""

    def __init__(self) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[str] = []
        self.fail_with: Exception | None = None

    async def send_text(self, message: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(message)

    def close(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED

    def events(self) -> list[dict]:
        return [json.loads(m) for m in self.sent]

    def events_of(self, kind: str) -> list[dict]:
        return [e for e in self.events() if e["type"] == kind]


class RecordingFeed(UpstreamFeed):
    """UpstreamFeed that starts authenticated and records every command."""

    def __init__(self, registry, cache, on_message=None, channels=ALL_CHANNELS) -> None:
        async def _ignore(message):
            return None

        super().__init__(registry, cache, on_message or _ignore, channels)
        self._state = ConnectionState.AUTHENTICATED
        self.commands: list[dict] = []
        self.opened = False

    async def open(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self._state = ConnectionState.CLOSED

    async def _send(self, command: dict) -> None:
        self.commands.append(command)

    def set_state(self, state: ConnectionState) -> None:
        self._state = state

    def actions(self) -> list[str]:
        return [c["action"] for c in self.commands]


class StubTradeSource(LatestTradeSource):
    """Latest-trade lookup with canned answers and per-symbol failures."""

    def __init__(self) -> None:
        self.trades: dict[str, TradeMessage] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[str] = []
        self.closed = False

    async def get_latest_trade(self, symbol: str) -> TradeMessage | None:
        self.calls.append(symbol)
        if symbol in self.errors:
            raise self.errors[symbol]
        return self.trades.get(symbol)

    async def close(self) -> None:
        self.closed = True


def _build_hub(poll_interval: float = 60.0, stale_after: float = 10.0) -> MarketDataHub:
    cache = PriceCache()
    registry = SubscriptionRegistry()
    broadcaster = ClientBroadcaster(cache)
    router = MessageRouter(cache, broadcaster)
    feed = RecordingFeed(registry, cache, router.route)
    source = StubTradeSource()
    poller = FallbackPoller(
        registry, cache, broadcaster, source, interval=poll_interval, stale_after=stale_after
    )
    return MarketDataHub(cache, registry, broadcaster, feed, poller, source)


@pytest.fixture
def cache():
    return PriceCache()


@pytest.fixture
def registry():
    return SubscriptionRegistry()


@pytest.fixture
def broadcaster(cache):
    return ClientBroadcaster(cache)


@pytest.fixture
def make_client():
    """Factory for FakeClient WebSocket doubles."""
    return FakeClient


@pytest.fixture
def make_feed():
    """Factory for RecordingFeed: make_feed(registry, cache, on_message=None)."""
    return RecordingFeed


@pytest.fixture
def trade_source():
    return StubTradeSource()


@pytest.fixture
def make_trade():
    def _make(symbol: str, price: float, timestamp: datetime = IN_HOURS) -> TradeMessage:
        return TradeMessage(symbol=symbol, price=price, size=100.0, timestamp=timestamp)

    return _make


@pytest.fixture
def hub_factory():
    """Hub wired with a RecordingFeed and StubTradeSource."""
    return _build_hub


@pytest.fixture
def hub():
    return _build_hub()
