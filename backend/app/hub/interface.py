"""Abstract interfaces for the upstream stream and latest-trade lookups."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from enum import Enum

from .cache import PriceCache
from .config import ALL_CHANNELS
from .messages import AuthMessage, ErrorMessage, TradeMessage, UpstreamMessage
from .models import normalize_symbols
from .registry import SubscriptionRegistry

logger = logging.getLogger(__name__)

MessageHandler = Callable[[UpstreamMessage], Awaitable[None]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class UpstreamFeed(ABC):
    """Contract for the single streaming connection the hub owns.

    Implementations connect, authenticate and keep the session alive on
    their own; every parsed data message is handed to ``on_message`` in
    arrival order. Subscription bookkeeping is shared here so that the
    live stream and the simulator behave the same way.

    Lifecycle:
        feed = AlpacaStream(api_key, secret_key, registry, cache, router.route)
        await feed.open()
        # ... hub runs ...
        await feed.subscribe_symbols(["AAPL", "MSFT"])
        await feed.unsubscribe_symbols(["MSFT"])
        # ... app shutting down ...
        await feed.close()
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        cache: PriceCache,
        on_message: MessageHandler,
        channels: Iterable[str] = ALL_CHANNELS,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._on_message = on_message
        self._channels = tuple(channels)
        self._state = ConnectionState.DISCONNECTED

    @property
    def state(self) -> ConnectionState:
        return self._state

    @abstractmethod
    async def open(self) -> None:
        """Start connecting in the background. Returns without waiting for auth."""

    @abstractmethod
    async def close(self) -> None:
        """Close the session for good. Safe to call multiple times."""

    @abstractmethod
    async def _send(self, command: dict) -> None:
        """Deliver one control command to the provider."""

    async def subscribe_symbols(self, symbols: Iterable[str]) -> bool:
        """Subscribe upstream and record the symbols as subscribed.

        No-op (logged) unless the session is authenticated.
        """
        symbols = normalize_symbols(symbols)
        if not symbols:
            return False
        if self._state is not ConnectionState.AUTHENTICATED:
            logger.error(
                "Cannot subscribe to %s: upstream is %s", ", ".join(symbols), self._state.value
            )
            return False

        self._registry.add(symbols)
        logger.info("Subscribing to symbols: %s", ", ".join(symbols))
        await self._send(self._command("subscribe", symbols))
        return True

    async def unsubscribe_symbols(self, symbols: Iterable[str]) -> bool:
        """Unsubscribe upstream and drop cached state for the symbols.

        No-op unless the session is authenticated.
        """
        symbols = normalize_symbols(symbols)
        if not symbols or self._state is not ConnectionState.AUTHENTICATED:
            return False

        self._registry.discard(symbols)
        for symbol in symbols:
            self._cache.remove(symbol)
        logger.info("Unsubscribing from symbols: %s", ", ".join(symbols))
        await self._send(self._command("unsubscribe", symbols))
        return True

    async def dispatch(self, message: UpstreamMessage) -> None:
        """Handle control messages here; pass everything else on."""
        if isinstance(message, AuthMessage):
            if message.authenticated:
                await self._on_authenticated()
            else:
                logger.info("Upstream %s, awaiting authentication...", message.status)
        elif isinstance(message, ErrorMessage):
            # Provider rejections (bad keys, connection limit, bad feed) keep the socket open.
            logger.error("Upstream error %s: %s", message.code, message.text)
        else:
            await self._on_message(message)

    async def _on_authenticated(self) -> None:
        self._state = ConnectionState.AUTHENTICATED
        logger.info("Authenticated with upstream")
        if len(self._registry):
            await self.subscribe_symbols(self._registry.symbols())

    def _command(self, action: str, symbols: list[str]) -> dict:
        command: dict = {"action": action}
        for channel in self._channels:
            command[channel] = list(symbols)
        return command


class LatestTradeSource(ABC):
    """Request/response lookup of the most recent trade for a symbol."""

    @abstractmethod
    async def get_latest_trade(self, symbol: str) -> TradeMessage | None:
        """Return the latest trade, or None if the provider has none."""

    async def close(self) -> None:
        """Release any underlying resources."""
