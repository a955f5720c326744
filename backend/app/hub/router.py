"""Routes parsed upstream messages into the cache and out to clients."""

from __future__ import annotations

import logging

from .broadcaster import ClientBroadcaster
from .cache import PriceCache
from .market_hours import is_regular_hours
from .messages import (
    AuthMessage,
    BarMessage,
    ErrorMessage,
    QuoteMessage,
    TradeMessage,
    UnknownMessage,
    UpstreamMessage,
)
from .models import PriceSource

logger = logging.getLogger(__name__)


class MessageRouter:
    """Applies each data message to the cache, then broadcasts it.

    Trades are only broadcast during regular trading hours; quotes and bars
    are always broadcast. The cache is updated regardless of the filter.
    Auth and error messages belong to the upstream feed and are ignored here.
    """

    def __init__(self, cache: PriceCache, broadcaster: ClientBroadcaster) -> None:
        self._cache = cache
        self._broadcaster = broadcaster

    async def route(self, message: UpstreamMessage) -> None:
        if isinstance(message, BarMessage):
            await self._on_bar(message)
        elif isinstance(message, TradeMessage):
            await self._on_trade(message)
        elif isinstance(message, QuoteMessage):
            await self._on_quote(message)
        elif isinstance(message, (AuthMessage, ErrorMessage)):
            pass
        elif isinstance(message, UnknownMessage):
            logger.debug("Ignoring upstream message: %r", message.raw)
        else:
            raise TypeError(f"Unroutable message type: {type(message).__name__}")

    async def _on_bar(self, message: BarMessage) -> None:
        bar = message.bar
        self._cache.update_bar(bar)
        self._cache.update_price(bar.symbol, bar.close, PriceSource.TRADE, bar.timestamp)
        await self._broadcaster.broadcast(bar.to_event())

    async def _on_trade(self, message: TradeMessage) -> None:
        self._cache.record_trade(message.symbol)
        self._cache.update_price(message.symbol, message.price, PriceSource.TRADE, message.timestamp)
        if is_regular_hours(message.timestamp):
            await self._broadcaster.broadcast(message.to_event())

    async def _on_quote(self, message: QuoteMessage) -> None:
        self._cache.update_price(message.symbol, message.mid_price, PriceSource.QUOTE, message.timestamp)
        await self._broadcaster.broadcast(message.to_event())
