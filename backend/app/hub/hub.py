"""The market data hub: one upstream stream fanned out to many clients."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from fastapi import WebSocket
from pydantic import ValidationError

from .broadcaster import ClientBroadcaster
from .cache import PriceCache
from .interface import LatestTradeSource, UpstreamFeed
from .models import SubscribeRequest
from .poller import FallbackPoller
from .registry import SubscriptionDelta, SubscriptionRegistry

logger = logging.getLogger(__name__)


class MarketDataHub:
    """Long-lived owner of the upstream feed, caches and client set.

    Built once at startup (see ``create_market_data_hub``) and handed to
    the WebSocket and HTTP layers. The upstream connection stays up no
    matter how many clients are connected; the fallback poller runs only
    while the client count is above zero.

    Subscriptions use a whole-set model: each client ``subscribe`` message
    replaces the desired symbol set for the whole hub. A second client
    asking for {MSFT} therefore unsubscribes the {AAPL} an earlier client
    asked for.
    """

    def __init__(
        self,
        cache: PriceCache,
        registry: SubscriptionRegistry,
        broadcaster: ClientBroadcaster,
        feed: UpstreamFeed,
        poller: FallbackPoller,
        latest_trades: LatestTradeSource,
    ) -> None:
        self.cache = cache
        self.registry = registry
        self.broadcaster = broadcaster
        self.feed = feed
        self.poller = poller
        self.latest_trades = latest_trades
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        await self.feed.open()
        logger.info("Market data hub started with a single upstream connection")

    async def stop(self) -> None:
        """Tear everything down. Safe to call multiple times."""
        await self.poller.shutdown()
        await self.feed.close()
        await self.latest_trades.close()
        self._started = False
        logger.info("Market data hub stopped")

    # --- Clients ---

    async def add_client(self, client: WebSocket) -> None:
        count = await self.broadcaster.add_client(client)
        if count == 1:
            self.poller.start()

    async def remove_client(self, client: WebSocket) -> None:
        if self.broadcaster.remove_client(client) == 0:
            await self.poller.stop()

    async def handle_client_message(self, client: WebSocket, raw: str) -> None:
        """Parse one inbound client message. Bad input is logged, never raised."""
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Error processing client message: %s", e)
            return
        if not isinstance(payload, dict) or payload.get("type") != "subscribe":
            logger.debug("Ignoring client message: %r", payload)
            return
        try:
            request = SubscribeRequest.model_validate(payload)
        except ValidationError as e:
            logger.warning("Invalid subscribe message: %s", e.errors())
            return

        await self.reconcile(request.symbols)
        await self.broadcaster.send_to(client, {"type": "subscribed", "symbols": request.symbols})

    # --- Subscriptions ---

    async def reconcile(self, requested: Iterable[str]) -> SubscriptionDelta:
        """Make the upstream subscription match ``requested`` exactly.

        Only non-empty deltas reach the feed, so repeating the same request
        produces no upstream traffic.
        """
        delta = self.registry.diff(requested)
        if delta.to_subscribe:
            await self.feed.subscribe_symbols(delta.to_subscribe)
        if delta.to_unsubscribe:
            await self.feed.unsubscribe_symbols(delta.to_unsubscribe)
        if self.broadcaster.client_count > 0:
            self.poller.start()
        return delta
