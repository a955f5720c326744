"""REST fallback that keeps prices fresh when the trade stream goes quiet."""

from __future__ import annotations

import asyncio
import logging

from .broadcaster import ClientBroadcaster
from .cache import PriceCache
from .interface import LatestTradeSource
from .models import PriceSource
from .registry import SubscriptionRegistry

logger = logging.getLogger(__name__)


class FallbackPoller:
    """Polls the latest trade for symbols with no recent streaming trade.

    Every ``interval`` seconds, each subscribed symbol whose last streaming
    trade is older than ``stale_after`` seconds (or that never had one) is
    looked up via ``LatestTradeSource``. A changed price is written to the
    cache with source ``rest`` and broadcast as ``price_update``; an
    unchanged price is not rebroadcast.

    The hub runs the poller only while at least one client is connected.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        cache: PriceCache,
        broadcaster: ClientBroadcaster,
        source: LatestTradeSource,
        interval: float = 5.0,
        stale_after: float = 10.0,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._broadcaster = broadcaster
        self._source = source
        self._interval = interval
        self._stale_after = stale_after
        self._task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the polling task. No-op if it is already running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._poll_loop(), name="fallback-poller")
        logger.info("Fallback poller started: %.1fs interval", self._interval)

    async def stop(self) -> None:
        """Stop scheduling new polls. Lookups already in flight still land."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            logger.info("Fallback poller stopped")
        self._task = None

    async def shutdown(self) -> None:
        """Stop scheduling and cancel in-flight lookups (process exit)."""
        await self.stop()
        pending = list(self._inflight)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    # --- Internal ---

    async def _poll_loop(self) -> None:
        """First tick fires one interval after start."""
        while True:
            await asyncio.sleep(self._interval)
            tick = asyncio.create_task(self._poll_once(), name="fallback-poll")
            self._inflight.add(tick)
            tick.add_done_callback(self._inflight.discard)
            # Shielded so that stop() ends the schedule without abandoning this tick.
            await asyncio.shield(tick)

    async def _poll_once(self) -> None:
        """Refresh every stale symbol concurrently; failures stay per-symbol."""
        stale = [
            symbol
            for symbol in self._registry
            if self._cache.seconds_since_trade(symbol) > self._stale_after
        ]
        if not stale:
            return
        await asyncio.gather(*(self._refresh(symbol) for symbol in stale))

    async def _refresh(self, symbol: str) -> None:
        try:
            trade = await self._source.get_latest_trade(symbol)
        except Exception as e:
            # Retried naturally on the next tick.
            logger.error("Error fetching REST price for %s: %s", symbol, e)
            return

        if trade is None:
            return
        if symbol not in self._registry:
            logger.debug("Discarding REST price for %s: unsubscribed during fetch", symbol)
            return
        if self._cache.get_price(symbol) == trade.price:
            return

        update = self._cache.update_price(symbol, trade.price, PriceSource.REST, trade.timestamp)
        await self._broadcaster.broadcast(update.to_event())
        logger.info("REST update: %s @ $%.2f", symbol, trade.price)
