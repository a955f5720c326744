"""Factory for wiring a market data hub."""

from __future__ import annotations

import logging

from .broadcaster import ClientBroadcaster
from .cache import PriceCache
from .config import HubSettings
from .hub import MarketDataHub
from .interface import LatestTradeSource, UpstreamFeed
from .poller import FallbackPoller
from .registry import SubscriptionRegistry
from .router import MessageRouter

logger = logging.getLogger(__name__)


def create_market_data_hub(
    settings: HubSettings | None = None,
    rest_client: LatestTradeSource | None = None,
) -> MarketDataHub:
    """Build a hub from settings.

    - Alpaca key and secret both set -> AlpacaStream + AlpacaRestClient
    - Otherwise -> SimulatedStream (GBM), which also serves latest trades

    Returns an unstarted hub. Caller must await hub.start().
    """
    settings = settings or HubSettings.from_env()

    cache = PriceCache()
    registry = SubscriptionRegistry()
    broadcaster = ClientBroadcaster(cache)
    router = MessageRouter(cache, broadcaster)

    feed: UpstreamFeed
    latest_trades: LatestTradeSource
    if settings.has_credentials:
        from .rest_client import AlpacaRestClient
        from .upstream import AlpacaStream

        logger.info(
            "Market data source: Alpaca %s feed (%s)",
            settings.feed,
            ", ".join(settings.channels),
        )
        feed = AlpacaStream(
            api_key=settings.api_key,
            secret_key=settings.secret_key,
            registry=registry,
            cache=cache,
            on_message=router.route,
            url=settings.stream_url,
            channels=settings.channels,
            max_reconnect_attempts=settings.max_reconnect_attempts,
            reconnect_delay=settings.reconnect_delay,
        )
        latest_trades = rest_client or AlpacaRestClient(
            api_key=settings.api_key,
            secret_key=settings.secret_key,
            base_url=settings.data_url,
            feed=settings.feed,
        )
    else:
        from .simulator import SimulatedStream

        logger.info("Market data source: GBM simulator (no Alpaca credentials)")
        simulated = SimulatedStream(registry, cache, router.route, channels=settings.channels)
        feed = latest_trades = simulated

    poller = FallbackPoller(
        registry,
        cache,
        broadcaster,
        latest_trades,
        interval=settings.poll_interval,
        stale_after=settings.stale_after,
    )
    return MarketDataHub(cache, registry, broadcaster, feed, poller, latest_trades)
