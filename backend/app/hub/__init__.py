"""Market data hub subsystem.

Public API:
    MarketDataHub          - One upstream stream fanned out to many clients
    HubSettings            - Environment-driven configuration
    PriceCache             - Latest bar / price / trade time per symbol
    SubscriptionRegistry   - Symbols currently subscribed upstream
    UpstreamFeed           - Abstract interface for the streaming source
    create_market_data_hub - Factory that selects Alpaca or the simulator
    create_stream_router   - FastAPI router factory for the WebSocket endpoint
    create_bars_router     - FastAPI router factory for historical bars
"""

from .bars import create_bars_router
from .cache import PriceCache
from .config import HubSettings
from .factory import create_market_data_hub
from .hub import MarketDataHub
from .interface import ConnectionState, UpstreamFeed
from .registry import SubscriptionRegistry
from .stream import create_stream_router

__all__ = [
    "ConnectionState",
    "HubSettings",
    "MarketDataHub",
    "PriceCache",
    "SubscriptionRegistry",
    "UpstreamFeed",
    "create_bars_router",
    "create_market_data_hub",
    "create_stream_router",
]
