"""FastAPI application: market data hub WebSocket plus historical bars."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.hub import HubSettings, create_bars_router, create_market_data_hub, create_stream_router
from app.hub.rest_client import AlpacaRestClient

logger = logging.getLogger(__name__)


def create_app(settings: HubSettings | None = None) -> FastAPI:
    """Build the application around a single hub instance."""
    settings = settings or HubSettings.from_env()

    rest_client = None
    if settings.has_credentials:
        rest_client = AlpacaRestClient(
            api_key=settings.api_key,
            secret_key=settings.secret_key,
            base_url=settings.data_url,
            feed=settings.feed,
        )
    else:
        logger.warning("Alpaca credentials missing; streaming simulated data")

    hub = create_market_data_hub(settings, rest_client=rest_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await hub.start()
        try:
            yield
        finally:
            await hub.stop()

    app = FastAPI(title="Market Data Hub", lifespan=lifespan)
    app.state.hub = hub
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(create_stream_router(hub))
    app.include_router(create_bars_router(rest_client))

    @app.get("/api/health")
    async def health() -> dict:
        return {
            "upstream": hub.feed.state.value,
            "clients": hub.broadcaster.client_count,
            "symbols": hub.registry.symbols(),
        }

    return app


logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
