"""HTTP endpoints that proxy historical bars and the latest trade."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from .market_hours import is_regular_hours, most_recent_session_open
from .models import format_timestamp
from .rest_client import AlpacaAPIError, AlpacaRestClient

logger = logging.getLogger(__name__)

DAILY_LOOKBACK = timedelta(days=90)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_bars_router(
    client: AlpacaRestClient | None,
    clock: Callable[[], datetime] = _utcnow,
) -> APIRouter:
    """Create the bars router. With no client every endpoint answers 503."""
    router = APIRouter(prefix="/api/alpaca", tags=["bars"])

    def unavailable() -> JSONResponse:
        return JSONResponse(
            status_code=503,
            content={"error": "Historical data requires ALPACA_API_KEY and ALPACA_SECRET_KEY"},
        )

    def upstream_error(e: Exception) -> JSONResponse:
        if isinstance(e, AlpacaAPIError):
            return JSONResponse(status_code=e.status, content={"error": e.body})
        logger.exception("Bars request failed")
        return JSONResponse(status_code=500, content={"error": str(e)})

    @router.get("/{symbol}/daily")
    async def daily_bars(symbol: str):
        """Daily bars for the last 90 days."""
        if client is None:
            return unavailable()
        end = clock()
        try:
            bars = await client.get_bars(symbol.upper(), "1Day", end - DAILY_LOOKBACK, end)
        except Exception as e:
            return upstream_error(e)
        return {"data": [bar.to_dict() for bar in bars]}

    @router.get("/{symbol}/intraday")
    async def intraday_bars(symbol: str):
        """1-minute bars for the most recent session, regular hours only."""
        if client is None:
            return unavailable()
        end = clock()
        start = most_recent_session_open(end)
        logger.info("Fetching intraday data for %s from %s to %s", symbol, start, end)
        try:
            bars = await client.get_bars(symbol.upper(), "1Min", start, end)
        except Exception as e:
            return upstream_error(e)

        session_bars = [bar for bar in bars if is_regular_hours(bar.timestamp)]
        logger.info(
            "Filtered %d bars to %d market hours bars for %s",
            len(bars),
            len(session_bars),
            symbol,
        )
        return {"data": [bar.to_dict() for bar in session_bars]}

    @router.get("/{symbol}/latest")
    async def latest_trade(symbol: str):
        """Latest trade, useful for an initial price on page load."""
        if client is None:
            return unavailable()
        symbol = symbol.upper()
        try:
            trade = await client.get_latest_trade(symbol)
        except Exception as e:
            return upstream_error(e)
        if trade is None:
            return JSONResponse(status_code=404, content={"error": f"No trades for {symbol}"})
        return {
            "symbol": symbol,
            "price": trade.price,
            "size": trade.size,
            "timestamp": format_timestamp(trade.timestamp),
            "conditions": list(trade.conditions),
        }

    return router
