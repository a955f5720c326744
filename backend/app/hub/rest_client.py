"""Alpaca market data REST client (latest trades and historical bars)."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import aiohttp

from .interface import LatestTradeSource
from .messages import TradeMessage, parse_bar, parse_trade
from .models import Bar, format_timestamp

logger = logging.getLogger(__name__)


class AlpacaAPIError(Exception):
    """Non-2xx response from the REST API. Carries the upstream body verbatim."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"Alpaca API returned {status}: {body}")
        self.status = status
        self.body = body


class AlpacaRestClient(LatestTradeSource):
    """Thin async wrapper over https://data.alpaca.markets/v2.

    The aiohttp session is created lazily on first use and shared by all
    requests until ``close()``.
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        base_url: str = "https://data.alpaca.markets/v2",
        feed: str = "sip",
        timeout: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self._secret_key = secret_key
        self._base_url = base_url.rstrip("/")
        self.feed = feed
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    async def get_latest_trade(self, symbol: str) -> TradeMessage | None:
        data = await self._get_json(f"/stocks/{symbol}/trades/latest", {"feed": self.feed})
        trade = data.get("trade")
        if not trade:
            return None
        return parse_trade(symbol, trade)

    async def get_bars(
        self,
        symbol: str,
        timeframe: str,
        start: datetime,
        end: datetime,
        limit: int = 1000,
    ) -> list[Bar]:
        """Fetch raw-adjusted bars for ``symbol`` between ``start`` and ``end``."""
        params = {
            "start": format_timestamp(start),
            "end": format_timestamp(end),
            "timeframe": timeframe,
            "limit": str(limit),
            "adjustment": "raw",
            "feed": self.feed,
        }
        data = await self._get_json(f"/stocks/{symbol}/bars", params)
        return [parse_bar(symbol, raw) for raw in data.get("bars") or []]

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _get_json(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={
                    "APCA-API-KEY-ID": self._api_key,
                    "APCA-API-SECRET-KEY": self._secret_key,
                },
            )
        url = f"{self._base_url}{path}"
        async with self._session.get(url, params=params) as response:
            if response.status >= 400:
                raise AlpacaAPIError(response.status, await response.text())
            return await response.json()
