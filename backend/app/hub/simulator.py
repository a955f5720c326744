"""GBM-driven stand-in for the upstream stream, used without credentials."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

import numpy as np

from .cache import PriceCache
from .config import ALL_CHANNELS
from .interface import ConnectionState, LatestTradeSource, MessageHandler, UpstreamFeed
from .messages import TradeMessage, parse_message, parse_trade
from .models import format_timestamp
from .registry import SubscriptionRegistry

logger = logging.getLogger(__name__)

# symbol -> (starting price, annualized volatility)
SEED_PARAMS: dict[str, tuple[float, float]] = {
    "AAPL": (225.0, 0.24),
    "MSFT": (430.0, 0.21),
    "NVDA": (125.0, 0.48),
    "AMZN": (195.0, 0.30),
    "META": (560.0, 0.33),
    "GOOGL": (165.0, 0.27),
    "TSLA": (240.0, 0.55),
    "SPY": (560.0, 0.14),
    "QQQ": (480.0, 0.19),
}
DEFAULT_VOLATILITY = 0.30
DRIFT = 0.05
HALF_SPREAD_BPS = 2.0


class GBMSimulator:
    """Geometric Brownian Motion price paths, one per symbol.

        S(t+dt) = S(t) * exp((mu - sigma^2/2) * dt + sigma * sqrt(dt) * Z)

    ``dt`` is the tick length as a fraction of a trading year
    (252 days * 6.5 hours), so moves are tiny per tick.
    """

    TRADING_SECONDS_PER_YEAR = 252 * 6.5 * 3600

    def __init__(self, tick_seconds: float = 0.5, seed: int | None = None) -> None:
        self._dt = tick_seconds / self.TRADING_SECONDS_PER_YEAR
        self._rng = np.random.default_rng(seed)
        self._prices: dict[str, float] = {}
        self._sigmas: dict[str, float] = {}

    def add_symbol(self, symbol: str) -> None:
        if symbol in self._prices:
            return
        if symbol in SEED_PARAMS:
            price, sigma = SEED_PARAMS[symbol]
        else:
            price, sigma = float(self._rng.uniform(20.0, 400.0)), DEFAULT_VOLATILITY
        self._prices[symbol] = price
        self._sigmas[symbol] = sigma

    def remove_symbol(self, symbol: str) -> None:
        self._prices.pop(symbol, None)
        self._sigmas.pop(symbol, None)

    def price(self, symbol: str) -> float | None:
        return self._prices.get(symbol)

    def symbols(self) -> list[str]:
        return list(self._prices)

    def draw_size(self, low: int, high: int) -> float:
        return float(self._rng.integers(low, high))

    def step(self) -> dict[str, float]:
        """Advance every symbol by one tick. Returns {symbol: new_price}."""
        symbols = list(self._prices)
        if not symbols:
            return {}

        sigma = np.array([self._sigmas[s] for s in symbols])
        z = self._rng.standard_normal(len(symbols))
        growth = np.exp((DRIFT - 0.5 * sigma**2) * self._dt + sigma * math.sqrt(self._dt) * z)

        result: dict[str, float] = {}
        for symbol, factor in zip(symbols, growth):
            self._prices[symbol] *= float(factor)
            result[symbol] = round(self._prices[symbol], 2)
        return result


@dataclass(slots=True)
class _MinuteBar:
    start: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    def add(self, price: float, size: float) -> None:
        self.high = max(self.high, price)
        self.low = min(self.low, price)
        self.close = price
        self.volume += size


class SimulatedStream(UpstreamFeed, LatestTradeSource):
    """UpstreamFeed that fabricates provider-native trade/quote/bar frames.

    Frames go through ``parse_message`` and ``dispatch`` exactly like
    frames off the real socket, including the connected/authenticated
    handshake. It also answers latest-trade lookups for the poller.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        cache: PriceCache,
        on_message: MessageHandler,
        channels: Iterable[str] = ALL_CHANNELS,
        tick_interval: float = 0.5,
        seed: int | None = None,
    ) -> None:
        super().__init__(registry, cache, on_message, channels)
        self._interval = tick_interval
        self._sim = GBMSimulator(tick_seconds=tick_interval, seed=seed)
        self._bars: dict[str, _MinuteBar] = {}
        self._last_trades: dict[str, TradeMessage] = {}
        self._task: asyncio.Task | None = None

    async def open(self) -> None:
        if self._task and not self._task.done():
            return
        self._state = ConnectionState.CONNECTING
        self._task = asyncio.create_task(self._run_loop(), name="simulated-stream")
        logger.info("Simulated upstream started (%.2fs ticks)", self._interval)

    async def close(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._state = ConnectionState.CLOSED
        logger.info("Simulated upstream stopped")

    async def get_latest_trade(self, symbol: str) -> TradeMessage | None:
        return self._last_trades.get(symbol)

    async def _send(self, command: dict) -> None:
        symbols = next((command[c] for c in self._channels if c in command), [])
        for symbol in symbols:
            if command["action"] == "subscribe":
                self._sim.add_symbol(symbol)
            else:
                self._sim.remove_symbol(symbol)
                self._bars.pop(symbol, None)
                self._last_trades.pop(symbol, None)
        logger.debug("Simulated upstream %s: %s", command["action"], symbols)

    async def _run_loop(self) -> None:
        self._state = ConnectionState.AUTHENTICATING
        await self._emit([{"T": "success", "msg": "connected"}])
        await self._emit([{"T": "success", "msg": "authenticated"}])
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("Simulator tick failed")

    async def tick(self, now: datetime | None = None) -> None:
        """Generate one round of frames for every simulated symbol."""
        now = now or datetime.now(timezone.utc)
        stamp = format_timestamp(now)
        frames: list[dict] = []

        for symbol, price in self._sim.step().items():
            size = self._sim.draw_size(1, 500)
            half_spread = round(price * HALF_SPREAD_BPS / 10_000, 2) or 0.01
            trade = {"T": "t", "S": symbol, "p": price, "s": size, "t": stamp, "c": ["@"]}
            self._last_trades[symbol] = parse_trade(symbol, trade)

            if "trades" in self._channels:
                frames.append(trade)
            if "quotes" in self._channels:
                frames.append(
                    {
                        "T": "q",
                        "S": symbol,
                        "bp": round(price - half_spread, 2),
                        "bs": self._sim.draw_size(1, 20),
                        "ap": round(price + half_spread, 2),
                        "as": self._sim.draw_size(1, 20),
                        "t": stamp,
                    }
                )
            finished = self._roll_bar(symbol, price, size, now)
            if finished is not None and "bars" in self._channels:
                frames.append(finished)

        if frames:
            await self._emit(frames)

    def _roll_bar(self, symbol: str, price: float, size: float, now: datetime) -> dict | None:
        """Fold a trade into the current minute; return the previous minute's bar frame if it closed."""
        minute = now.replace(second=0, microsecond=0)
        current = self._bars.get(symbol)
        if current is not None and current.start == minute:
            current.add(price, size)
            return None

        self._bars[symbol] = _MinuteBar(minute, price, price, price, price, size)
        if current is None:
            return None
        return {
            "T": "b",
            "S": symbol,
            "t": format_timestamp(current.start),
            "o": current.open,
            "h": current.high,
            "l": current.low,
            "c": current.close,
            "v": current.volume,
        }

    async def _emit(self, frames: list[dict]) -> None:
        for item in frames:
            await self.dispatch(parse_message(item))
