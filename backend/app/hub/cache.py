"""In-memory cache of the latest bar, price and trade time per symbol."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timezone

from .models import Bar, PriceSource, PriceUpdate


class PriceCache:
    """Latest known market state for every hub-subscribed symbol.

    Writers: the message router (stream frames) and the fallback poller.
    Readers: the broadcaster (snapshots) and the poller (staleness checks).

    Everything runs on one event loop and no method awaits, so no locking is
    needed. Entries are only dropped by ``remove()`` on unsubscribe.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._bars: dict[str, Bar] = {}
        self._prices: dict[str, PriceUpdate] = {}
        self._last_trade: dict[str, float] = {}  # Unix seconds at receipt
        self._clock = clock

    def update_bar(self, bar: Bar) -> None:
        """Store a bar, overwriting any previous one for the symbol."""
        self._bars[bar.symbol] = bar

    def update_price(
        self,
        symbol: str,
        price: float,
        source: PriceSource,
        timestamp: datetime | None = None,
    ) -> PriceUpdate:
        """Record a new price for a symbol. Returns the created PriceUpdate."""
        update = PriceUpdate(
            symbol=symbol,
            price=price,
            source=source,
            timestamp=timestamp or datetime.now(timezone.utc),
        )
        self._prices[symbol] = update
        return update

    def record_trade(self, symbol: str, received_at: float | None = None) -> None:
        """Mark that a streaming trade for ``symbol`` just arrived."""
        self._last_trade[symbol] = self._clock() if received_at is None else received_at

    def get_bar(self, symbol: str) -> Bar | None:
        return self._bars.get(symbol)

    def get(self, symbol: str) -> PriceUpdate | None:
        """Get the latest price update for a symbol, or None if unknown."""
        return self._prices.get(symbol)

    def get_price(self, symbol: str) -> float | None:
        """Convenience: get just the price float, or None."""
        update = self._prices.get(symbol)
        return update.price if update else None

    def last_trade_time(self, symbol: str) -> float | None:
        return self._last_trade.get(symbol)

    def seconds_since_trade(self, symbol: str) -> float:
        """Age of the last streaming trade; infinite if none was ever seen."""
        last = self._last_trade.get(symbol)
        if last is None:
            return float("inf")
        return self._clock() - last

    def snapshot(self) -> list[dict]:
        """Events that bring a newly connected client up to date.

        Every cached bar, plus a ``cached`` price_update for symbols that
        have a price but no bar yet.
        """
        events = [bar.to_event() for bar in self._bars.values()]
        for symbol, update in self._prices.items():
            if symbol not in self._bars:
                cached = PriceUpdate(symbol=symbol, price=update.price, source=PriceSource.CACHED)
                events.append(cached.to_event())
        return events

    def remove(self, symbol: str) -> None:
        """Forget everything about a symbol (called on unsubscribe)."""
        self._bars.pop(symbol, None)
        self._prices.pop(symbol, None)
        self._last_trade.pop(symbol, None)

    def __len__(self) -> int:
        return len(self._bars.keys() | self._prices.keys())

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._bars or symbol in self._prices
