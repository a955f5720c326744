"""Provider-native upstream messages, parsed into a closed set of kinds.

The stream delivers JSON arrays of objects discriminated by ``T``:

    b        minute bar       {S, t, o, h, l, c, v}
    t        trade            {S, t, p, s, c}
    q        quote            {S, t, bp, bs, ap, as}
    success  control ack      {msg: "connected" | "authenticated"}
    error    provider error   {code, msg}

Anything else (subscription acks, corrections, statuses) is ``UnknownMessage``
and is ignored by the router.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

from .models import Bar, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BarMessage:
    bar: Bar

    @property
    def symbol(self) -> str:
        return self.bar.symbol


@dataclass(frozen=True, slots=True)
class TradeMessage:
    symbol: str
    price: float
    size: float
    timestamp: datetime
    conditions: tuple[str, ...] = ()

    def to_event(self) -> dict:
        return {
            "type": "trade",
            "symbol": self.symbol,
            "data": {
                "price": self.price,
                "size": self.size,
                "timestamp": format_timestamp(self.timestamp),
                "conditions": list(self.conditions),
            },
        }


@dataclass(frozen=True, slots=True)
class QuoteMessage:
    symbol: str
    bid_price: float
    bid_size: float
    ask_price: float
    ask_size: float
    timestamp: datetime

    @property
    def mid_price(self) -> float:
        return (self.bid_price + self.ask_price) / 2

    def to_event(self) -> dict:
        return {
            "type": "quote",
            "symbol": self.symbol,
            "data": {
                "bidPrice": self.bid_price,
                "bidSize": self.bid_size,
                "askPrice": self.ask_price,
                "askSize": self.ask_size,
                "timestamp": format_timestamp(self.timestamp),
            },
        }


@dataclass(frozen=True, slots=True)
class AuthMessage:
    status: str  # "connected" or "authenticated"

    @property
    def authenticated(self) -> bool:
        return self.status == "authenticated"


@dataclass(frozen=True, slots=True)
class ErrorMessage:
    code: int | None
    text: str


@dataclass(frozen=True, slots=True)
class UnknownMessage:
    raw: Any = field(default=None, compare=False)


UpstreamMessage = Union[BarMessage, TradeMessage, QuoteMessage, AuthMessage, ErrorMessage, UnknownMessage]


def parse_trade(symbol: str, raw: dict) -> TradeMessage:
    """Build a trade from a stream frame or a REST ``trade`` object."""
    return TradeMessage(
        symbol=symbol,
        price=float(raw["p"]),
        size=float(raw.get("s", 0)),
        timestamp=parse_timestamp(raw["t"]),
        conditions=tuple(raw.get("c") or ()),
    )


def parse_bar(symbol: str, raw: dict) -> Bar:
    """Build a bar from a stream frame or a REST ``bars`` entry."""
    return Bar(
        symbol=symbol,
        timestamp=parse_timestamp(raw["t"]),
        open=float(raw["o"]),
        high=float(raw["h"]),
        low=float(raw["l"]),
        close=float(raw["c"]),
        volume=float(raw["v"]),
    )


def parse_message(raw: Any) -> UpstreamMessage:
    """Classify one element of an upstream frame. Never raises."""
    if not isinstance(raw, dict):
        return UnknownMessage(raw)

    kind = raw.get("T")
    try:
        if kind == "b":
            return BarMessage(parse_bar(raw["S"], raw))
        if kind == "t":
            return parse_trade(raw["S"], raw)
        if kind == "q":
            return QuoteMessage(
                symbol=raw["S"],
                bid_price=float(raw["bp"]),
                bid_size=float(raw.get("bs", 0)),
                ask_price=float(raw["ap"]),
                ask_size=float(raw.get("as", 0)),
                timestamp=parse_timestamp(raw["t"]),
            )
        if kind == "success":
            return AuthMessage(str(raw.get("msg", "")))
        if kind == "error":
            return ErrorMessage(code=raw.get("code"), text=str(raw.get("msg", "")))
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning("Malformed upstream message %r: %s", raw, e)
    return UnknownMessage(raw)
