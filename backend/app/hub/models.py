"""Data models for cached market state and client-facing events."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, field_validator

# Provider timestamps carry up to nanosecond precision; datetime holds microseconds.
_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def parse_timestamp(value: str | int | float | datetime) -> datetime:
    """Normalize an RFC 3339 string or Unix seconds to an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        text = _FRACTION_RE.sub(r".\1", text)
        dt = datetime.fromisoformat(text)
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value).__name__}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """ISO 8601 UTC with millisecond precision, e.g. 2024-03-01T14:30:00.000Z."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class PriceSource(str, Enum):
    """Where a cached price came from."""

    TRADE = "trade"
    QUOTE = "quote"
    REST = "rest"
    CACHED = "cached"


@dataclass(frozen=True, slots=True)
class Bar:
    """One OHLCV bar for a symbol."""

    symbol: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> dict:
        """Chart-ready payload used by both the stream and the bars endpoints."""
        return {
            "x": format_timestamp(self.timestamp),
            "o": self.open,
            "h": self.high,
            "l": self.low,
            "c": self.close,
            "volume": self.volume,
        }

    def to_event(self) -> dict:
        return {"type": "bar", "symbol": self.symbol, "data": self.to_dict()}


@dataclass(frozen=True, slots=True)
class PriceUpdate:
    """Latest known price for a symbol and where it came from."""

    symbol: str
    price: float
    source: PriceSource
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "price": self.price,
            "timestamp": format_timestamp(self.timestamp),
            "source": self.source.value,
        }

    def to_event(self) -> dict:
        return {"type": "price_update", "symbol": self.symbol, "data": self.to_dict()}


class SubscribeRequest(BaseModel):
    """Client -> hub subscription intent: the complete desired symbol set."""

    type: str
    symbols: list[str]

    @field_validator("symbols")
    @classmethod
    def _normalize_symbols(cls, value: list[str]) -> list[str]:
        return normalize_symbols(value)


def normalize_symbols(symbols) -> list[str]:
    """Upper-case, strip, drop blanks and duplicates; keeps first-seen order."""
    seen: dict[str, None] = {}
    for symbol in symbols:
        cleaned = str(symbol).upper().strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)
