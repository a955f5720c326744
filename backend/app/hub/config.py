"""Runtime settings for the market data hub."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

DEFAULT_ALLOWED_ORIGINS: tuple[str, ...] = (
    "http://localhost:3000",
    "http://localhost:5173",
    "https://breakoutcharts.com",
    "https://www.breakoutcharts.com",
    "https://breakouts.vercel.app",
)

ALL_CHANNELS: tuple[str, ...] = ("trades", "quotes", "bars")
BARS_ONLY_CHANNELS: tuple[str, ...] = ("bars",)

_TRUTHY = {"1", "true", "yes", "on"}


def _number(env: Mapping[str, str], name: str, default, cast):
    """Read a non-negative number from ``env``; blank means ``default``."""
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


@dataclass(frozen=True, slots=True)
class HubSettings:
    """Immutable configuration, normally built once from the environment."""

    api_key: str = ""
    secret_key: str = ""
    feed: str = "sip"  # "sip" (consolidated) or "iex" (single exchange)
    bars_only: bool = False
    data_url: str = "https://data.alpaca.markets/v2"
    stream_base_url: str = "wss://stream.data.alpaca.markets/v2"
    poll_interval: float = 5.0
    stale_after: float = 10.0
    reconnect_delay: float = 5.0
    max_reconnect_attempts: int = 5
    allowed_origins: tuple[str, ...] = DEFAULT_ALLOWED_ORIGINS

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.secret_key)

    @property
    def stream_url(self) -> str:
        return f"{self.stream_base_url}/{self.feed}"

    @property
    def channels(self) -> tuple[str, ...]:
        """Upstream channels requested for every subscribed symbol."""
        return BARS_ONLY_CHANNELS if self.bars_only else ALL_CHANNELS

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> HubSettings:
        """Build settings from environment variables.

        Blank credentials are treated as missing, which makes the factory
        fall back to the simulator.
        """
        env = os.environ if environ is None else environ

        origins = env.get("HUB_ALLOWED_ORIGINS", "").strip()
        return cls(
            api_key=env.get("ALPACA_API_KEY", "").strip(),
            secret_key=env.get("ALPACA_SECRET_KEY", "").strip(),
            feed=env.get("ALPACA_FEED", "sip").strip().lower() or "sip",
            bars_only=env.get("HUB_BARS_ONLY", "").strip().lower() in _TRUTHY,
            poll_interval=_number(env, "HUB_POLL_INTERVAL", 5.0, float),
            stale_after=_number(env, "HUB_STALE_AFTER", 10.0, float),
            reconnect_delay=_number(env, "HUB_RECONNECT_DELAY", 5.0, float),
            max_reconnect_attempts=_number(env, "HUB_MAX_RECONNECT_ATTEMPTS", 5, int),
            allowed_origins=(
                tuple(o.strip() for o in origins.split(",") if o.strip())
                if origins
                else DEFAULT_ALLOWED_ORIGINS
            ),
        )
