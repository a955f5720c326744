"""Alpaca market data WebSocket: the hub's single upstream connection."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable

import aiohttp

from .cache import PriceCache
from .config import ALL_CHANNELS
from .interface import ConnectionState, MessageHandler, UpstreamFeed
from .messages import parse_message
from .registry import SubscriptionRegistry

logger = logging.getLogger(__name__)


class AlpacaStream(UpstreamFeed):
    """UpstreamFeed backed by wss://stream.data.alpaca.markets/v2/{feed}.

    On transport open an auth command is sent; after the "authenticated"
    ack the reconnect counter resets and any symbols already in the
    registry are re-subscribed.

    When the transport drops, the connection is retried after a fixed
    ``reconnect_delay`` up to ``max_reconnect_attempts`` times. Once those
    are used up the stream stays closed until the process is restarted.
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        registry: SubscriptionRegistry,
        cache: PriceCache,
        on_message: MessageHandler,
        url: str = "wss://stream.data.alpaca.markets/v2/sip",
        channels: Iterable[str] = ALL_CHANNELS,
        max_reconnect_attempts: int = 5,
        reconnect_delay: float = 5.0,
    ) -> None:
        super().__init__(registry, cache, on_message, channels)
        self._api_key = api_key
        self._secret_key = secret_key
        self._url = url
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.reconnect_attempts = 0
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._task: asyncio.Task | None = None
        self._closing = False

    async def open(self) -> None:
        if self._task and not self._task.done():
            return
        self._closing = False
        self._task = asyncio.create_task(self._run(), name="alpaca-stream")
        logger.info("Initializing upstream connection to %s", self._url)

    async def close(self) -> None:
        self._closing = True
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._state = ConnectionState.CLOSED
        logger.info("Upstream stream closed")

    async def wait_closed(self) -> None:
        """Wait until the supervisor gives up or is cancelled."""
        if self._task is not None:
            await asyncio.shield(self._task)

    # --- Internal ---

    async def _run(self) -> None:
        """Supervise one session at a time, reconnecting with a fixed delay."""
        while True:
            try:
                await self._run_session()
            except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
                logger.error("Upstream connection failed: %s", e)
            except Exception:
                logger.exception("Upstream session crashed")
            self._state = ConnectionState.DISCONNECTED

            if self._closing:
                return
            if self.reconnect_attempts >= self.max_reconnect_attempts:
                self._state = ConnectionState.CLOSED
                logger.critical(
                    "Max reconnection attempts (%d) reached; upstream stays down until restart",
                    self.max_reconnect_attempts,
                )
                return

            self.reconnect_attempts += 1
            logger.info(
                "Attempting to reconnect... (%d/%d)",
                self.reconnect_attempts,
                self.max_reconnect_attempts,
            )
            await asyncio.sleep(self.reconnect_delay)

    async def _run_session(self) -> None:
        self._state = ConnectionState.CONNECTING
        ws = await self._connect()
        self._ws = ws
        try:
            logger.info("Connected to upstream, sending auth")
            self._state = ConnectionState.AUTHENTICATING
            await ws.send_json({"action": "auth", "key": self._api_key, "secret": self._secret_key})

            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error("Upstream WebSocket error: %s", ws.exception())
                    break
            logger.info("Upstream WebSocket closed")
        finally:
            self._ws = None
            if not ws.closed:
                await ws.close()

    async def _connect(self) -> aiohttp.ClientWebSocketResponse:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return await self._session.ws_connect(self._url, heartbeat=30.0)

    async def _handle_frame(self, raw: str) -> None:
        """Process one text frame: a JSON array of provider messages."""
        try:
            items = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Discarding undecodable upstream frame: %s", e)
            return
        if not isinstance(items, list):
            logger.debug("Ignoring non-array upstream frame: %r", items)
            return
        for item in items:
            # One bad item must not drop the rest of the frame or the session.
            try:
                await self.dispatch(parse_message(item))
            except Exception:
                logger.exception("Failed to handle upstream message %r", item)

    async def _on_authenticated(self) -> None:
        self.reconnect_attempts = 0
        await super()._on_authenticated()

    async def _send(self, command: dict) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            logger.error("Upstream WebSocket not connected; dropping %s command", command["action"])
            return
        try:
            await ws.send_json(command)
        except (aiohttp.ClientError, ConnectionResetError) as e:
            # The registry already reflects the change; it is replayed after re-auth.
            logger.error("Failed to send %s command: %s", command["action"], e)
