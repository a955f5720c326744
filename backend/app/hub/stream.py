"""WebSocket endpoint that attaches downstream clients to the hub."""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .hub import MarketDataHub

logger = logging.getLogger(__name__)


def _frame_text(message: dict) -> str | None:
    """Text of a text or UTF-8 binary frame; None if it has neither."""
    if message.get("text") is not None:
        return message["text"]
    data = message.get("bytes")
    if data is None:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def create_stream_router(hub: MarketDataHub) -> APIRouter:
    """Create the WebSocket router with a reference to the hub.

    This factory pattern lets us inject the hub without globals.
    """
    router = APIRouter(tags=["streaming"])

    @router.websocket("/ws")
    async def stream_market_data(websocket: WebSocket) -> None:
        """Duplex market data stream.

        On connect the client gets a ``snapshot`` of cached bars/prices,
        then every bar, trade, quote and price_update the hub broadcasts.
        The client may send ``{"type": "subscribe", "symbols": [...]}`` at
        any time and receives a ``subscribed`` ack.
        """
        await websocket.accept()
        client_ip = websocket.client.host if websocket.client else "unknown"
        logger.info("WebSocket client connected: %s", client_ip)

        await hub.add_client(websocket)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                raw = _frame_text(message)
                if raw is None:
                    logger.warning("Ignoring undecodable frame from %s", client_ip)
                    continue
                await hub.handle_client_message(websocket, raw)
        except WebSocketDisconnect:
            logger.info("WebSocket client disconnected: %s", client_ip)
        finally:
            await hub.remove_client(websocket)

    return router
