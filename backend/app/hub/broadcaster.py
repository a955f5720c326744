"""Fan-out of hub events to every connected downstream WebSocket."""

from __future__ import annotations

import json
import logging

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from .cache import PriceCache

logger = logging.getLogger(__name__)


def is_open(client: WebSocket) -> bool:
    return (
        client.client_state == WebSocketState.CONNECTED
        and client.application_state == WebSocketState.CONNECTED
    )


class ClientBroadcaster:
    """Owns the set of downstream client connections.

    There is no per-client filtering: every client receives every event for
    every hub-subscribed symbol. Delivery is best effort; a client that is
    closed or fails mid-send is skipped, never retried.
    """

    def __init__(self, cache: PriceCache) -> None:
        self._cache = cache
        self._clients: set[WebSocket] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def add_client(self, client: WebSocket) -> int:
        """Register a client and send it the current snapshot.

        Returns the client count after registration.
        """
        self._clients.add(client)
        logger.info("Client connected. Total clients: %d", len(self._clients))

        snapshot = self._cache.snapshot()
        if snapshot:
            await self.send_to(client, {"type": "snapshot", "data": snapshot})
        return len(self._clients)

    def remove_client(self, client: WebSocket) -> int:
        """Deregister a client. Returns the number of clients left."""
        self._clients.discard(client)
        logger.info("Client disconnected. Total clients: %d", len(self._clients))
        return len(self._clients)

    async def broadcast(self, event: dict) -> int:
        """Serialize once and push to every open client. Returns deliveries."""
        message = json.dumps(event)
        delivered = 0
        # Copy: clients may be removed while we are suspended in send_text().
        for client in list(self._clients):
            if await self._send_text(client, message):
                delivered += 1
        return delivered

    async def send_to(self, client: WebSocket, event: dict) -> bool:
        """Send one event to a single client (snapshots, acks)."""
        return await self._send_text(client, json.dumps(event))

    async def _send_text(self, client: WebSocket, message: str) -> bool:
        if not is_open(client):
            return False
        try:
            await client.send_text(message)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.debug("Dropping message for closing client: %s", e)
            return False
        return True
