"""WebSocket fan-out for rate updates.

The refresh scheduler hands every new payload to `publish()`; delivery is
best effort per socket and a socket that fails to receive is dropped.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Set

from fastapi import WebSocket

from fxrelay.models.constants import PUSH_EVENT_RATES_UPDATE

logger = logging.getLogger("fxrelay.broadcast")


def rates_message(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"event": PUSH_EVENT_RATES_UPDATE, "data": payload}


class ConnectionManager:
    def __init__(self) -> None:
        self._connections: Set[WebSocket] = set()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.add(websocket)
        logger.info("subscriber connected (%d total)", len(self._connections))

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self._connections:
            self._connections.discard(websocket)
            logger.info("subscriber disconnected (%d total)", len(self._connections))

    async def send(self, websocket: WebSocket, payload: Dict[str, Any]) -> None:
        await websocket.send_json(rates_message(payload))

    async def publish(self, payload: Dict[str, Any]) -> None:
        message = rates_message(payload)
        dead = []
        for ws in list(self._connections):
            try:
                await ws.send_json(message)
            except Exception:  # socket closed / transport gone
                logger.debug("dropping subscriber after failed send", exc_info=True)
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws)
        logger.debug("published rates to %d subscriber(s)", len(self._connections))
