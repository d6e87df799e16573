"""WebSocket connection manager: fans session events out to every client."""

from __future__ import annotations

import json
import logging

from fastapi import WebSocket

from sitescout.schemas import WSMessage

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(self):
        self._connections: dict[str, list[WebSocket]] = {}

    async def connect(self, session_id: str, websocket: WebSocket):
        await websocket.accept()
        self._connections.setdefault(session_id, []).append(websocket)

    def disconnect(self, session_id: str, websocket: WebSocket):
        conns = self._connections.get(session_id, [])
        if websocket in conns:
            conns.remove(websocket)
        if not conns:
            self._connections.pop(session_id, None)

    def client_count(self, session_id: str) -> int:
        return len(self._connections.get(session_id, []))

    async def broadcast(self, session_id: str, event: str, data: dict):
        """Send one event to all clients watching a session; dead sockets are dropped."""
        message = WSMessage(event=event, session_id=session_id, data=data)
        payload = json.dumps(message.model_dump(mode="json"))
        conns = self._connections.get(session_id, [])
        dead = []
        for ws in conns:
            try:
                await ws.send_text(payload)
            except Exception as e:
                logger.debug("Dropping websocket for %s: %s", session_id, e)
                dead.append(ws)
        for ws in dead:
            conns.remove(ws)


ws_manager = ConnectionManager()
