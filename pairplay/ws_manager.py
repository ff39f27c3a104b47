from typing import Dict, Set
from fastapi import WebSocket
import logging
from .presence import presence
from .core import LIVE_SOCKETS

logger = logging.getLogger(__name__)

class ConnectionManager:
    """Tracks live sockets per user and mirrors them into the presence store."""

    def __init__(self):
        self.connections: Dict[int, Set[WebSocket]] = {}

    async def connect(self, user_id: int, websocket: WebSocket):
        await websocket.accept()
        # register only once presence is written so a failure leaves nothing behind
        await presence.mark_online(user_id)
        self.connections.setdefault(user_id, set()).add(websocket)
        LIVE_SOCKETS.inc()

    async def disconnect(self, user_id: int, websocket: WebSocket):
        sockets = self.connections.get(user_id, set())
        if websocket not in sockets:
            return
        sockets.discard(websocket)
        LIVE_SOCKETS.dec()
        if not sockets:
            self.connections.pop(user_id, None)
            try:
                await presence.mark_offline(user_id)
            except Exception as e:
                logger.warning(f'Could not mark user {user_id} offline: {e}')

    async def send_personal(self, user_id: int, message: dict):
        for ws in list(self.connections.get(user_id, set())):
            try:
                await ws.send_json(message)
            except Exception:
                await self.disconnect(user_id, ws)

manager = ConnectionManager()
