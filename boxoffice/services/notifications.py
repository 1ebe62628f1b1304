"""
WebSocket notifications for hold holders
Pushes hold lifecycle messages to the checkout session that owns the hold
"""

from fastapi import WebSocket
from typing import Dict, List, Set, Optional
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections keyed by checkout session"""

    def __init__(self):
        self.session_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, session_id: str):
        """Accept and register a new WebSocket connection"""
        await websocket.accept()
        self.session_connections.setdefault(session_id, set()).add(websocket)
        logger.info(f"Session {session_id} connected")

        await websocket.send_json({
            "type": "connection",
            "status": "connected",
            "timestamp": datetime.now(timezone.utc).isoformat()
        })

    def disconnect(self, websocket: WebSocket, session_id: str):
        """Remove a WebSocket connection"""
        connections = self.session_connections.get(session_id)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            del self.session_connections[session_id]
        logger.info(f"Session {session_id} disconnected")

    async def send_to_session(self, session_id: str, message: Dict) -> int:
        """Send a message to every socket of a session; returns deliveries"""
        delivered = 0
        disconnected = []

        for websocket in list(self.session_connections.get(session_id, ())):
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Error sending message to session {session_id}: {e}")
                disconnected.append(websocket)

        for websocket in disconnected:
            self.disconnect(websocket, session_id)

        return delivered


class HoldNotifier:
    """Formats hold lifecycle messages for the connection manager"""

    def __init__(self, manager: ConnectionManager):
        self.manager = manager

    async def hold_cancelled(
        self,
        session_id: str,
        hold_id: str,
        reason: str,
        unit_ids: Optional[List[str]] = None
    ):
        message = {
            "type": "hold_cancelled",
            "hold_id": hold_id,
            "reason": reason,  # "expired" or "released"
            "units": unit_ids or [],
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
        await self.manager.send_to_session(session_id, message)

    async def hold_extended(self, session_id: str, hold_id: str, expires_at: datetime):
        await self.manager.send_to_session(session_id, {
            "type": "hold_extended",
            "hold_id": hold_id,
            "expires_at": expires_at.isoformat(),
            "timestamp": datetime.now(timezone.utc).isoformat()
        })
