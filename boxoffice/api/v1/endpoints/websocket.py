"""
WebSocket endpoint for hold notifications
"""

import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/holds/{session_id}")
async def hold_updates(websocket: WebSocket, session_id: str):
    """
    Pushes ``hold_cancelled`` and ``hold_extended`` messages for a browser session
    """
    connections = websocket.app.state.container.connections
    await connections.connect(websocket, session_id)
    try:
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        logger.debug(f"WebSocket for session {session_id} disconnected")
    finally:
        connections.disconnect(websocket, session_id)
