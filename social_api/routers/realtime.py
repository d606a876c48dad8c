"""
WebSocket endpoint:
  WS /ws — one realtime connection per device

Frames are JSON: {"event": ..., "data": {...}, "ack": <id>?}. A connection
that sends nothing for ws_idle_timeout_seconds is closed; clients keep it
alive with `ping`.
"""
import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from social_api.config import settings
from social_api.dependencies import websocket_user_id
from social_api.realtime.gateway import RealtimeGateway

logger = logging.getLogger(__name__)
router = APIRouter()

WS_CLOSE_UNAUTHORIZED = 4401


def _decode(message: dict):
    """JSON body of a text or binary frame; None when it is not valid UTF-8 JSON."""
    try:
        payload = message.get("text")
        if payload is None:
            payload = (message.get("bytes") or b"").decode("utf-8")
        return json.loads(payload)
    except ValueError:
        return None


@router.websocket("/ws")
async def realtime(websocket: WebSocket):
    user_id = websocket_user_id(websocket)
    await websocket.accept()
    if not user_id:
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED, reason="Missing user identity")
        return

    gateway: RealtimeGateway = websocket.app.state.gateway
    connection = gateway.connect(user_id, websocket)
    try:
        while True:
            message = await asyncio.wait_for(
                websocket.receive(), timeout=settings.ws_idle_timeout_seconds
            )
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
            await gateway.dispatch(connection, _decode(message))
    except WebSocketDisconnect:
        pass
    except asyncio.TimeoutError:
        logger.info("Closing idle connection %s for %s", connection.connection_id, user_id)
        try:
            await websocket.close(code=status.WS_1001_GOING_AWAY, reason="Idle timeout")
        except RuntimeError:
            pass
    finally:
        await gateway.disconnect(connection)
