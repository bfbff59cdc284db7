import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from oddsline.services.websocket_manager import websocket_manager

logger = logging.getLogger("oddsline.ws")

router = APIRouter()


@router.websocket("/ws")
async def websocket_stream(
    ws: WebSocket,
    user_id: Optional[str] = Query(default=None),
    rooms: Optional[str] = Query(default=None),
):
    """Realtime odds, lifecycle and settlement stream.

    Identity is supplied by the fronting gateway as ``user_id``; it only picks
    the personal room. Clients send ``{"type": "join"|"leave", "rooms": [...]}``
    to change rooms and ``ping`` to keep the connection alive.
    """
    if websocket_manager.is_full:
        await ws.close(code=4002, reason="Too many connections")
        return

    initial_rooms = [r.strip() for r in (rooms or "").split(",") if r.strip()]
    try:
        connection_id = await websocket_manager.connect(ws, user_id=user_id, rooms=initial_rooms)
    except RuntimeError:
        await ws.close(code=4002, reason="Too many connections")
        return

    try:
        while True:
            data = await ws.receive_text()
            await websocket_manager.touch(connection_id)
            if data == "ping":
                await ws.send_text("pong")
                continue
            try:
                command = json.loads(data)
            except ValueError:
                await ws.send_json({"type": "error", "data": {"detail": "invalid_json"}})
                continue
            if not isinstance(command, dict):
                await ws.send_json({"type": "error", "data": {"detail": "invalid_command"}})
                continue
            try:
                joined = await websocket_manager.update_rooms(
                    connection_id, str(command.get("type") or ""), command.get("rooms"),
                )
            except ValueError as exc:
                await ws.send_json({"type": "error", "data": {"detail": str(exc)}})
                continue
            await ws.send_json({"type": "rooms", "data": {"rooms": joined}})
    except WebSocketDisconnect:
        logger.debug("WS client disconnected connection_id=%s", connection_id)
    finally:
        await websocket_manager.disconnect(connection_id)
