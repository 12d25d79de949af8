"""Relay router providing WebSocket and HTTP endpoints.

This module provides:
    - WebSocket /ws?room=<id>&name=<display name>: Real-time room relay
    - GET /rooms/{room_id}: Live room summary

The WebSocket protocol is documented in ``roomrelay.chat.session``.
"""
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect

from .registry import RoomRegistry
from .session import RelaySession

logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketChannel:
    """Adapts a Starlette ``WebSocket`` to the relay's channel interface.

    Binary frames are decoded as UTF-8 so clients that send JSON as bytes
    are handled the same as text frames.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)

    async def receive_text(self) -> str:
        message = await self.websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
        if message.get("text") is not None:
            return message["text"]
        return (message.get("bytes") or b"").decode("utf-8", errors="replace")

    async def close(self, code: int = 1000) -> None:
        await self.websocket.close(code=code)


def _get_registry(app) -> RoomRegistry:
    return app.state.registry


@router.websocket("/ws")
async def websocket_relay_endpoint(
    websocket: WebSocket,
    room: Optional[str] = Query(None, description="Room ID to join"),
    name: Optional[str] = Query(None, description="Display name"),
) -> None:
    """WebSocket endpoint for one participant of a relay room.

    The upgrade is always accepted so that a full room can be reported with
    an ``error`` frame before the socket is closed.

    Args:
        websocket: The WebSocket connection.
        room: Requested room id (default room when blank).
        name: Requested display name (``Anonymous`` when blank).
    """
    await websocket.accept()
    logger.info(f"[WS] New connection: room={room!r}, name={name!r}")

    session = RelaySession(
        WebSocketChannel(websocket),
        registry=_get_registry(websocket.app),
        settings=websocket.app.state.config,
        room=room,
        name=name,
    )
    await session.run()


@router.get("/rooms/{room_id}")
async def get_room(room_id: str, request: Request) -> dict:
    """Get a summary of a live room.

    Args:
        room_id: The room ID.

    Returns:
        Room id, participant count, stored history size and capacity.

    Raises:
        HTTPException: 404 if no such room is live.
    """
    room = _get_registry(request.app).get(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail=f"Room {room_id} not found")
    return room.info()
