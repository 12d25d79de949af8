"""Per-connection relay controller.

Each WebSocket is driven by one :class:`RelaySession`, a small linear state
machine::

    CONNECTING ──joined──▶ JOINED ──closed/errored──▶ LEAVING ──▶ CLOSED
        │                                                          ▲
        └──────────────────── room full ───────────────────────────┘

Protocol Flow:
    1. Session normalizes ``room``/``name`` and asks the registry for the room
    2. Room admits the connection (or raises ``RoomFull``)
       → joiner receives: {type: "init", room, name, participants, history}
       → others receive:  {type: "peer-joined", name, participants}
    3. Receive loop dispatches inbound frames:
       - message → peers get {type: "message", ...}, sender gets message-ack
       - typing  → peers get {type: "typing", from, isTyping}
       - ping    → sender gets {type: "pong", ts}
    4. On disconnect the room is left (peers get peer-left) and reclaimed
       when empty.
"""
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Type

from fastapi import WebSocketDisconnect

from roomrelay.config import AppSettings

from .connection import Channel, Connection
from .protocol import (
    ErrorFrame,
    InitFrame,
    MessageAckFrame,
    MessageFrame,
    PingFrame,
    PongFrame,
    TypingFrame,
    decode_frame,
)
from .registry import RoomRegistry
from .room import Room, RoomFull, RoomRetired

logger = logging.getLogger(__name__)

# 1008 = Policy Violation
ROOM_FULL_CLOSE_CODE = 1008


class SessionState(str, Enum):
    CONNECTING = "connecting"
    JOINED = "joined"
    LEAVING = "leaving"
    CLOSED = "closed"


_TRANSITIONS = {
    SessionState.CONNECTING: {SessionState.JOINED, SessionState.CLOSED},
    SessionState.JOINED: {SessionState.LEAVING},
    SessionState.LEAVING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}


class InvalidTransition(RuntimeError):
    """A session tried to move against its linear lifecycle."""


def normalize_room_id(raw: Optional[str], default: str = "default") -> str:
    """Trim the requested room id, falling back to ``default`` when blank."""
    room_id = (raw or "").strip()
    return room_id or default


def normalize_identity(raw: Optional[str], max_length: int = 32, default: str = "Anonymous") -> str:
    """Trim and truncate a display name, falling back to ``default`` when blank."""
    name = (raw or "").strip()[:max_length]
    return name or default


class RelaySession:
    """Drives one connection from join to teardown.

    Attributes:
        registry: Shared room registry.
        connection: This participant's connection.
        room: The room once admitted, else None.
        state: Current ``SessionState``.
    """

    def __init__(
        self,
        channel: Channel,
        registry: RoomRegistry,
        settings: AppSettings,
        room: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        rooms = settings.rooms
        self.registry = registry
        self.idle_timeout = settings.connection.idle_timeout_seconds
        self.connection = Connection(
            channel,
            identity=normalize_identity(name, rooms.max_name_length, rooms.default_name),
            room_id=normalize_room_id(room, rooms.default_room),
            queue_size=settings.connection.outbound_queue_size,
        )
        self.room: Optional[Room] = None
        self.state = SessionState.CONNECTING

        # Inbound frame type -> handler; unknown frames are ignored
        self._handlers: Dict[Type, Callable[..., Awaitable[None]]] = {
            MessageFrame: self._on_message,
            TypingFrame: self._on_typing,
            PingFrame: self._on_ping,
        }

    @property
    def room_id(self) -> str:
        return self.connection.room_id

    @property
    def identity(self) -> str:
        return self.connection.identity

    async def run(self) -> None:
        """Run the whole lifecycle; returns once the session is closed."""
        self.connection.start()
        server_closing = False
        try:
            if not await self.join():
                return
            server_closing = await self._receive_loop()
        finally:
            await self.leave(close_channel=server_closing)

    async def join(self) -> bool:
        """Admit the connection to its room and send ``init``.

        Returns:
            True when joined, False when the room was full.
        """
        while True:
            room = await self.registry.get_or_create(self.room_id)
            try:
                info = await room.admit(self.connection)
            except RoomRetired:
                # Lost a race with the room being reclaimed; resolve again
                continue
            except RoomFull as e:
                logger.info(f"[WS] Rejecting {self.identity!r}: room {self.room_id} is full")
                self.connection.send(ErrorFrame(message=str(e)))
                await self.connection.close(code=ROOM_FULL_CLOSE_CODE)
                self._transition(SessionState.CLOSED)
                return False
            break

        # No await between admission and queuing init, so init is always the
        # joiner's first frame and nothing in the snapshot is delivered twice.
        self.room = room
        self.connection.send(InitFrame(
            room=self.room_id,
            name=self.identity,
            participants=info.participant_count,
            history=info.history_snapshot,
        ))
        self._transition(SessionState.JOINED)
        return True

    async def handle_frame(self, raw: str) -> None:
        """Decode one inbound frame and dispatch it. Non-joined sessions ignore input."""
        if self.state is not SessionState.JOINED:
            return
        frame = decode_frame(raw)
        handler = self._handlers.get(type(frame))
        if handler is None:
            logger.debug("[WS] Room %s ignored frame from %r", self.room_id, self.identity)
            return
        await handler(frame)

    async def leave(self, close_channel: bool = False) -> None:
        """Leave the room, reclaim it if empty, and release the connection.

        Args:
            close_channel: True when the server ends the session (the channel
                is still up and should be closed); False when the peer went
                away.
        """
        if self.state is SessionState.CLOSED:
            return
        if self.state is SessionState.CONNECTING:
            self.connection.detach()
            self._transition(SessionState.CLOSED)
            return

        self._transition(SessionState.LEAVING)
        if self.room is not None:
            await self.room.leave(self.connection)
            await self.registry.remove_if_empty(self.room.id)
        if close_channel:
            await self.connection.close()
        else:
            self.connection.detach()
        self._transition(SessionState.CLOSED)

    # -------------------------------------------------------------------------
    # Receive loop
    # -------------------------------------------------------------------------

    async def _receive_loop(self) -> bool:
        """Read frames until the channel ends.

        Returns:
            True if the server ended the session (idle timeout), False if the
            channel closed or failed.
        """
        while True:
            try:
                raw = await self._receive()
            except WebSocketDisconnect as e:
                logger.info(f"[WS] {self.identity!r} disconnected from room {self.room_id} (code={e.code})")
                return False
            except asyncio.TimeoutError:
                logger.info(
                    f"[WS] {self.identity!r} idle for {self.idle_timeout}s in room {self.room_id}, closing"
                )
                return True
            except Exception as e:
                logger.error(f"[WS] Channel error for {self.identity!r} in room {self.room_id}: {e}", exc_info=True)
                return False
            try:
                await self.handle_frame(raw)
            except Exception as e:
                logger.warning(f"[WS] Dropped frame from {self.identity!r} in room {self.room_id}: {e!r}")

    async def _receive(self) -> str:
        if self.idle_timeout > 0:
            return await asyncio.wait_for(self.connection.receive(), timeout=self.idle_timeout)
        return await self.connection.receive()

    # -------------------------------------------------------------------------
    # Frame handlers
    # -------------------------------------------------------------------------

    async def _on_message(self, frame: MessageFrame) -> None:
        message = await self.room.broadcast_message(self.connection, frame.text, frame.id)
        logger.debug("[WS] Room %s message %s from %r", self.room_id, message.id, self.identity)
        self.connection.send(MessageAckFrame(id=message.id, ts=message.ts))

    async def _on_typing(self, frame: TypingFrame) -> None:
        await self.room.broadcast_typing(self.connection, frame.is_typing)

    async def _on_ping(self, frame: PingFrame) -> None:
        self.connection.send(PongFrame())

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {new_state.value}")
        logger.debug("[WS] %r session %s -> %s", self.identity, self.state.value, new_state.value)
        self.state = new_state
