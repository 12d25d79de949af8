"""A single relay room: bounded membership plus bounded history.

Every mutation (admit, leave, history append) happens under the room's
``asyncio.Lock``. Fan-out inside the lock only enqueues frames on each
member's outbound queue (see ``Connection.send``), so the lock is never held
across a network write.
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional, Set

from .connection import Connection
from .protocol import (
    Message,
    PeerJoinedFrame,
    PeerLeftFrame,
    PeerTypingFrame,
    generate_message_id,
    message_frame,
    now_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CAPACITY = 2
DEFAULT_MAX_HISTORY = 100
DEFAULT_MAX_TEXT_LENGTH = 2000


class RoomFull(Exception):
    """Admission refused because the room is at capacity."""

    def __init__(self, room_id: str, capacity: int) -> None:
        self.room_id = room_id
        self.capacity = capacity
        super().__init__(f"Room is full ({capacity} participants max).")


class RoomRetired(Exception):
    """The room was removed from the registry; resolve the id again."""


@dataclass(frozen=True)
class AdmissionInfo:
    """What a newly admitted member needs to catch up.

    Attributes:
        participant_count: Members in the room including the new one.
        history_snapshot: Copy of the history at admission time.
    """
    participant_count: int
    history_snapshot: List[Message] = field(default_factory=list)


class Room:
    """Bounded broadcast domain for up to ``max_capacity`` connections."""

    def __init__(
        self,
        room_id: str,
        max_capacity: int = DEFAULT_MAX_CAPACITY,
        max_history: int = DEFAULT_MAX_HISTORY,
        max_text_length: int = DEFAULT_MAX_TEXT_LENGTH,
    ) -> None:
        self.id = room_id
        self.max_capacity = max_capacity
        self.max_history = max_history
        self.max_text_length = max_text_length
        self.members: Set[Connection] = set()
        self.history: Deque[Message] = deque(maxlen=max_history)
        self.retired = False
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"Room(id={self.id!r}, members={len(self.members)}, history={len(self.history)})"

    @property
    def participant_count(self) -> int:
        return len(self.members)

    @property
    def is_empty(self) -> bool:
        return not self.members

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    async def admit(self, connection: Connection) -> AdmissionInfo:
        """Add a connection to the room if there is space.

        Existing members are told about the newcomer with ``peer-joined``;
        the newcomer itself is not.

        Args:
            connection: The joining connection.

        Returns:
            AdmissionInfo with the new participant count and history copy.

        Raises:
            RoomFull: The room already holds ``max_capacity`` members.
            RoomRetired: The room was reclaimed while the caller held it.
        """
        async with self._lock:
            if self.retired:
                raise RoomRetired(self.id)
            if len(self.members) >= self.max_capacity:
                raise RoomFull(self.id, self.max_capacity)

            self.members.add(connection)
            count = len(self.members)
            self._deliver(
                PeerJoinedFrame(name=connection.identity, participants=count),
                exclude=connection,
            )
            logger.info(f"[Room] {connection.identity!r} joined room {self.id} ({count}/{self.max_capacity})")
            return AdmissionInfo(participant_count=count, history_snapshot=list(self.history))

    async def broadcast_message(
        self, sender: Connection, text: str, message_id: Optional[str] = None
    ) -> Message:
        """Store a message and relay it to every member except the sender.

        Args:
            sender: The member the message came from.
            text: Raw message text; truncated to ``max_text_length``.
            message_id: Client-supplied id, or None to generate one.

        Returns:
            The stored Message, so the caller can acknowledge it.
        """
        async with self._lock:
            ts = now_ms()
            message = Message(
                id=message_id or generate_message_id(ts),
                sender=sender.identity,
                text=text[: self.max_text_length],
                ts=ts,
            )
            # deque(maxlen=...) drops the oldest entry once full
            self.history.append(message)
            self._deliver(message_frame(message), exclude=sender)
            return message

    async def broadcast_typing(self, sender: Connection, is_typing: bool) -> None:
        """Relay a typing indicator to the other members. Never stored."""
        async with self._lock:
            self._deliver(
                PeerTypingFrame(sender=sender.identity, is_typing=is_typing),
                exclude=sender,
            )

    async def leave(self, connection: Connection) -> bool:
        """Remove a member and tell the rest with ``peer-left``.

        Returns:
            True if the connection was a member, False otherwise.
        """
        async with self._lock:
            if connection not in self.members:
                return False
            self.members.discard(connection)
            count = len(self.members)
            self._deliver(PeerLeftFrame(name=connection.identity, participants=count))
            logger.info(f"[Room] {connection.identity!r} left room {self.id} ({count} remaining)")
            return True

    def info(self) -> dict:
        """Return a summary of the room for the HTTP API."""
        return {
            "room": self.id,
            "participants": self.participant_count,
            "historySize": len(self.history),
            "capacity": self.max_capacity,
        }

    def _deliver(self, frame, exclude: Optional[Connection] = None) -> int:
        """Queue a frame for every open member except ``exclude``.

        Returns:
            Number of members the frame was queued for.
        """
        delivered = 0
        for member in self.members:
            if member is exclude:
                continue
            if member.send(frame):
                delivered += 1
        return delivered
