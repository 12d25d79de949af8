"""Process-wide registry of live rooms.

Rooms are created lazily on first join and reclaimed as soon as the last
member leaves. Lock order is registry first, then room.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from roomrelay.config import RoomSettings

from .room import Room

logger = logging.getLogger(__name__)


class RoomRegistry:
    """Maps room ids to :class:`Room` objects.

    One instance lives for the lifetime of the application (created in the
    FastAPI lifespan) and is shared by every connection.
    """

    def __init__(self, settings: Optional[RoomSettings] = None) -> None:
        self.settings = settings or RoomSettings()
        self._rooms: Dict[str, Room] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def room_ids(self) -> List[str]:
        return list(self._rooms)

    async def get_or_create(self, room_id: str) -> Room:
        """Return the room for ``room_id``, creating an empty one if needed."""
        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                room = Room(
                    room_id,
                    max_capacity=self.settings.max_participants,
                    max_history=self.settings.history_limit,
                    max_text_length=self.settings.max_text_length,
                )
                self._rooms[room_id] = room
                logger.info(f"[Registry] Created room {room_id} (rooms={len(self._rooms)})")
            return room

    async def remove_if_empty(self, room_id: str) -> bool:
        """Drop the room if nobody is in it. Redundant calls are harmless.

        Returns:
            True if a room was removed.
        """
        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return False
            async with room.lock:
                if not room.is_empty:
                    return False
                room.retired = True
                del self._rooms[room_id]
            logger.info(f"[Registry] Removed empty room {room_id} (rooms={len(self._rooms)})")
            return True

    async def shutdown(self) -> None:
        """Close every member connection and forget all rooms."""
        async with self._lock:
            rooms = list(self._rooms.values())
            self._rooms.clear()
            connections = []
            for room in rooms:
                async with room.lock:
                    room.retired = True
                    connections.extend(room.members)
                    room.members.clear()

        if connections:
            logger.info(f"[Registry] Shutting down: closing {len(connections)} connection(s)")
        # 1001 = Going Away
        await asyncio.gather(
            *[conn.close(code=1001) for conn in connections],
            return_exceptions=True,
        )
