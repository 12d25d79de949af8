"""Relay chat module (rooms, connections, wire protocol)."""

from .connection import ChannelState, Connection
from .protocol import Message, decode_frame
from .registry import RoomRegistry
from .room import AdmissionInfo, Room, RoomFull
from .session import RelaySession, SessionState

__all__ = [
    "AdmissionInfo",
    "ChannelState",
    "Connection",
    "Message",
    "RelaySession",
    "Room",
    "RoomFull",
    "RoomRegistry",
    "SessionState",
    "decode_frame",
]
