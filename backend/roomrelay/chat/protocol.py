"""Wire protocol for the relay WebSocket.

Every frame is a single JSON object discriminated by its ``type`` field.

Inbound (client → server):
    - message: ``{type: "message", id?, text}``
    - typing:  ``{type: "typing", isTyping?}``
    - ping:    ``{type: "ping"}``

Outbound (server → client):
    - init, peer-joined, peer-left, message, message-ack, typing, pong, error

Decoding is forward compatible: unknown fields are dropped, and anything that
is not one of the recognised inbound shapes (bad JSON, unknown ``type``,
non-string ``text``) decodes to :class:`IgnoredFrame` instead of raising.
"""
import json
import logging
import random
import time
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictStr,
    TypeAdapter,
    ValidationError,
    field_validator,
)

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current server time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def generate_message_id(ts: Optional[int] = None) -> str:
    """Build a server-side message id such as ``m_1707321600123_4821``.

    Not cryptographically unique; only used for ack correlation and
    client-side deduplication.
    """
    if ts is None:
        ts = now_ms()
    return f"m_{ts}_{random.randrange(10000)}"


# =============================================================================
# Stored message
# =============================================================================


class Message(BaseModel):
    """A chat message as stored in room history and delivered to peers.

    Attributes:
        id: Client-supplied or server-generated message id.
        sender: Sender's display name at send time (``from`` on the wire).
        text: Message body, already truncated.
        ts: Server timestamp in milliseconds since epoch.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., description="Message id")
    sender: str = Field(..., alias="from", description="Display name of the sender")
    text: str = Field(..., description="Message content")
    ts: int = Field(..., description="Timestamp in milliseconds since epoch")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


# =============================================================================
# Inbound frames
# =============================================================================


class _InboundFrame(BaseModel):
    model_config = ConfigDict(extra="ignore")


class MessageFrame(_InboundFrame):
    type: Literal["message"]
    id: Optional[str] = None
    text: StrictStr

    @field_validator("id", mode="before")
    @classmethod
    def _drop_unusable_id(cls, value: Any) -> Optional[str]:
        # A missing, empty or non-string id falls back to a generated one
        if isinstance(value, str) and value:
            return value
        return None


class TypingFrame(_InboundFrame):
    type: Literal["typing"]
    is_typing: bool = Field(default=False, alias="isTyping")

    @field_validator("is_typing", mode="before")
    @classmethod
    def _truthy(cls, value: Any) -> bool:
        # JavaScript truthiness: empty arrays and objects are true, NaN is false
        if isinstance(value, (list, dict)):
            return True
        if isinstance(value, float) and value != value:
            return False
        return bool(value)


class PingFrame(_InboundFrame):
    type: Literal["ping"]


class IgnoredFrame(BaseModel):
    """Anything the relay does not act on."""
    reason: str = "unrecognized"


InboundFrame = Union[MessageFrame, TypingFrame, PingFrame, IgnoredFrame]

_inbound_adapter = TypeAdapter(
    Annotated[Union[MessageFrame, TypingFrame, PingFrame], Field(discriminator="type")]
)


def decode_frame(raw: Union[str, bytes]) -> InboundFrame:
    """Decode one inbound text frame into its tagged variant.

    Args:
        raw: The raw frame payload as received from the channel.

    Returns:
        A ``MessageFrame``, ``TypingFrame`` or ``PingFrame`` for recognised
        frames, otherwise an ``IgnoredFrame`` describing why it was dropped.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError, RecursionError):
        return IgnoredFrame(reason="malformed")

    if not isinstance(data, dict):
        return IgnoredFrame(reason="malformed")

    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        logger.debug("Dropping frame type=%r: %s", data.get("type"), e.error_count())
        return IgnoredFrame(reason="invalid")


# =============================================================================
# Outbound frames
# =============================================================================


class InitFrame(BaseModel):
    type: Literal["init"] = "init"
    room: str
    name: str
    participants: int
    history: List[Message] = Field(default_factory=list)


class PeerJoinedFrame(BaseModel):
    type: Literal["peer-joined"] = "peer-joined"
    name: str
    participants: int


class PeerLeftFrame(BaseModel):
    type: Literal["peer-left"] = "peer-left"
    name: str
    participants: int


class MessageAckFrame(BaseModel):
    type: Literal["message-ack"] = "message-ack"
    id: str
    ts: int


class PeerTypingFrame(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["typing"] = "typing"
    sender: str = Field(..., alias="from")
    is_typing: bool = Field(..., alias="isTyping")


class PongFrame(BaseModel):
    type: Literal["pong"] = "pong"
    ts: int = Field(default_factory=now_ms)


class ErrorFrame(BaseModel):
    type: Literal["error"] = "error"
    message: str


def encode_frame(frame: Union[BaseModel, dict]) -> str:
    """Serialize an outbound frame to its JSON text form."""
    if isinstance(frame, BaseModel):
        frame = frame.model_dump(by_alias=True)
    return json.dumps(frame, ensure_ascii=False)


def message_frame(message: Message) -> dict:
    """The peer-facing ``message`` frame for a stored message."""
    return {"type": "message", **message.to_wire()}
