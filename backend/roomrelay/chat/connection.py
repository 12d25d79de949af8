"""One participant's duplex channel.

A :class:`Connection` decouples "decide what to send" from "actually write
it to the network": :meth:`Connection.send` only places the encoded frame on
a bounded per-connection queue, and a dedicated writer task drains that queue
into the channel. Rooms can therefore fan out while holding their lock
without ever waiting on a slow or dead peer.

Delivery is best-effort, at-most-once:
    - frames sent to a connection that is not open are skipped
    - frames that do not fit in the outbound queue are dropped for that peer
    - a channel write that raises marks the connection closed
"""
import asyncio
import logging
from enum import Enum
from typing import Optional, Protocol, Union

from pydantic import BaseModel

from .protocol import encode_frame

logger = logging.getLogger(__name__)

# Upper bound on how long a graceful close waits for queued frames
CLOSE_FLUSH_TIMEOUT_SECONDS = 5.0

DEFAULT_OUTBOUND_QUEUE_SIZE = 256


class ChannelState(str, Enum):
    """Lifecycle of the underlying channel."""
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class Channel(Protocol):
    """Message-oriented duplex channel provided by the transport layer.

    ``receive_text`` raises ``WebSocketDisconnect`` once the peer has gone.
    """

    async def send_text(self, data: str) -> None: ...

    async def receive_text(self) -> str: ...

    async def close(self, code: int = 1000) -> None: ...


class Connection:
    """A participant's channel plus the identity it joined with.

    Attributes:
        channel: Transport channel used for reads and writes.
        identity: Normalized display name.
        state: Current ``ChannelState``.
        dropped_frames: Frames discarded because the outbound queue was full.
    """

    def __init__(
        self,
        channel: Channel,
        identity: str,
        room_id: str,
        queue_size: int = DEFAULT_OUTBOUND_QUEUE_SIZE,
    ) -> None:
        self.channel = channel
        self.identity = identity
        self._room_id = room_id
        self.state = ChannelState.OPEN
        self.dropped_frames = 0
        self._outbound: "asyncio.Queue[Optional[str]]" = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"Connection(identity={self.identity!r}, room_id={self._room_id!r}, state={self.state.value})"

    @property
    def room_id(self) -> str:
        """Room this connection belongs to; fixed for the connection's lifetime."""
        return self._room_id

    @property
    def is_open(self) -> bool:
        return self.state is ChannelState.OPEN

    def start(self) -> None:
        """Spawn the writer task. Must be called from the running event loop."""
        if self._writer is None:
            self._writer = asyncio.create_task(
                self._write_loop(), name=f"relay-writer-{self.identity}"
            )

    def send(self, frame: Union[BaseModel, dict]) -> bool:
        """Queue a frame for delivery without waiting for the network.

        Returns:
            True if the frame was queued, False if it was skipped.
        """
        if not self.is_open:
            return False
        try:
            self._outbound.put_nowait(encode_frame(frame))
        except asyncio.QueueFull:
            self.dropped_frames += 1
            logger.warning(
                f"[Conn] Outbound queue full for {self.identity!r} in room {self._room_id}, "
                f"dropping frame (dropped={self.dropped_frames})"
            )
            return False
        return True

    async def receive(self) -> str:
        """Wait for the next inbound text frame."""
        return await self.channel.receive_text()

    async def flush(self) -> None:
        """Wait until every queued frame has been handed to the channel."""
        await self._outbound.join()

    async def close(self, code: int = 1000) -> None:
        """Deliver what is already queued, then close the channel.

        Used when the server ends the conversation (room full, idle timeout,
        shutdown). Safe to call more than once.
        """
        if self.state is not ChannelState.OPEN:
            return
        self.state = ChannelState.CLOSING
        await self._stop_writer()
        try:
            await self.channel.close(code)
        except Exception as e:
            logger.debug(f"[Conn] Channel close failed for {self.identity!r}: {e}")
        self.state = ChannelState.CLOSED

    def detach(self) -> None:
        """Mark the connection closed after the peer went away.

        Pending frames are discarded and the channel is left alone since the
        transport already tore it down.
        """
        self.state = ChannelState.CLOSED
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()

    async def _stop_writer(self) -> None:
        writer = self._writer
        if writer is None or writer.done():
            return

        async def _drain() -> None:
            await self._outbound.put(None)
            await writer

        try:
            await asyncio.wait_for(_drain(), timeout=CLOSE_FLUSH_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(f"[Conn] Timed out flushing frames to {self.identity!r}")
            writer.cancel()

    async def _write_loop(self) -> None:
        while True:
            text = await self._outbound.get()
            if text is None:
                self._outbound.task_done()
                return
            try:
                await self.channel.send_text(text)
            except Exception as e:
                logger.debug(f"[Conn] Failed to send to {self.identity!r}: {e}")
                self.state = ChannelState.CLOSED
                self._outbound.task_done()
                self._discard_pending()
                return
            self._outbound.task_done()

    def _discard_pending(self) -> None:
        while True:
            try:
                self._outbound.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._outbound.task_done()
