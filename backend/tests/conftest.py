"""Shared test fixtures and configuration for backend tests."""
import asyncio
import json
from typing import List, Optional, Union

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from roomrelay.chat.connection import Connection
from roomrelay.config import AppSettings, StaticSettings
from roomrelay.main import create_app


class FakeChannel:
    """In-memory stand-in for a WebSocket.

    Frames written by the server land in ``sent`` (and ``outbox`` for tests
    that want to wait on them); frames pushed with ``push`` are what the
    server reads next. ``disconnect()`` makes the next read raise
    ``WebSocketDisconnect`` like a peer closing its socket.
    """

    def __init__(self) -> None:
        self.sent: List[str] = []
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.closed_with: Optional[int] = None
        self.fail_sends = False

    async def send_text(self, data: str) -> None:
        if self.fail_sends:
            raise RuntimeError("socket is gone")
        self.sent.append(data)
        self.outbox.put_nowait(json.loads(data))

    async def receive_text(self) -> str:
        item = await self.inbound.get()
        if item is None:
            raise WebSocketDisconnect(1000)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    def push(self, frame: Union[dict, str]) -> None:
        self.inbound.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def disconnect(self) -> None:
        self.inbound.put_nowait(None)

    def fail(self, exc: BaseException) -> None:
        self.inbound.put_nowait(exc)

    def frames(self) -> List[dict]:
        return [json.loads(s) for s in self.sent]

    async def next_frame(self, timeout: float = 1.0) -> dict:
        return await asyncio.wait_for(self.outbox.get(), timeout)


@pytest.fixture
def settings():
    """Default settings with static file serving switched off."""
    return AppSettings(static=StaticSettings(enabled=False))


@pytest.fixture
def api_client(settings):
    """Provide a TestClient with the lifespan running.

    Using the client as a context manager keeps every WebSocket session on
    the same event loop, which the room locks and queues require.
    """
    with TestClient(create_app(settings)) as client:
        yield client


@pytest.fixture
async def make_connection():
    """Factory for started connections over FakeChannels; detached on teardown."""
    created: List[Connection] = []

    def _make(identity: str, room_id: str = "alpha", queue_size: int = 256) -> Connection:
        conn = Connection(FakeChannel(), identity=identity, room_id=room_id, queue_size=queue_size)
        conn.start()
        created.append(conn)
        return conn

    yield _make

    for conn in created:
        conn.detach()
