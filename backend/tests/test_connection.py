"""Tests for Connection outbound queueing and close semantics."""
import asyncio

import pytest

from roomrelay.chat.connection import ChannelState, Connection
from roomrelay.chat.protocol import ErrorFrame

from conftest import FakeChannel


class TestConnectionSend:
    @pytest.mark.asyncio
    async def test_frames_are_written_in_order(self, make_connection):
        conn = make_connection("Al")
        for i in range(5):
            assert conn.send({"type": "n", "i": i}) is True
        await conn.flush()
        assert [f["i"] for f in conn.channel.frames()] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_send_is_skipped_when_not_open(self, make_connection):
        conn = make_connection("Al")
        conn.detach()
        assert conn.send({"type": "x"}) is False
        assert conn.channel.sent == []

    @pytest.mark.asyncio
    async def test_full_queue_drops_frames(self):
        # Writer never started, so nothing drains the queue
        conn = Connection(FakeChannel(), identity="Al", room_id="alpha", queue_size=2)
        assert conn.send({"type": "a"}) is True
        assert conn.send({"type": "b"}) is True
        assert conn.send({"type": "c"}) is False
        assert conn.dropped_frames == 1

    @pytest.mark.asyncio
    async def test_failed_write_marks_connection_closed(self, make_connection):
        conn = make_connection("Al")
        conn.channel.fail_sends = True
        conn.send({"type": "a"})
        conn.send({"type": "b"})
        await conn.flush()
        assert conn.state is ChannelState.CLOSED
        assert conn.send({"type": "c"}) is False

    @pytest.mark.asyncio
    async def test_room_id_is_read_only(self, make_connection):
        conn = make_connection("Al", room_id="alpha")
        assert conn.room_id == "alpha"
        with pytest.raises(AttributeError):
            conn.room_id = "beta"


class TestConnectionClose:
    @pytest.mark.asyncio
    async def test_close_flushes_then_closes_channel(self, make_connection):
        conn = make_connection("Al")
        conn.send(ErrorFrame(message="Room is full (2 participants max)."))
        await conn.close(code=1008)
        assert conn.channel.frames() == [{"type": "error", "message": "Room is full (2 participants max)."}]
        assert conn.channel.closed_with == 1008
        assert conn.state is ChannelState.CLOSED

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_connection):
        conn = make_connection("Al")
        await conn.close()
        conn.channel.closed_with = None
        await conn.close()
        assert conn.channel.closed_with is None

    @pytest.mark.asyncio
    async def test_detach_discards_pending_frames(self):
        channel = FakeChannel()
        conn = Connection(channel, identity="Al", room_id="alpha")
        conn.send({"type": "a"})
        conn.start()
        conn.detach()
        await asyncio.sleep(0)
        assert conn.state is ChannelState.CLOSED
        assert channel.closed_with is None

    @pytest.mark.asyncio
    async def test_close_times_out_on_stuck_channel(self, monkeypatch):
        class StuckChannel(FakeChannel):
            async def send_text(self, data):
                await asyncio.Event().wait()

        monkeypatch.setattr("roomrelay.chat.connection.CLOSE_FLUSH_TIMEOUT_SECONDS", 0.05)
        conn = Connection(StuckChannel(), identity="Al", room_id="alpha")
        conn.start()
        conn.send({"type": "a"})
        await conn.close()
        assert conn.state is ChannelState.CLOSED
        assert conn.channel.closed_with == 1000
