"""Tests for ble.py — the sync link over a (fake) bleak client."""

import asyncio

import pytest

from smartwake.ble import (
    SYNC_NOTIFY_UUID,
    SYNC_SERVICE_UUID,
    SYNC_WRITE_UUID,
    BleSyncLink,
    find_sync_chars,
)
from smartwake.exceptions import TransportUnreachableError
from smartwake.framing import Channel, FrameAssembler, build_frame
from tests.conftest import FakeBleakClient, FakeChar, FakeService


def sync_client(**kw) -> FakeBleakClient:
    service = FakeService(
        SYNC_SERVICE_UUID,
        [
            FakeChar(SYNC_WRITE_UUID, ["write-without-response", "write"]),
            FakeChar(SYNC_NOTIFY_UUID, ["notify"]),
        ],
    )
    other = FakeService("0000180d-0000-1000-8000-00805f9b34fb", [FakeChar("x", ["notify"])])
    return FakeBleakClient([other, service], **kw)


def written_frames(client: FakeBleakClient):
    assembler = FrameAssembler()
    frames = []
    for uuid, chunk in client.writes:
        assert uuid == SYNC_WRITE_UUID
        frames.extend(assembler.feed(chunk))
    return frames


class TestFindSyncChars:
    def test_found(self):
        assert find_sync_chars(sync_client()) == (SYNC_WRITE_UUID, SYNC_NOTIFY_UUID)

    def test_missing(self):
        assert find_sync_chars(FakeBleakClient()) == (None, None)


class TestBleSyncLink:
    def test_start_without_sync_service(self):
        async def scenario():
            link = BleSyncLink(FakeBleakClient())
            await link.start()

        with pytest.raises(TransportUnreachableError):
            asyncio.run(scenario())

    def test_send_requires_start(self):
        link = BleSyncLink(sync_client())
        assert not link.is_reachable()
        with pytest.raises(TransportUnreachableError):
            link.send(b"ping")

    def test_send_is_chunked(self):
        client = sync_client()
        payload = bytes(range(50))

        async def scenario():
            link = BleSyncLink(client, chunk_size=20)
            await link.start()
            link.send(payload)
            await link.close()

        asyncio.run(scenario())
        assert [len(chunk) for _, chunk in client.writes] == [20, 20, 20]
        (frame,) = written_frames(client)
        assert frame.channel == Channel.MESSAGE
        assert frame.payload == payload

    def test_context_written_on_start(self):
        client = sync_client()

        async def scenario():
            link = BleSyncLink(client)
            link.update_context(b"old")
            link.update_context(b"schedule")
            assert client.writes == []
            await link.start()
            await link.close()

        asyncio.run(scenario())
        frames = written_frames(client)
        assert [(f.channel, f.payload) for f in frames] == [(Channel.CONTEXT, b"schedule")]

    def test_frames_written_in_order(self):
        client = sync_client()

        async def scenario():
            link = BleSyncLink(client, chunk_size=5)
            await link.start()
            link.send(b"first")
            link.update_context(b"second")
            link.send(b"third")
            await link.close()

        asyncio.run(scenario())
        frames = written_frames(client)
        assert [f.payload for f in frames] == [b"first", b"second", b"third"]
        assert [f.seq for f in frames] == [0, 1, 2]

    def test_failed_context_write_retried_on_restart(self, caplog):
        client = sync_client()
        client.fail_writes = True

        async def scenario():
            link = BleSyncLink(client)
            await link.start()
            link.update_context(b"summary")
            for task in list(link._tasks):
                await task
            client.fail_writes = False
            await link.start()
            await link.close()

        asyncio.run(scenario())
        assert "Sync write failed" in caplog.text
        assert [f.payload for f in written_frames(client)] == [b"summary"]

    def test_notifications_delivered(self):
        client = sync_client()

        async def scenario():
            link = BleSyncLink(client)
            await link.start()
            frame = build_frame(Channel.CONTEXT, b"alarm") + build_frame(Channel.MESSAGE, b"state")
            client.notify(SYNC_NOTIFY_UUID, frame[:9])
            client.notify(SYNC_NOTIFY_UUID, frame[9:])
            await link.close()
            received = [data async for data in link.messages()]
            return link, received

        link, received = asyncio.run(scenario())
        assert received == [b"alarm", b"state"]
        assert link.received_context() == b"alarm"
        assert client.stopped == [SYNC_NOTIFY_UUID]

    def test_unreachable_after_disconnect(self):
        client = sync_client()

        async def scenario():
            link = BleSyncLink(client)
            await link.start()
            client.is_connected = False
            return link

        link = asyncio.run(scenario())
        assert not link.is_reachable()
        with pytest.raises(TransportUnreachableError):
            link.send(b"ping")
