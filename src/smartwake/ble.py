"""BLE sync link: a :class:`~smartwake.transport.SyncLink` over a bleak GATT client.

The companion exposes one sync service with a writable characteristic
(controller -> companion) and a notify characteristic (companion ->
controller).  Envelopes are wrapped in :mod:`smartwake.framing` frames whose
channel byte tells ephemeral messages from replicated-context writes.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

from bleak import BleakClient
from bleak.backends.characteristic import BleakGATTCharacteristic

from smartwake import config
from smartwake.exceptions import TransportUnreachableError
from smartwake.framing import Channel, FrameAssembler, build_frame, split_chunks

logger = config.get_logger()

SYNC_SERVICE_UUID = "7e5a0001-6b2d-4c1e-9f3a-2d1c0b5e8a47"
SYNC_WRITE_UUID = "7e5a0002-6b2d-4c1e-9f3a-2d1c0b5e8a47"
SYNC_NOTIFY_UUID = "7e5a0003-6b2d-4c1e-9f3a-2d1c0b5e8a47"

# Conservative ATT payload size (default MTU 23 minus 3 bytes of header).
DEFAULT_CHUNK_SIZE = 20


def find_sync_chars(client: BleakClient) -> tuple[str | None, str | None]:
    """Find the (write, notify) characteristic UUIDs on the sync service."""
    write_uuid = None
    notify_uuid = None
    for service in client.services:
        if service.uuid.lower() != SYNC_SERVICE_UUID:
            continue
        for char in service.characteristics:
            if write_uuid is None and (
                "write" in char.properties or "write-without-response" in char.properties
            ):
                write_uuid = char.uuid
            if notify_uuid is None and "notify" in char.properties:
                notify_uuid = char.uuid
    return write_uuid, notify_uuid


class BleSyncLink:
    """Sync link to a companion reached through a connected ``BleakClient``.

    Call :meth:`start` once connected.  Outbound frames are written in order
    by background tasks; a failed context write is kept and retried on the
    next :meth:`start`.
    """

    def __init__(self, client: BleakClient, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.client = client
        self.chunk_size = chunk_size
        self.write_uuid: str | None = None
        self.notify_uuid: str | None = None
        self._started = False
        self._seq = 0
        self._assembler = FrameAssembler()
        self._inbox: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._context: bytes | None = None
        self._pending_context: bytes | None = None
        self._write_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    async def start(self) -> None:
        """Resolve the sync characteristics and subscribe to notifications."""
        write_uuid, notify_uuid = find_sync_chars(self.client)
        if write_uuid is None or notify_uuid is None:
            raise TransportUnreachableError("companion does not expose the sync service")
        self.write_uuid, self.notify_uuid = write_uuid, notify_uuid
        await self.client.start_notify(notify_uuid, self._on_notification)
        self._started = True
        logger.info("Sync link up (write=%s, notify=%s)", write_uuid, notify_uuid)
        self._flush_context()

    async def close(self) -> None:
        for task in list(self._tasks):
            await task
        if self._started and self.client.is_connected and self.notify_uuid is not None:
            try:
                await self.client.stop_notify(self.notify_uuid)
            except Exception as e:
                logger.debug("stop_notify failed: %s", e)
        self._started = False
        self._inbox.put_nowait(None)

    # -- SyncLink ----------------------------------------------------------

    def is_reachable(self) -> bool:
        return self._started and self.client.is_connected

    def send(self, data: bytes) -> None:
        if not self.is_reachable():
            raise TransportUnreachableError("companion is not connected")
        self._write(Channel.MESSAGE, data)

    def update_context(self, data: bytes) -> None:
        self._pending_context = data
        if self.is_reachable():
            self._flush_context()

    def received_context(self) -> bytes | None:
        return self._context

    async def messages(self) -> AsyncIterator[bytes]:
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            yield item

    # -- internals ---------------------------------------------------------

    def _flush_context(self) -> None:
        if self._pending_context is None:
            return
        data, self._pending_context = self._pending_context, None
        self._write(Channel.CONTEXT, data)

    def _write(self, channel: Channel, data: bytes) -> None:
        frame = build_frame(channel, data, self._seq)
        self._seq = (self._seq + 1) & 0xFF
        task = asyncio.get_running_loop().create_task(self._write_frame(channel, data, frame))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _write_frame(self, channel: Channel, data: bytes, frame: bytes) -> None:
        async with self._write_lock:
            try:
                for chunk in split_chunks(frame, self.chunk_size):
                    await self.client.write_gatt_char(self.write_uuid, chunk, response=False)
            except Exception as e:
                logger.warning("Sync write failed (%s): %s", channel.name, e)
                if channel == Channel.CONTEXT and self._pending_context is None:
                    self._pending_context = data

    def _on_notification(self, _char: BleakGATTCharacteristic, data: bytearray) -> None:
        for frame in self._assembler.feed(data):
            if frame.channel == Channel.CONTEXT:
                self._context = frame.payload
            self._inbox.put_nowait(frame.payload)
