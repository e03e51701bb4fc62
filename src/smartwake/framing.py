"""Byte framing for sync envelopes carried over a BLE characteristic.

Frame format::

    [SOF: 0xAA] [LENGTH: 2B LE] [CRC8: 1B] [CHANNEL] [SEQ] [PAYLOAD...] [CRC32: 4B LE]

- LENGTH: len(CHANNEL+SEQ+PAYLOAD) + 4 (for the CRC32 trailer)
- CRC8: CRC-8 (poly 0x07) over the 2-byte LENGTH field
- CHANNEL: 0x01 ephemeral message, 0x02 replicated context
- SEQ: per-link sequence number, wraps at 256
- CRC32: standard CRC-32 (zlib) over CHANNEL+SEQ+PAYLOAD, little-endian

A frame is usually larger than one ATT write, so the sender splits it into
chunks and the receiver reassembles with :class:`FrameAssembler`.
"""

from __future__ import annotations

import struct
import zlib
from dataclasses import dataclass
from enum import IntEnum

SOF = 0xAA
LENGTH_SIZE = 2
CRC8_SIZE = 1
CRC32_SIZE = 4
HEADER_SIZE = 1 + LENGTH_SIZE + CRC8_SIZE  # 4 bytes before CHANNEL
MIN_FRAME_SIZE = HEADER_SIZE + 2 + CRC32_SIZE  # empty payload
MAX_PAYLOAD_SIZE = 0xFFFF - 2 - CRC32_SIZE


class Channel(IntEnum):
    MESSAGE = 0x01
    CONTEXT = 0x02


# ---------------------------------------------------------------------------
# CRC implementations
# ---------------------------------------------------------------------------


def _crc8_table(poly: int = 0x07) -> list[int]:
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            crc = ((crc << 1) ^ poly) & 0xFF if crc & 0x80 else (crc << 1) & 0xFF
        table.append(crc)
    return table


_CRC8_TABLE = _crc8_table()


def crc8(data: bytes | bytearray) -> int:
    """CRC-8 with polynomial 0x07, computed over the given bytes."""
    crc = 0
    for b in data:
        crc = _CRC8_TABLE[crc ^ b]
    return crc


def crc32(data: bytes | bytearray) -> int:
    """Standard CRC-32 (zlib-compatible)."""
    return zlib.crc32(bytes(data)) & 0xFFFFFFFF


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Frame:
    channel: Channel
    seq: int
    payload: bytes

    def __repr__(self) -> str:
        return f"Frame({self.channel.name}, seq={self.seq}, {len(self.payload)}B)"


def build_frame(channel: Channel, payload: bytes, seq: int = 0) -> bytes:
    """Build a fully framed payload with valid CRC-8 and CRC-32."""
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise ValueError(f"payload too large for one frame: {len(payload)} bytes")
    inner = bytes([int(channel), seq & 0xFF]) + payload
    length_bytes = struct.pack("<H", len(inner) + CRC32_SIZE)
    return (
        bytes([SOF])
        + length_bytes
        + bytes([crc8(length_bytes)])
        + inner
        + struct.pack("<I", crc32(inner))
    )


def parse_frame(data: bytes | bytearray) -> Frame | None:
    """Parse one complete frame.  Returns None on any framing or CRC error."""
    data = bytes(data)
    if len(data) < MIN_FRAME_SIZE or data[0] != SOF:
        return None
    if crc8(data[1:3]) != data[3]:
        return None

    length_field = struct.unpack_from("<H", data, 1)[0]
    inner_size = length_field - CRC32_SIZE
    if inner_size < 2 or len(data) < HEADER_SIZE + length_field:
        return None

    inner = data[HEADER_SIZE:HEADER_SIZE + inner_size]
    stored_crc32 = struct.unpack_from("<I", data, HEADER_SIZE + inner_size)[0]
    if stored_crc32 != crc32(inner):
        return None

    try:
        channel = Channel(inner[0])
    except ValueError:
        return None
    return Frame(channel=channel, seq=inner[1], payload=inner[2:])


def split_chunks(frame: bytes, chunk_size: int) -> list[bytes]:
    """Split a frame into write-sized chunks."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return [frame[i:i + chunk_size] for i in range(0, len(frame), chunk_size)]


class FrameAssembler:
    """Reassemble frames from arbitrarily split notification chunks.

    Bytes before a start-of-frame marker, and frames that fail their CRC,
    are skipped one byte at a time so the stream resynchronizes.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self.dropped = 0

    def feed(self, chunk: bytes | bytearray) -> list[Frame]:
        self._buffer.extend(chunk)
        frames: list[Frame] = []

        while self._buffer:
            idx = self._buffer.find(SOF)
            if idx == -1:
                self.dropped += len(self._buffer)
                self._buffer.clear()
                break
            if idx > 0:
                self.dropped += idx
                del self._buffer[:idx]

            if len(self._buffer) < HEADER_SIZE:
                break
            if crc8(self._buffer[1:3]) != self._buffer[3]:
                self._skip()
                continue

            length_field = struct.unpack_from("<H", self._buffer, 1)[0]
            total = HEADER_SIZE + length_field
            if len(self._buffer) < total:
                break

            frame = parse_frame(self._buffer[:total])
            if frame is None:
                self._skip()
                continue
            frames.append(frame)
            del self._buffer[:total]

        return frames

    def _skip(self) -> None:
        self.dropped += 1
        del self._buffer[:1]

    @property
    def pending(self) -> int:
        return len(self._buffer)
