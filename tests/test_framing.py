"""Tests for framing.py — frame layout, CRCs and chunk reassembly."""

import struct

import pytest

from smartwake.framing import (
    CRC32_SIZE,
    HEADER_SIZE,
    MAX_PAYLOAD_SIZE,
    SOF,
    Channel,
    FrameAssembler,
    build_frame,
    crc8,
    crc32,
    parse_frame,
    split_chunks,
)


class TestCrc:
    def test_crc8_known_values(self):
        assert crc8(b"") == 0
        assert crc8(b"\x80") == 0x89
        # CRC-8/SMBUS check value
        assert crc8(b"123456789") == 0xF4

    def test_crc32_matches_standard_check(self):
        assert crc32(b"123456789") == 0xCBF43926


class TestBuildFrame:
    def test_layout(self):
        frame = build_frame(Channel.CONTEXT, b"hello", seq=7)
        assert frame[0] == SOF
        length = struct.unpack_from("<H", frame, 1)[0]
        assert length == 2 + 5 + CRC32_SIZE
        assert frame[3] == crc8(frame[1:3])
        assert frame[4] == Channel.CONTEXT
        assert frame[5] == 7
        assert frame[6:11] == b"hello"
        assert len(frame) == HEADER_SIZE + length

    def test_seq_wraps(self):
        assert build_frame(Channel.MESSAGE, b"", seq=257)[5] == 1

    def test_oversized_payload(self):
        with pytest.raises(ValueError):
            build_frame(Channel.MESSAGE, bytes(MAX_PAYLOAD_SIZE + 1))


class TestParseFrame:
    def test_round_trip(self):
        frame = parse_frame(build_frame(Channel.MESSAGE, b'{"type":"ping"}', seq=3))
        assert frame.channel == Channel.MESSAGE
        assert frame.seq == 3
        assert frame.payload == b'{"type":"ping"}'

    def test_corrupt_payload(self):
        data = bytearray(build_frame(Channel.MESSAGE, b"abc"))
        data[7] ^= 0xFF
        assert parse_frame(data) is None

    def test_corrupt_length_crc(self):
        data = bytearray(build_frame(Channel.MESSAGE, b"abc"))
        data[3] ^= 0x01
        assert parse_frame(data) is None

    def test_truncated(self):
        assert parse_frame(build_frame(Channel.MESSAGE, b"abcdef")[:-2]) is None

    def test_wrong_sof(self):
        data = bytearray(build_frame(Channel.MESSAGE, b"abc"))
        data[0] = 0x55
        assert parse_frame(data) is None

    def test_unknown_channel(self):
        inner = bytes([0x09, 0]) + b"x"
        length = struct.pack("<H", len(inner) + CRC32_SIZE)
        data = bytes([SOF]) + length + bytes([crc8(length)]) + inner + struct.pack("<I", crc32(inner))
        assert parse_frame(data) is None


class TestSplitChunks:
    def test_sizes(self):
        chunks = split_chunks(bytes(45), 20)
        assert [len(c) for c in chunks] == [20, 20, 5]

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            split_chunks(b"abc", 0)


class TestFrameAssembler:
    def test_reassembles_chunks(self):
        payload = b'{"schemaVersion":1,"type":"ping"}'
        assembler = FrameAssembler()
        frames = []
        for chunk in split_chunks(build_frame(Channel.CONTEXT, payload), 7):
            frames.extend(assembler.feed(chunk))
        assert len(frames) == 1
        assert frames[0].payload == payload
        assert assembler.pending == 0

    def test_two_frames_in_one_chunk(self):
        data = build_frame(Channel.MESSAGE, b"a", seq=1) + build_frame(Channel.MESSAGE, b"b", seq=2)
        frames = FrameAssembler().feed(data)
        assert [f.payload for f in frames] == [b"a", b"b"]

    def test_skips_leading_garbage(self):
        assembler = FrameAssembler()
        frames = assembler.feed(b"\x01\x02\x03" + build_frame(Channel.MESSAGE, b"ok"))
        assert [f.payload for f in frames] == [b"ok"]
        assert assembler.dropped == 3

    def test_resyncs_after_corrupt_frame(self):
        bad = bytearray(build_frame(Channel.MESSAGE, b"bad"))
        bad[-1] ^= 0xFF
        assembler = FrameAssembler()
        frames = assembler.feed(bytes(bad) + build_frame(Channel.MESSAGE, b"good"))
        assert [f.payload for f in frames] == [b"good"]
        assert assembler.dropped > 0

    def test_partial_frame_waits(self):
        frame = build_frame(Channel.MESSAGE, b"partial")
        assembler = FrameAssembler()
        assert assembler.feed(frame[:6]) == []
        assert assembler.pending == 6
        assert [f.payload for f in assembler.feed(frame[6:])] == [b"partial"]
