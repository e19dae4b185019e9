"""Tests for the little-endian stream reader and .NET timestamp decoding."""

import struct
from datetime import datetime, timezone

import pytest

from play_history.core.errors import PerRecordDecodeError, StructuralDecodeError
from play_history.core.sources.binary import (
    BinaryStream,
    encode_string,
    encode_uleb128,
    ticks_to_datetime,
)

from conftest import PLAYED_AT, ticks


class TestTicks:
    def test_utc_kind(self):
        assert ticks_to_datetime(ticks(PLAYED_AT)) == PLAYED_AT

    def test_unspecified_kind_reads_as_utc(self):
        assert ticks_to_datetime(ticks(PLAYED_AT, kind=0)) == PLAYED_AT

    def test_local_kind_keeps_utc_ticks(self):
        assert ticks_to_datetime(ticks(PLAYED_AT, kind=2 << 62)) == PLAYED_AT

    def test_local_kind_wrapped_below_zero(self):
        """A wrapped Local-kind value that lands before year 1 is rejected."""
        with pytest.raises(PerRecordDecodeError):
            ticks_to_datetime((2 << 62) | ((1 << 62) - 10))

    def test_out_of_range_is_a_record_error(self):
        with pytest.raises(PerRecordDecodeError):
            ticks_to_datetime((1 << 62) | 3_155_378_976_000_000_000)

    def test_result_is_aware(self):
        moment = ticks_to_datetime(ticks(datetime(2020, 1, 1, tzinfo=timezone.utc)))
        assert moment.tzinfo is not None


class TestBinaryStream:
    def test_reads_in_order(self):
        data = struct.pack("<BhHiqfd", 7, -2, 65000, -5, 1 << 40, 1.5, 2.25)
        stream = BinaryStream(data)
        assert stream.read_byte() == 7
        assert stream.read_int16() == -2
        assert stream.read_uint16() == 65000
        assert stream.read_int32() == -5
        assert stream.read_int64() == 1 << 40
        assert stream.read_float32() == 1.5
        assert stream.read_float64() == 2.25
        assert stream.remaining == 0

    def test_strings(self):
        data = encode_string("héllo") + encode_string(None) + b"\x05"
        stream = BinaryStream(data)
        assert stream.read_string() == "héllo"
        assert stream.read_string() == ""
        # unknown flag reads as empty
        assert stream.read_string() == ""

    def test_long_string_length(self):
        text = "x" * 300
        assert encode_uleb128(300) == b"\xac\x02"
        assert BinaryStream(encode_string(text)).read_string() == text

    def test_short_read_reports_offset(self):
        stream = BinaryStream(b"\x01\x02", source="scores.db")
        stream.read_byte()
        with pytest.raises(StructuralDecodeError) as info:
            stream.read_int32()
        assert info.value.offset == 1

    def test_seek_bounds(self):
        stream = BinaryStream(b"\x00" * 4)
        stream.seek(4)
        assert stream.remaining == 0
        with pytest.raises(StructuralDecodeError):
            stream.seek(5)
