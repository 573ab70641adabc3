"""Tests for raw register decoding."""

import math

import pytest

from collector.decoder import decode, decode_range, failed_values
from collector.models import DataType, RangeRead, ReadRequest


class TestSixteenBit:
    @pytest.mark.parametrize("word", [0, 1, 1234, 32767, 32768, 65535])
    def test_uint16_is_identity(self, word):
        value = decode([word], DataType.UINT16, 40)[0]
        assert value.parsed_value == word
        assert value.display_value == str(word)
        assert value.address == 40

    def test_int16_sign(self):
        assert decode([32768], DataType.INT16, 0)[0].parsed_value == -32768
        assert decode([65535], DataType.INT16, 0)[0].parsed_value == -1
        assert decode([32767], DataType.INT16, 0)[0].parsed_value == 32767

    def test_int16_keeps_raw_word(self):
        value = decode([0xFFFF], "int16", 5)[0]
        assert value.raw_value == 0xFFFF
        assert value.data_type == "int16"

    def test_consecutive_addresses(self):
        values = decode([1, 2, 3], DataType.UINT16, 100)
        assert [v.address for v in values] == [100, 101, 102]


class TestThirtyTwoBit:
    def test_uint32_high_word_first(self):
        value = decode([0x1234, 0x5678], DataType.UINT32, 0)[0]
        assert value.parsed_value == 0x12345678
        assert value.raw_value == 0x12345678

    def test_int32_minimum(self):
        assert decode([0x8000, 0x0000], DataType.INT32, 0)[0].parsed_value == -2147483648

    def test_int32_minus_one(self):
        assert decode([0xFFFF, 0xFFFF], DataType.INT32, 0)[0].parsed_value == -1

    def test_float32_pi(self):
        value = decode([0x4049, 0x0FD0], DataType.FLOAT32, 0)[0]
        assert value.parsed_value == pytest.approx(3.14159, abs=1e-4)
        assert value.display_value == "3.14"

    def test_float32_infinities_and_nan(self):
        assert decode([0x7F80, 0x0000], DataType.FLOAT32, 0)[0].parsed_value == math.inf
        assert decode([0xFF80, 0x0000], DataType.FLOAT32, 0)[0].parsed_value == -math.inf
        nan = decode([0x7FC0, 0x0000], DataType.FLOAT32, 0)[0]
        assert math.isnan(nan.parsed_value)
        assert nan.display_value == "nan"
        assert nan.success

    def test_float32_range_scenario(self):
        values = decode([0x4049, 0x0FD0, 0x0000, 0x0000], DataType.FLOAT32, 100)
        assert [v.address for v in values] == [100, 102]
        assert values[0].parsed_value == pytest.approx(3.14159, abs=1e-4)
        assert values[1].parsed_value == 0.0

    def test_trailing_word_dropped(self):
        values = decode([0x0000, 0x0001, 0x0002], DataType.UINT32, 10)
        assert len(values) == 1
        assert values[0].parsed_value == 1

    def test_single_word_yields_nothing(self):
        assert decode([0x1234], DataType.INT32, 10) == []


class TestFailures:
    def test_unsupported_type_yields_one_failed_value(self):
        values = decode([7, 8], "float64", 300)
        assert len(values) == 1
        assert values[0].success is False
        assert values[0].raw_value == 7
        assert values[0].address == 300
        assert "Unsupported data type" in values[0].error

    def test_unsupported_type_without_words(self):
        values = decode([], "bogus", 1)
        assert values[0].raw_value == 0

    def test_failed_values_cover_decoded_addresses(self):
        values = failed_values(ReadRequest(100, 5, DataType.FLOAT32), "timeout")
        assert [v.address for v in values] == [100, 102]
        assert all(not v.success and v.error == "timeout" for v in values)
        assert all(v.display_value == "Error" for v in values)

    def test_decode_range_success(self):
        read = RangeRead(ReadRequest(200, 2, DataType.INT16), words=[0xFFFF, 0x0010])
        assert [v.parsed_value for v in decode_range(read)] == [-1, 16]

    def test_decode_range_failure(self):
        read = RangeRead(ReadRequest(200, 2, DataType.INT16), error="Illegal data address")
        values = decode_range(read)
        assert len(values) == 2
        assert values[0].error == "Illegal data address"
