# collector/decoder.py

from __future__ import annotations

import math
import struct
from typing import List, Sequence

from .errors import DecodeError
from .models import DataType, DecodedValue, ReadRequest

# 32-bit values span two registers, high word first:
#   w0 : bits 31..16
#   w1 : bits 15..0


def _read_u32(words: Sequence[int]) -> int:
    if len(words) != 2:
        raise DecodeError(f"Need exactly 2 words for a 32-bit value, got {len(words)}")
    return ((words[0] & 0xFFFF) << 16) | (words[1] & 0xFFFF)


def _decode_s16(word: int) -> int:
    word &= 0xFFFF
    return word - 0x1_0000 if word > 0x7FFF else word


def _decode_s32(bits: int) -> int:
    """Interpret a 32-bit pattern as signed two's complement."""
    if bits & 0x8000_0000:
        bits -= 0x1_0000_0000
    return bits


def _decode_f32(bits: int) -> float:
    """Reinterpret the 32-bit pattern as a big-endian IEEE-754 single."""
    return struct.unpack(">f", struct.pack(">I", bits))[0]


def _display_float(value: float) -> str:
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return f"{value:.2f}"


def decode(words: Sequence[int], data_type, start_address: int) -> List[DecodedValue]:
    """
    Decode raw holding register words into typed values.

    16-bit types yield one value per word at consecutive addresses. 32-bit
    types consume complete pairs; the value's address is that of its high
    word, and a trailing unpaired word is dropped.

    An unsupported type yields a single failed value carrying the first raw
    word. This function does not raise.
    """
    try:
        dtype = DataType.parse(data_type)
    except ValueError:
        err = DecodeError(f"Unsupported data type: {data_type}")
        return [_failed(start_address, words[0] if words else 0, str(data_type), str(err))]

    name = dtype.value
    values: List[DecodedValue] = []

    if dtype is DataType.UINT16:
        for i, w in enumerate(words):
            w &= 0xFFFF
            values.append(DecodedValue(start_address + i, w, w, str(w), name))

    elif dtype is DataType.INT16:
        for i, w in enumerate(words):
            v = _decode_s16(w)
            values.append(DecodedValue(start_address + i, w & 0xFFFF, v, str(v), name))

    else:
        for i in range(0, len(words) - 1, 2):
            bits = _read_u32(words[i:i + 2])
            address = start_address + i
            if dtype is DataType.UINT32:
                values.append(DecodedValue(address, bits, bits, str(bits), name))
            elif dtype is DataType.INT32:
                v = _decode_s32(bits)
                values.append(DecodedValue(address, bits, v, str(v), name))
            else:
                f = _decode_f32(bits)
                values.append(DecodedValue(address, bits, f, _display_float(f), name))

    return values


def decode_range(read) -> List[DecodedValue]:
    """Decode one transport answer; a failed read becomes failed values."""
    if not read.success:
        return failed_values(read.request, read.error or "Read failed")
    return decode(read.words, read.request.data_type, read.request.start)


def failed_values(request: ReadRequest, error: str) -> List[DecodedValue]:
    """
    One failed value per address the request would have decoded to, so a
    failed range still occupies its CSV columns.
    """
    try:
        step = DataType.parse(request.data_type).word_count
    except ValueError:
        return [_failed(request.start, 0, str(request.data_type), error)]

    name = DataType.parse(request.data_type).value
    usable = request.count - (request.count % step)
    return [
        _failed(address, 0, name, error)
        for address in range(request.start, request.start + usable, step)
    ]


def _failed(address: int, raw: int, data_type: str, error: str) -> DecodedValue:
    return DecodedValue(
        address=address,
        raw_value=raw,
        parsed_value=0,
        display_value="Error",
        data_type=data_type,
        success=False,
        error=error,
    )
