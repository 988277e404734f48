"""CBOR major types, wire constants and header/float encoding helpers."""

from __future__ import annotations

import enum
import math
import struct

MAJOR_OFFSET = 5
ADDITIONAL_MAX = 23

# Simple values.
ADDITIONAL_TYPE_BOOL_FALSE = 20
ADDITIONAL_TYPE_BOOL_TRUE = 21
ADDITIONAL_TYPE_NULL = 22

# Integer argument widths.
ADDITIONAL_TYPE_INT_UINT8 = 24
ADDITIONAL_TYPE_INT_UINT16 = 25
ADDITIONAL_TYPE_INT_UINT32 = 26
ADDITIONAL_TYPE_INT_UINT64 = 27

# Float widths.
ADDITIONAL_TYPE_FLOAT16 = 25
ADDITIONAL_TYPE_FLOAT32 = 26
ADDITIONAL_TYPE_FLOAT64 = 27
ADDITIONAL_TYPE_BREAK = 31

# Tags.
ADDITIONAL_TYPE_TIMESTAMP = 1
TAG_NETWORK_ADDR = 260
TAG_NETWORK_PREFIX = 261
TAG_EMBEDDED_JSON = 262
TAG_HEX_STRING = 263

ADDITIONAL_TYPE_INFINITE_COUNT = 31

MASK_OUT_ADDITIONAL_TYPE = 7 << MAJOR_OFFSET
MASK_OUT_MAJOR_TYPE = 31

FLOAT32_NAN = b"\xfa\x7f\xc0\x00\x00"
FLOAT32_POS_INFINITY = b"\xfa\x7f\x80\x00\x00"
FLOAT32_NEG_INFINITY = b"\xfa\xff\x80\x00\x00"
FLOAT64_NAN = b"\xfb\x7f\xf8\x00\x00\x00\x00\x00\x00"
FLOAT64_POS_INFINITY = b"\xfb\x7f\xf0\x00\x00\x00\x00\x00\x00"
FLOAT64_NEG_INFINITY = b"\xfb\xff\xf0\x00\x00\x00\x00\x00\x00"

_UINT64_MAX = (1 << 64) - 1


class MajorType(enum.IntEnum):
    """CBOR major types, already shifted into the top three bits."""

    UNSIGNED_INT = 0 << MAJOR_OFFSET
    NEGATIVE_INT = 1 << MAJOR_OFFSET
    BYTE_STRING = 2 << MAJOR_OFFSET
    UTF8_STRING = 3 << MAJOR_OFFSET
    ARRAY = 4 << MAJOR_OFFSET
    MAP = 5 << MAJOR_OFFSET
    TAGS = 6 << MAJOR_OFFSET
    SIMPLE_AND_FLOAT = 7 << MAJOR_OFFSET


def append_type_prefix(dst: bytearray, major: int, number: int) -> bytearray:
    """Append a header with an explicit 1, 2, 4 or 8 byte argument."""
    if not 0 <= number <= _UINT64_MAX:
        raise ValueError(f"CBOR argument out of range: {number}")
    if number < 1 << 8:
        minor, width = ADDITIONAL_TYPE_INT_UINT8, 1
    elif number < 1 << 16:
        minor, width = ADDITIONAL_TYPE_INT_UINT16, 2
    elif number < 1 << 32:
        minor, width = ADDITIONAL_TYPE_INT_UINT32, 4
    else:
        minor, width = ADDITIONAL_TYPE_INT_UINT64, 8
    dst.append(int(major) | minor)
    dst += number.to_bytes(width, "big")
    return dst


def append_length_header(dst: bytearray, major: int, length: int) -> bytearray:
    """Append a header, packing small arguments into the initial byte."""
    if 0 <= length <= ADDITIONAL_MAX:
        dst.append(int(major) | length)
        return dst
    return append_type_prefix(dst, major, length)


def encode_float32(val: float) -> bytes:
    """Encode a value as a single precision CBOR float."""
    if math.isnan(val):
        return FLOAT32_NAN
    if math.isinf(val):
        return FLOAT32_POS_INFINITY if val > 0 else FLOAT32_NEG_INFINITY
    try:
        packed = struct.pack(">f", val)
    except OverflowError:
        return FLOAT32_POS_INFINITY if val > 0 else FLOAT32_NEG_INFINITY
    return bytes([MajorType.SIMPLE_AND_FLOAT | ADDITIONAL_TYPE_FLOAT32]) + packed


def encode_float64(val: float) -> bytes:
    """Encode a value as a double precision CBOR float."""
    if math.isnan(val):
        return FLOAT64_NAN
    if math.isinf(val):
        return FLOAT64_POS_INFINITY if val > 0 else FLOAT64_NEG_INFINITY
    return bytes([MajorType.SIMPLE_AND_FLOAT | ADDITIONAL_TYPE_FLOAT64]) + struct.pack(
        ">d", val
    )