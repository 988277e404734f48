import math

import pytest

from logcodec.cbor_header import (
    MajorType,
    append_length_header,
    append_type_prefix,
    encode_float32,
    encode_float64,
)

UNSIGNED_CASES = [
    (0, b"\x00"),
    (1, b"\x01"),
    (2, b"\x02"),
    (3, b"\x03"),
    (8, b"\x08"),
    (9, b"\x09"),
    (10, b"\x0a"),
    (22, b"\x16"),
    (23, b"\x17"),
    (24, b"\x18\x18"),
    (25, b"\x18\x19"),
    (26, b"\x18\x1a"),
    (100, b"\x18\x64"),
    (254, b"\x18\xfe"),
    (255, b"\x18\xff"),
    (256, b"\x19\x01\x00"),
    (257, b"\x19\x01\x01"),
    (1000, b"\x19\x03\xe8"),
    (0xFFFF, b"\x19\xff\xff"),
    (0x10000, b"\x1a\x00\x01\x00\x00"),
    (0x7FFFFFFE, b"\x1a\x7f\xff\xff\xfe"),
    (1000000, b"\x1a\x00\x0f\x42\x40"),
    (0xABCD100000000, b"\x1b\x00\x0a\xbc\xd1\x00\x00\x00\x00"),
    (1000000000000, b"\x1b\x00\x00\x00\xe8\xd4\xa5\x10\x00"),
]

# Negative integers carry -1 - value as their argument.
NEGATIVE_CASES = [
    (0, b"\x20"),
    (1, b"\x21"),
    (2, b"\x22"),
    (9, b"\x29"),
    (20, b"\x34"),
    (21, b"\x35"),
    (22, b"\x36"),
    (23, b"\x37"),
    (24, b"\x38\x18"),
    (25, b"\x38\x19"),
    (99, b"\x38\x63"),
    (253, b"\x38\xfd"),
    (254, b"\x38\xfe"),
    (255, b"\x38\xff"),
    (256, b"\x39\x01\x00"),
    (257, b"\x39\x01\x01"),
    (999, b"\x39\x03\xe7"),
    (0x10000, b"\x3a\x00\x01\x00\x00"),
    (0x7FFFFFFD, b"\x3a\x7f\xff\xff\xfd"),
    (999999, b"\x3a\x00\x0f\x42\x3f"),
    (0xABCD100000000, b"\x3b\x00\x0a\xbc\xd1\x00\x00\x00\x00"),
    (1000000000000, b"\x3b\x00\x00\x00\xe8\xd4\xa5\x10\x00"),
]

FLOAT32_CASES = [
    (0.0, b"\xfa\x00\x00\x00\x00"),
    (1.0, b"\xfa\x3f\x80\x00\x00"),
    (1.5, b"\xfa\x3f\xc0\x00\x00"),
    (65504.0, b"\xfa\x47\x7f\xe0\x00"),
    (-4.0, b"\xfa\xc0\x80\x00\x00"),
    (0.00006103515625, b"\xfa\x38\x80\x00\x00"),
]


@pytest.mark.parametrize("value,expected", UNSIGNED_CASES)
def test_unsigned_header(value, expected):
    assert bytes(append_length_header(bytearray(), MajorType.UNSIGNED_INT, value)) == expected


@pytest.mark.parametrize("value,expected", NEGATIVE_CASES)
def test_negative_header(value, expected):
    assert bytes(append_length_header(bytearray(), MajorType.NEGATIVE_INT, value)) == expected


def test_array_length_headers():
    assert bytes(append_length_header(bytearray(), MajorType.ARRAY, 4)) == b"\x84"
    assert bytes(append_length_header(bytearray(), MajorType.ARRAY, 3)) == b"\x83"
    assert bytes(append_length_header(bytearray(), MajorType.ARRAY, 25)) == b"\x98\x19"


def test_string_length_headers():
    assert bytes(append_length_header(bytearray(), MajorType.UTF8_STRING, 0)) == b"\x60"
    assert bytes(append_length_header(bytearray(), MajorType.UTF8_STRING, 30)) == b"\x78\x1e"
    assert bytes(append_length_header(bytearray(), MajorType.UTF8_STRING, 300)) == b"\x79\x01\x2c"
    assert (
        bytes(append_length_header(bytearray(), MajorType.UTF8_STRING, 70000))
        == b"\x7a\x00\x01\x11\x70"
    )
    assert bytes(append_length_header(bytearray(), MajorType.BYTE_STRING, 70000)) == (
        b"\x5a\x00\x01\x11\x70"
    )


def test_type_prefix_always_uses_explicit_argument():
    assert bytes(append_type_prefix(bytearray(), MajorType.UNSIGNED_INT, 5)) == b"\x18\x05"


def test_append_extends_existing_buffer():
    dst = bytearray(b"\xbf")
    result = append_length_header(dst, MajorType.UNSIGNED_INT, 1000)
    assert result is dst
    assert bytes(dst) == b"\xbf\x19\x03\xe8"


@pytest.mark.parametrize("number", [-1, 1 << 64])
def test_type_prefix_rejects_out_of_range(number):
    with pytest.raises(ValueError):
        append_type_prefix(bytearray(), MajorType.UNSIGNED_INT, number)


@pytest.mark.parametrize(
    "major,expected",
    [
        (MajorType.UNSIGNED_INT, b"\x00"),
        (MajorType.NEGATIVE_INT, b"\x20"),
        (MajorType.BYTE_STRING, b"\x40"),
        (MajorType.UTF8_STRING, b"\x60"),
        (MajorType.ARRAY, b"\x80"),
        (MajorType.MAP, b"\xa0"),
        (MajorType.TAGS, b"\xc0"),
        (MajorType.SIMPLE_AND_FLOAT, b"\xe0"),
    ],
)
def test_major_type_header_byte(major, expected):
    assert bytes(append_length_header(bytearray(), major, 0)) == expected


@pytest.mark.parametrize("value,expected", FLOAT32_CASES)
def test_encode_float32(value, expected):
    assert encode_float32(value) == expected


def test_encode_float32_specials():
    assert encode_float32(math.nan) == b"\xfa\x7f\xc0\x00\x00"
    assert encode_float32(math.inf) == b"\xfa\x7f\x80\x00\x00"
    assert encode_float32(-math.inf) == b"\xfa\xff\x80\x00\x00"


def test_encode_float32_overflow_becomes_infinity():
    assert encode_float32(1e300) == b"\xfa\x7f\x80\x00\x00"
    assert encode_float32(-1e300) == b"\xfa\xff\x80\x00\x00"


def test_encode_float64_values():
    assert encode_float64(1.0) == b"\xfb\x3f\xf0\x00\x00\x00\x00\x00\x00"
    assert encode_float64(-4.0) == b"\xfb\xc0\x10\x00\x00\x00\x00\x00\x00"
    assert len(encode_float64(3.14)) == 9


def test_encode_float64_specials():
    assert encode_float64(math.nan) == b"\xfb\x7f\xf8\x00\x00\x00\x00\x00\x00"
    assert encode_float64(math.inf) == b"\xfb\x7f\xf0\x00\x00\x00\x00\x00\x00"
    assert encode_float64(-math.inf) == b"\xfb\xff\xf0\x00\x00\x00\x00\x00\x00"