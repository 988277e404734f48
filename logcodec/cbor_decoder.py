"""Decoding of CBOR encoded log records into JSON text."""

from __future__ import annotations

import ipaddress
import math
import struct
from datetime import datetime, timedelta, timezone, tzinfo
from decimal import Decimal
from typing import BinaryIO, Optional, Union

from logcodec.cbor_header import (
    ADDITIONAL_TYPE_BOOL_FALSE,
    ADDITIONAL_TYPE_BOOL_TRUE,
    ADDITIONAL_TYPE_BREAK,
    ADDITIONAL_TYPE_FLOAT16,
    ADDITIONAL_TYPE_FLOAT32,
    ADDITIONAL_TYPE_FLOAT64,
    ADDITIONAL_TYPE_INFINITE_COUNT,
    ADDITIONAL_TYPE_INT_UINT8,
    ADDITIONAL_TYPE_INT_UINT16,
    ADDITIONAL_TYPE_INT_UINT32,
    ADDITIONAL_TYPE_INT_UINT64,
    ADDITIONAL_TYPE_NULL,
    ADDITIONAL_TYPE_TIMESTAMP,
    FLOAT32_NAN,
    FLOAT32_NEG_INFINITY,
    FLOAT32_POS_INFINITY,
    FLOAT64_NAN,
    FLOAT64_NEG_INFINITY,
    FLOAT64_POS_INFINITY,
    MASK_OUT_ADDITIONAL_TYPE,
    MASK_OUT_MAJOR_TYPE,
    TAG_EMBEDDED_JSON,
    TAG_HEX_STRING,
    TAG_NETWORK_ADDR,
    TAG_NETWORK_PREFIX,
    MajorType,
)

FLOAT32_WIDTH = 4
FLOAT64_WIDTH = 8

_BREAK = MajorType.SIMPLE_AND_FLOAT | ADDITIONAL_TYPE_BREAK
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_NANOS = 1_000_000_000
_HEX = "0123456789abcdef"
_INT_WIDTHS = {
    ADDITIONAL_TYPE_INT_UINT8: 1,
    ADDITIONAL_TYPE_INT_UINT16: 2,
    ADDITIONAL_TYPE_INT_UINT32: 4,
    ADDITIONAL_TYPE_INT_UINT64: 8,
}
_SHORT_ESCAPES = {
    0x22: b'\\"',
    0x5C: b"\\\\",
    0x08: b"\\b",
    0x0C: b"\\f",
    0x0A: b"\\n",
    0x0D: b"\\r",
    0x09: b"\\t",
}


class DecodeError(ValueError):
    """Raised when the input is not valid or is truncated CBOR."""


def _to_int64(value: int) -> int:
    value &= (1 << 64) - 1
    return value - (1 << 64) if value >= 1 << 63 else value


def _needs_escape(b: int) -> bool:
    return b < 0x20 or b > 0x7E or b == 0x5C or b == 0x22


def _rune_size(data: bytes, i: int) -> int:
    """Size of a valid UTF-8 sequence at ``i``, or 0 if it is invalid."""
    lead = data[i]
    if 0xC2 <= lead <= 0xDF:
        size = 2
    elif 0xE0 <= lead <= 0xEF:
        size = 3
    elif 0xF0 <= lead <= 0xF4:
        size = 4
    else:
        return 0
    try:
        data[i : i + size].decode("utf-8")
    except UnicodeDecodeError:
        return 0
    return size


def _escape_from(data: bytes, pos: int) -> bytes:
    """JSON-escape ``data``, scanning for special characters from ``pos``."""
    out = bytearray()
    i, start, n = pos, 0, len(data)
    while i < n:
        b = data[i]
        if b >= 0x80:
            size = _rune_size(data, i)
            if size == 0:
                out += data[start:i]
                out += b"\\ufffd"
                i += 1
                start = i
            else:
                i += size
            continue
        if 0x20 <= b <= 0x7E and b not in (0x5C, 0x22):
            i += 1
            continue
        out += data[start:i]
        out += _SHORT_ESCAPES.get(b) or ("\\u00" + _HEX[b >> 4] + _HEX[b & 0xF]).encode()
        i += 1
        start = i
    out += data[start:]
    return bytes(out)


def _fixed(text: str) -> str:
    return format(Decimal(text).normalize(), "f")


def _format_float32(val: float) -> str:
    text = repr(val)
    for digits in range(1, 10):
        candidate = f"{val:.{digits}g}"
        try:
            back = struct.unpack(">f", struct.pack(">f", float(candidate)))[0]
        except OverflowError:
            continue
        if back == val:
            text = candidate
            break
    return _fixed(text)


def _format_float64(val: float) -> str:
    return _fixed(repr(val))


def _format_rfc3339(dt: datetime, nanos: int) -> str:
    text = (
        f"{dt.year:04d}-{dt.month:02d}-{dt.day:02d}"
        f"T{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d}"
    )
    if nanos:
        text += "." + f"{nanos:09d}".rstrip("0")
    offset = dt.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        return text + "Z"
    sign = "-" if offset < timedelta(0) else "+"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _format_ip(octets: bytes) -> str:
    if len(octets) == 4:
        return str(ipaddress.IPv4Address(octets))
    address = ipaddress.IPv6Address(octets)
    if address.ipv4_mapped is not None:
        return str(address.ipv4_mapped)
    return str(address)


class Decoder:
    """Reads CBOR objects from a byte string and renders them as JSON.

    Containers are written into :attr:`output` as they are decoded, so a
    failure part way leaves the text produced so far in place.
    """

    def __init__(self, data: Union[bytes, bytearray], time_zone: Optional[tzinfo] = None):
        self._data = bytes(data)
        self._pos = 0
        self._out = bytearray()
        self.time_zone = time_zone if time_zone is not None else timezone.utc

    @property
    def output(self) -> bytes:
        """All JSON text written so far."""
        return bytes(self._out)

    def at_end(self) -> bool:
        """True when no input bytes remain."""
        return self._pos >= len(self._data)

    def _read_byte(self) -> int:
        if self.at_end():
            raise DecodeError("Tried to Read 1 Byte.. But hit end of file")
        b = self._data[self._pos]
        self._pos += 1
        return b

    def _read(self, n: int) -> bytes:
        if n < 0 or self._pos + n > len(self._data):
            raise DecodeError(f"Tried to Read {n} Bytes.. But hit end of file")
        chunk = self._data[self._pos : self._pos + n]
        self._pos += n
        return chunk

    def _peek(self) -> int:
        if self.at_end():
            raise DecodeError("EOF")
        return self._data[self._pos]

    def _header(self) -> tuple[int, int]:
        b = self._read_byte()
        return b & MASK_OUT_ADDITIONAL_TYPE, b & MASK_OUT_MAJOR_TYPE

    def _argument(self, minor: int) -> int:
        if minor <= 23:
            return minor
        width = _INT_WIDTHS.get(minor)
        if width is None:
            raise DecodeError(
                f"Invalid Additional Type: {minor} in decodeInteger (expected <28)"
            )
        return _to_int64(int.from_bytes(self._read(width), "big"))

    def decode_integer(self) -> int:
        """Decode an unsigned or negative integer."""
        major, minor = self._header()
        if major not in (MajorType.UNSIGNED_INT, MajorType.NEGATIVE_INT):
            raise DecodeError(
                f"Major type is: {major} in decodeInteger!! (expected 0 or 1)"
            )
        val = self._argument(minor)
        return val if major == MajorType.UNSIGNED_INT else -1 - val

    def decode_float(self) -> tuple[float, int]:
        """Decode a float; returns the value and its width in bytes (4 or 8)."""
        major, minor = self._header()
        if major != MajorType.SIMPLE_AND_FLOAT:
            raise DecodeError(f"Incorrect Major type is: {major} in decodeFloat")
        if minor == ADDITIONAL_TYPE_FLOAT16:
            raise DecodeError("float16 is not supported in decodeFloat")
        if minor == ADDITIONAL_TYPE_FLOAT32:
            raw = self._read(4)
            special = {
                FLOAT32_NAN[1:]: math.nan,
                FLOAT32_POS_INFINITY[1:]: math.inf,
                FLOAT32_NEG_INFINITY[1:]: -math.inf,
            }.get(raw)
            if special is not None:
                return special, FLOAT32_WIDTH
            return struct.unpack(">f", raw)[0], FLOAT32_WIDTH
        if minor == ADDITIONAL_TYPE_FLOAT64:
            raw = self._read(8)
            special = {
                FLOAT64_NAN[1:]: math.nan,
                FLOAT64_POS_INFINITY[1:]: math.inf,
                FLOAT64_NEG_INFINITY[1:]: -math.inf,
            }.get(raw)
            if special is not None:
                return special, FLOAT64_WIDTH
            return struct.unpack(">d", raw)[0], FLOAT64_WIDTH
        raise DecodeError(f"Invalid Additional Type: {minor} in decodeFloat")

    def decode_string(self, no_quotes: bool = False) -> bytes:
        """Decode a byte string, copied raw, optionally wrapped in quotes."""
        major, minor = self._header()
        if major != MajorType.BYTE_STRING:
            raise DecodeError(f"Major type is: {major} in decodeString")
        raw = self._read(self._argument(minor))
        return raw if no_quotes else b'"' + raw + b'"'

    def decode_utf8_string(self) -> bytes:
        """Decode a text string into a quoted, JSON-escaped string."""
        major, minor = self._header()
        if major != MajorType.UTF8_STRING:
            raise DecodeError(f"Major type is: {major} in decodeUTF8String")
        raw = self._read(self._argument(minor))
        first = next((i for i, b in enumerate(raw) if _needs_escape(b)), None)
        if first is None:
            return b'"' + raw + b'"'
        return b'"' + _escape_from(raw, first) + b'"'

    def _container_count(self, minor: int) -> Optional[int]:
        if minor == ADDITIONAL_TYPE_INFINITE_COUNT:
            return None
        count = self._argument(minor)
        if count < 0:
            raise DecodeError(f"Invalid container length: {count}")
        return count

    def _consume_break(self) -> bool:
        if self._peek() == _BREAK:
            self._pos += 1
            return True
        return False

    def decode_array(self) -> bytes:
        """Decode an array into JSON; returns the text written for it."""
        start = len(self._out)
        self._out += b"["
        major, minor = self._header()
        if major != MajorType.ARRAY:
            raise DecodeError(f"Major type is: {major} in array2Json")
        count = self._container_count(minor)
        i = 0
        while count is None or i < count:
            if count is None and self._consume_break():
                break
            self.decode_object()
            if count is None:
                if self._consume_break():
                    break
                self._out += b","
            elif i + 1 < count:
                self._out += b","
            i += 1
        self._out += b"]"
        return bytes(self._out[start:])

    def decode_map(self) -> bytes:
        """Decode a map into JSON; returns the text written for it."""
        start = len(self._out)
        major, minor = self._header()
        if major != MajorType.MAP:
            raise DecodeError(f"Major type is: {major} in map2Json")
        count = self._container_count(minor)
        self._out += b"{"
        i = 0
        while count is None or i < count:
            if count is None and self._consume_break():
                break
            self.decode_object()
            if i % 2 == 0:
                self._out += b":"
            elif count is None:
                if self._consume_break():
                    break
                self._out += b","
            elif i + 1 < count:
                self._out += b","
            i += 1
        self._out += b"}"
        return bytes(self._out[start:])

    def _timestamp(self) -> bytes:
        major = self._peek() & MASK_OUT_ADDITIONAL_TYPE
        if major in (MajorType.UNSIGNED_INT, MajorType.NEGATIVE_INT):
            seconds, nanos = self.decode_integer(), 0
        elif major == MajorType.SIMPLE_AND_FLOAT:
            value, _ = self.decode_float()
            if not math.isfinite(value):
                raise DecodeError(f"Timestamp is not a finite number: {value}")
            whole = int(value)
            total = whole * _NANOS + int((value - whole) * 1e9)
            seconds, nanos = divmod(total, _NANOS)
        else:
            raise DecodeError(f"TS format is neither int nor float: {major}")
        try:
            moment = (_EPOCH + timedelta(seconds=seconds)).astimezone(self.time_zone)
        except OverflowError as exc:
            raise DecodeError(f"Timestamp out of range: {seconds}") from exc
        return b'"' + _format_rfc3339(moment, nanos).encode() + b'"'

    def _network_prefix(self) -> bytes:
        if self._read_byte() != MajorType.MAP | 1:
            raise DecodeError("IP Prefix is NOT of MAP of 1 elements as expected")
        octets = self.decode_string(no_quotes=True)
        length = self.decode_integer()
        bits = {4: 32, 16: 128}.get(len(octets))
        if bits is None:
            raise DecodeError(f"Unexpected IP Prefix address length: {len(octets)}")
        if not 0 <= length <= bits:
            raise DecodeError(f"Invalid IP Prefix length: {length}")
        if bits == 128 and ipaddress.IPv6Address(octets).ipv4_mapped is not None:
            length = max(length - 96, 0)
        return f'"{_format_ip(octets)}/{length}"'.encode()

    def decode_tag(self) -> bytes:
        """Decode a tagged value (timestamp, address, prefix, JSON or hex)."""
        major, minor = self._header()
        if major != MajorType.TAGS:
            raise DecodeError(f"Major type is: {major} in decodeTagData")
        if minor == ADDITIONAL_TYPE_TIMESTAMP:
            return self._timestamp()
        if minor != ADDITIONAL_TYPE_INT_UINT16:
            raise DecodeError(f"Unsupported Additional Type: {minor} in decodeTagData")
        tag = self._argument(minor)
        if tag == TAG_EMBEDDED_JSON:
            data_major = self._peek() & MASK_OUT_ADDITIONAL_TYPE
            if data_major != MajorType.BYTE_STRING:
                raise DecodeError(
                    f"Unsupported embedded Type: {data_major} in decodeEmbeddedJSON"
                )
            return self.decode_string(no_quotes=True)
        if tag == TAG_NETWORK_ADDR:
            octets = self.decode_string(no_quotes=True)
            if len(octets) == 6:
                text = ":".join(f"{b:02x}" for b in octets)
            elif len(octets) in (4, 16):
                text = _format_ip(octets)
            else:
                raise DecodeError(
                    f"Unexpected Network Address length: {len(octets)} (expected 4,6,16)"
                )
            return b'"' + text.encode() + b'"'
        if tag == TAG_NETWORK_PREFIX:
            return self._network_prefix()
        if tag == TAG_HEX_STRING:
            return b'"' + self.decode_string(no_quotes=True).hex().encode() + b'"'
        raise DecodeError(f"Unsupported Additional Tag Type: {tag} in decodeTagData")

    def decode_simple_float(self) -> bytes:
        """Decode true, false, null or a float."""
        major, minor = self._header()
        if major != MajorType.SIMPLE_AND_FLOAT:
            raise DecodeError(f"Major type is: {major} in decodeSimpleFloat")
        if minor == ADDITIONAL_TYPE_BOOL_TRUE:
            return b"true"
        if minor == ADDITIONAL_TYPE_BOOL_FALSE:
            return b"false"
        if minor == ADDITIONAL_TYPE_NULL:
            return b"null"
        if minor in (ADDITIONAL_TYPE_FLOAT16, ADDITIONAL_TYPE_FLOAT32, ADDITIONAL_TYPE_FLOAT64):
            self._pos -= 1
            value, width = self.decode_float()
            if math.isnan(value):
                return b'"NaN"'
            if math.isinf(value):
                return b'"+Inf"' if value > 0 else b'"-Inf"'
            if width == FLOAT32_WIDTH:
                return _format_float32(value).encode()
            return _format_float64(value).encode()
        raise DecodeError(f"Invalid Additional Type: {minor} in decodeSimpleFloat")

    def decode_object(self) -> bytes:
        """Decode one complete object into :attr:`output` and return its text."""
        start = len(self._out)
        major = self._peek() & MASK_OUT_ADDITIONAL_TYPE
        if major in (MajorType.UNSIGNED_INT, MajorType.NEGATIVE_INT):
            self._out += str(self.decode_integer()).encode()
        elif major == MajorType.BYTE_STRING:
            self._out += self.decode_string(no_quotes=False)
        elif major == MajorType.UTF8_STRING:
            self._out += self.decode_utf8_string()
        elif major == MajorType.ARRAY:
            self.decode_array()
        elif major == MajorType.MAP:
            self.decode_map()
        elif major == MajorType.TAGS:
            self._out += self.decode_tag()
        else:
            self._out += self.decode_simple_float()
        return bytes(self._out[start:])

    def decode_all(self) -> bytes:
        """Decode every remaining object, one JSON line each."""
        while not self.at_end():
            self.decode_object()
            self._out += b"\n"
        return self.output


def cbor_to_json(
    data: Union[bytes, bytearray, BinaryIO], time_zone: Optional[tzinfo] = None
) -> bytes:
    """Convert a stream of CBOR objects to newline-terminated JSON lines."""
    if hasattr(data, "read"):
        data = data.read()
    return Decoder(data, time_zone).decode_all()


def is_binary(data: Union[bytes, bytearray]) -> bool:
    """True when the data looks like CBOR rather than JSON text."""
    return len(data) > 0 and data[0] > 0x7F


def decode_if_binary_to_bytes(data: Union[bytes, bytearray]) -> bytes:
    """Decode all objects if the data is CBOR, keeping whatever decoded before an error."""
    if not is_binary(data):
        return bytes(data)
    decoder = Decoder(data)
    try:
        decoder.decode_all()
    except DecodeError:
        pass
    return decoder.output


def decode_if_binary_to_string(data: Union[bytes, bytearray]) -> str:
    """Like :func:`decode_if_binary_to_bytes`, returning text."""
    return decode_if_binary_to_bytes(data).decode("utf-8", "surrogateescape")


def decode_object_to_str(data: Union[bytes, bytearray]) -> str:
    """Decode a single object if the data is CBOR, else return it as text."""
    if not is_binary(data):
        return bytes(data).decode("utf-8", "surrogateescape")
    return Decoder(data).decode_object().decode("utf-8", "surrogateescape")