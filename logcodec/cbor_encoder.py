"""Encoder that appends log field values to a buffer in CBOR form."""

from __future__ import annotations

import ipaddress
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional, Union

from logcodec.cbor_header import (
    ADDITIONAL_TYPE_BOOL_FALSE,
    ADDITIONAL_TYPE_BOOL_TRUE,
    ADDITIONAL_TYPE_BREAK,
    ADDITIONAL_TYPE_INFINITE_COUNT,
    ADDITIONAL_TYPE_INT_UINT16,
    ADDITIONAL_TYPE_NULL,
    ADDITIONAL_TYPE_TIMESTAMP,
    TAG_EMBEDDED_JSON,
    TAG_HEX_STRING,
    TAG_NETWORK_ADDR,
    TAG_NETWORK_PREFIX,
    MajorType,
    append_length_header,
    append_type_prefix,
    encode_float32,
    encode_float64,
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_NANOS_PER_SECOND = 1_000_000_000

Duration = Union[timedelta, int]
IPLike = Union[str, bytes, ipaddress.IPv4Address, ipaddress.IPv6Address]
PrefixLike = Union[
    str,
    ipaddress.IPv4Interface,
    ipaddress.IPv6Interface,
    ipaddress.IPv4Network,
    ipaddress.IPv6Network,
]


def _default_marshal(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":")).encode("utf-8")


def _buf(dst: Union[bytes, bytearray]) -> bytearray:
    return dst if isinstance(dst, bytearray) else bytearray(dst)


def _append_tag16(dst: bytearray, tag: int) -> bytearray:
    dst.append(MajorType.TAGS | ADDITIONAL_TYPE_INT_UINT16)
    dst += tag.to_bytes(2, "big")
    return dst


def _unix_parts(t: datetime) -> tuple[int, int]:
    """Return whole seconds since the epoch (floored) and the nanosecond rest."""
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    delta = t - _EPOCH
    return delta.days * 86400 + delta.seconds, delta.microseconds * 1000


def _nanos(d: Duration) -> int:
    if isinstance(d, timedelta):
        return (d.days * 86400 + d.seconds) * _NANOS_PER_SECOND + d.microseconds * 1000
    return int(d)


def _truncating_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def _ip_bytes(ip: IPLike) -> bytes:
    if isinstance(ip, (bytes, bytearray)):
        return bytes(ip)
    if isinstance(ip, str):
        ip = ipaddress.ip_address(ip)
    return ip.packed


def _mac_bytes(ha: Union[str, bytes, bytearray]) -> bytes:
    if isinstance(ha, str):
        parts = ha.replace("-", ":").split(":")
        try:
            return bytes(int(part, 16) for part in parts)
        except ValueError as exc:
            raise ValueError(f"invalid hardware address: {ha!r}") from exc
    return bytes(ha)


def append_embedded_json(dst: bytearray, s: bytes) -> bytearray:
    """Append a tag marking embedded JSON followed by the JSON as a byte string."""
    dst = _buf(dst)
    _append_tag16(dst, TAG_EMBEDDED_JSON)
    append_length_header(dst, MajorType.BYTE_STRING, len(s))
    dst += s
    return dst


@dataclass
class Encoder:
    """Appends CBOR encoded values to a bytearray and returns it."""

    json_marshal: Callable[[Any], bytes] = field(default=_default_marshal)

    def _append_array(
        self, dst: bytearray, vals: list, item: Callable[[bytearray, Any], bytearray]
    ) -> bytearray:
        if not vals:
            return self.append_array_end(self.append_array_start(dst))
        append_length_header(dst, MajorType.ARRAY, len(vals))
        for v in vals:
            dst = item(dst, v)
        return dst

    def append_key(self, dst: bytearray, key: str) -> bytearray:
        """Append a map key, opening the map if the buffer is empty."""
        dst = _buf(dst)
        if not dst:
            dst = self.append_begin_marker(dst)
        return self.append_string(dst, key)

    def append_string(self, dst: bytearray, s: str) -> bytearray:
        """Append a UTF-8 text string."""
        dst = _buf(dst)
        raw = s.encode("utf-8", "surrogateescape")
        append_length_header(dst, MajorType.UTF8_STRING, len(raw))
        dst += raw
        return dst

    def append_strings(self, dst: bytearray, vals: Iterable[str]) -> bytearray:
        """Append an array of text strings."""
        dst = _buf(dst)
        vals = list(vals)
        append_length_header(dst, MajorType.ARRAY, len(vals))
        for v in vals:
            dst = self.append_string(dst, v)
        return dst

    def append_stringer(self, dst: bytearray, val: Optional[object]) -> bytearray:
        """Append the string form of a value, or null for None."""
        dst = _buf(dst)
        if val is None:
            return self.append_nil(dst)
        return self.append_string(dst, str(val))

    def append_stringers(self, dst: bytearray, vals: Iterable[Optional[object]]) -> bytearray:
        """Append an indefinite-length array of string forms."""
        dst = self.append_array_start(_buf(dst))
        for v in vals:
            dst = self.append_stringer(dst, v)
        return self.append_array_end(dst)

    def append_bytes(self, dst: bytearray, s: bytes) -> bytearray:
        """Append a byte string."""
        dst = _buf(dst)
        append_length_header(dst, MajorType.BYTE_STRING, len(s))
        dst += s
        return dst

    def append_time(self, dst: bytearray, t: datetime, unused: str = "") -> bytearray:
        """Append a tagged epoch timestamp: integer when whole seconds, else float."""
        dst = _buf(dst)
        secs, nanos = _unix_parts(t)
        dst.append(MajorType.TAGS | ADDITIONAL_TYPE_TIMESTAMP)
        if nanos == 0:
            if secs < 0:
                return append_type_prefix(dst, MajorType.NEGATIVE_INT, -secs - 1)
            return append_type_prefix(dst, MajorType.UNSIGNED_INT, secs)
        val = float(secs) * 1.0 + float(nanos) * 1e-9
        return self.append_float64(dst, val)

    def append_times(self, dst: bytearray, vals: Iterable[datetime], unused: str = "") -> bytearray:
        """Append an array of timestamps."""
        return self._append_array(
            _buf(dst), list(vals), lambda d, t: self.append_time(d, t, unused)
        )

    def append_duration(
        self, dst: bytearray, d: Duration, unit: Duration, use_int: bool
    ) -> bytearray:
        """Append a duration counted in ``unit``, as an integer or a float."""
        dst = _buf(dst)
        d_ns, unit_ns = _nanos(d), _nanos(unit)
        if unit_ns == 0:
            raise ZeroDivisionError("duration unit must not be zero")
        if use_int:
            return self.append_int(dst, _truncating_div(d_ns, unit_ns))
        return self.append_float64(dst, float(d_ns) / float(unit_ns))

    def append_durations(
        self, dst: bytearray, vals: Iterable[Duration], unit: Duration, use_int: bool
    ) -> bytearray:
        """Append an array of durations."""
        return self._append_array(
            _buf(dst), list(vals), lambda b, d: self.append_duration(b, d, unit, use_int)
        )

    def append_nil(self, dst: bytearray) -> bytearray:
        """Append null."""
        dst = _buf(dst)
        dst.append(MajorType.SIMPLE_AND_FLOAT | ADDITIONAL_TYPE_NULL)
        return dst

    def append_begin_marker(self, dst: bytearray) -> bytearray:
        """Append the start of an indefinite-length map."""
        dst = _buf(dst)
        dst.append(MajorType.MAP | ADDITIONAL_TYPE_INFINITE_COUNT)
        return dst

    def append_end_marker(self, dst: bytearray) -> bytearray:
        """Append a break ending an indefinite-length map."""
        dst = _buf(dst)
        dst.append(MajorType.SIMPLE_AND_FLOAT | ADDITIONAL_TYPE_BREAK)
        return dst

    def append_object_data(self, dst: bytearray, o: bytes) -> bytearray:
        """Append already encoded map content, dropping its begin marker."""
        dst = _buf(dst)
        dst += o[1:]
        return dst

    def append_array_start(self, dst: bytearray) -> bytearray:
        """Append the start of an indefinite-length array."""
        dst = _buf(dst)
        dst.append(MajorType.ARRAY | ADDITIONAL_TYPE_INFINITE_COUNT)
        return dst

    def append_array_end(self, dst: bytearray) -> bytearray:
        """Append a break ending an indefinite-length array."""
        dst = _buf(dst)
        dst.append(MajorType.SIMPLE_AND_FLOAT | ADDITIONAL_TYPE_BREAK)
        return dst

    def append_array_delim(self, dst: bytearray) -> bytearray:
        """CBOR needs no element delimiter; the buffer is returned unchanged."""
        return _buf(dst)

    def append_line_break(self, dst: bytearray) -> bytearray:
        """Binary output has no line breaks; the buffer is returned unchanged."""
        return _buf(dst)

    def append_bool(self, dst: bytearray, val: bool) -> bytearray:
        """Append true or false."""
        dst = _buf(dst)
        minor = ADDITIONAL_TYPE_BOOL_TRUE if val else ADDITIONAL_TYPE_BOOL_FALSE
        dst.append(MajorType.SIMPLE_AND_FLOAT | minor)
        return dst

    def append_bools(self, dst: bytearray, vals: Iterable[bool]) -> bytearray:
        """Append an array of booleans."""
        return self._append_array(_buf(dst), list(vals), self.append_bool)

    def append_int(self, dst: bytearray, val: int) -> bytearray:
        """Append a signed integer."""
        dst = _buf(dst)
        if val < 0:
            return append_length_header(dst, MajorType.NEGATIVE_INT, -val - 1)
        return append_length_header(dst, MajorType.UNSIGNED_INT, val)

    def append_ints(self, dst: bytearray, vals: Iterable[int]) -> bytearray:
        """Append an array of signed integers."""
        return self._append_array(_buf(dst), list(vals), self.append_int)

    def append_uint(self, dst: bytearray, val: int) -> bytearray:
        """Append an unsigned integer."""
        if val < 0:
            raise ValueError(f"unsigned value must not be negative: {val}")
        return append_length_header(_buf(dst), MajorType.UNSIGNED_INT, val)

    def append_uints(self, dst: bytearray, vals: Iterable[int]) -> bytearray:
        """Append an array of unsigned integers."""
        return self._append_array(_buf(dst), list(vals), self.append_uint)

    def append_float32(self, dst: bytearray, val: float) -> bytearray:
        """Append a single precision float."""
        dst = _buf(dst)
        dst += encode_float32(val)
        return dst

    def append_floats32(self, dst: bytearray, vals: Iterable[float]) -> bytearray:
        """Append an array of single precision floats."""
        return self._append_array(_buf(dst), list(vals), self.append_float32)

    def append_float64(self, dst: bytearray, val: float) -> bytearray:
        """Append a double precision float."""
        dst = _buf(dst)
        dst += encode_float64(val)
        return dst

    def append_floats64(self, dst: bytearray, vals: Iterable[float]) -> bytearray:
        """Append an array of double precision floats."""
        return self._append_array(_buf(dst), list(vals), self.append_float64)

    def append_interface(self, dst: bytearray, i: Any) -> bytearray:
        """Marshal a value to JSON and embed it; a marshaling failure is logged as text."""
        dst = _buf(dst)
        try:
            marshaled = self.json_marshal(i)
        except (TypeError, ValueError) as exc:
            return self.append_string(dst, f"marshaling error: {exc}")
        return append_embedded_json(dst, marshaled)

    def append_ip_addr(self, dst: bytearray, ip: IPLike) -> bytearray:
        """Append an IPv4 or IPv6 address as a tagged byte string."""
        dst = _append_tag16(_buf(dst), TAG_NETWORK_ADDR)
        return self.append_bytes(dst, _ip_bytes(ip))

    def append_ip_prefix(self, dst: bytearray, pfx: PrefixLike) -> bytearray:
        """Append an address and prefix length as a tagged one-pair map."""
        if isinstance(pfx, str):
            pfx = ipaddress.ip_interface(pfx)
        if isinstance(pfx, (ipaddress.IPv4Interface, ipaddress.IPv6Interface)):
            address, length = pfx.ip, pfx.network.prefixlen
        else:
            address, length = pfx.network_address, pfx.prefixlen
        dst = _append_tag16(_buf(dst), TAG_NETWORK_PREFIX)
        dst.append(MajorType.MAP | 1)
        dst = self.append_bytes(dst, address.packed)
        return self.append_uint(dst, length)

    def append_mac_addr(self, dst: bytearray, ha: Union[str, bytes]) -> bytearray:
        """Append a hardware address as a tagged byte string."""
        dst = _append_tag16(_buf(dst), TAG_NETWORK_ADDR)
        return self.append_bytes(dst, _mac_bytes(ha))

    def append_hex(self, dst: bytearray, val: bytes) -> bytearray:
        """Append bytes tagged to be shown as a hex string."""
        dst = _append_tag16(_buf(dst), TAG_HEX_STRING)
        return self.append_bytes(dst, val)