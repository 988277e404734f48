"""Encoder that appends log field values to a buffer as JSON text."""

from __future__ import annotations

import ipaddress
import json
import math
import struct
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional, Union

from logcodec.json_escape import hex_string, quote_bytes, quote_string

TIME_FORMAT_UNIX = ""
TIME_FORMAT_UNIX_MS = "UNIXMS"
TIME_FORMAT_UNIX_MICRO = "UNIXMICRO"
TIME_FORMAT_UNIX_NANO = "UNIXNANO"

_UNIX_DIVISORS = {
    TIME_FORMAT_UNIX_MS: 1_000_000,
    TIME_FORMAT_UNIX_MICRO: 1_000,
    TIME_FORMAT_UNIX_NANO: 1,
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_NANOS_PER_SECOND = 1_000_000_000

Duration = Union[timedelta, int]
IPLike = Union[str, bytes, bytearray, ipaddress.IPv4Address, ipaddress.IPv6Address]
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


def _unix_parts(t: datetime) -> tuple[int, int]:
    """Whole seconds since the epoch (floored) and the nanosecond rest."""
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    delta = t - _EPOCH
    return delta.days * 86400 + delta.seconds, delta.microseconds * 1000


def _unix_nanos(t: datetime) -> int:
    secs, nanos = _unix_parts(t)
    return secs * _NANOS_PER_SECOND + nanos


def _truncating_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def _nanos(d: Duration) -> int:
    if isinstance(d, timedelta):
        return (d.days * 86400 + d.seconds) * _NANOS_PER_SECOND + d.microseconds * 1000
    return int(d)


def _fixed(text: str) -> str:
    return format(Decimal(text).normalize(), "f")


def _to_float32(val: float) -> float:
    try:
        return struct.unpack(">f", struct.pack(">f", val))[0]
    except OverflowError:
        return math.copysign(math.inf, val)


def _format_float(val: float, bits: int) -> bytes:
    """Shortest round-tripping decimal in plain (non-exponent) notation."""
    if bits == 32:
        val = _to_float32(val)
    if math.isnan(val):
        return b'"NaN"'
    if math.isinf(val):
        return b'"+Inf"' if val > 0 else b'"-Inf"'
    if bits == 64:
        return _fixed(repr(val)).encode("ascii")
    text = repr(val)
    for digits in range(1, 10):
        candidate = f"{val:.{digits}g}"
        if _to_float32(float(candidate)) == val:
            text = candidate
            break
    return _fixed(text).encode("ascii")


def _format_ip(octets: bytes) -> str:
    if len(octets) == 4:
        return str(ipaddress.IPv4Address(octets))
    if len(octets) == 16:
        address = ipaddress.IPv6Address(octets)
        if address.ipv4_mapped is not None:
            return str(address.ipv4_mapped)
        return str(address)
    raise ValueError(f"invalid IP address length: {len(octets)}")


def _ip_text(ip: IPLike) -> str:
    if isinstance(ip, (bytes, bytearray)):
        return _format_ip(bytes(ip))
    if isinstance(ip, str):
        ip = ipaddress.ip_address(ip)
    return _format_ip(ip.packed)


def _mac_bytes(ha: Union[str, bytes, bytearray]) -> bytes:
    if isinstance(ha, str):
        parts = ha.replace("-", ":").split(":")
        try:
            return bytes(int(part, 16) for part in parts)
        except ValueError as exc:
            raise ValueError(f"invalid hardware address: {ha!r}") from exc
    return bytes(ha)


def _type_name(value: Any) -> str:
    cls = type(value)
    if cls.__module__ == "builtins":
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


@dataclass
class Encoder:
    """Appends JSON encoded values to a bytearray and returns it."""

    json_marshal: Callable[[Any], bytes] = field(default=_default_marshal)

    def _append_list(
        self, dst: bytearray, vals: Iterable[Any], item: Callable[[bytearray, Any], bytearray]
    ) -> bytearray:
        dst.append(ord("["))
        for index, v in enumerate(vals):
            if index:
                dst.append(ord(","))
            dst = item(dst, v)
        dst.append(ord("]"))
        return dst

    def append_key(self, dst: bytearray, key: str) -> bytearray:
        """Append a key and colon, preceded by a comma unless the object just opened."""
        dst = _buf(dst)
        if dst and dst[-1] != ord("{"):
            dst.append(ord(","))
        dst = self.append_string(dst, key)
        dst.append(ord(":"))
        return dst

    def append_string(self, dst: bytearray, s: str) -> bytearray:
        """Append a quoted, escaped string."""
        dst = _buf(dst)
        dst += quote_string(s)
        return dst

    def append_strings(self, dst: bytearray, vals: Iterable[str]) -> bytearray:
        """Append a list of strings."""
        return self._append_list(_buf(dst), vals, self.append_string)

    def append_stringer(self, dst: bytearray, val: Optional[object]) -> bytearray:
        """Append the string form of a value, or null for None."""
        if val is None:
            return self.append_interface(dst, None)
        return self.append_string(dst, str(val))

    def append_stringers(self, dst: bytearray, vals: Iterable[Optional[object]]) -> bytearray:
        """Append a list of string forms."""
        return self._append_list(_buf(dst), vals, self.append_stringer)

    def append_bytes(self, dst: bytearray, s: bytes) -> bytearray:
        """Append bytes as a quoted, escaped string."""
        dst = _buf(dst)
        dst += quote_bytes(s)
        return dst

    def append_hex(self, dst: bytearray, s: bytes) -> bytearray:
        """Append bytes as a quoted lower-case hex string."""
        dst = _buf(dst)
        dst += hex_string(s)
        return dst

    def append_time(self, dst: bytearray, t: datetime, fmt: str = TIME_FORMAT_UNIX) -> bytearray:
        """Append a time as epoch units or as a quoted strftime-formatted string."""
        dst = _buf(dst)
        if fmt == TIME_FORMAT_UNIX:
            return self.append_int(dst, _unix_parts(t)[0])
        divisor = _UNIX_DIVISORS.get(fmt)
        if divisor is not None:
            return self.append_int(dst, _truncating_div(_unix_nanos(t), divisor))
        dst += b'"' + t.strftime(fmt).encode("utf-8") + b'"'
        return dst

    def append_times(
        self, dst: bytearray, vals: Iterable[datetime], fmt: str = TIME_FORMAT_UNIX
    ) -> bytearray:
        """Append a list of times in the given format."""
        return self._append_list(_buf(dst), vals, lambda d, t: self.append_time(d, t, fmt))

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
        """Append a list of durations."""
        return self._append_list(
            _buf(dst), vals, lambda b, d: self.append_duration(b, d, unit, use_int)
        )

    def append_nil(self, dst: bytearray) -> bytearray:
        """Append null."""
        dst = _buf(dst)
        dst += b"null"
        return dst

    def append_begin_marker(self, dst: bytearray) -> bytearray:
        """Append the start of an object."""
        dst = _buf(dst)
        dst.append(ord("{"))
        return dst

    def append_end_marker(self, dst: bytearray) -> bytearray:
        """Append the end of an object."""
        dst = _buf(dst)
        dst.append(ord("}"))
        return dst

    def append_line_break(self, dst: bytearray) -> bytearray:
        """Append a newline."""
        dst = _buf(dst)
        dst.append(ord("\n"))
        return dst

    def append_array_start(self, dst: bytearray) -> bytearray:
        """Append the start of an array."""
        dst = _buf(dst)
        dst.append(ord("["))
        return dst

    def append_array_end(self, dst: bytearray) -> bytearray:
        """Append the end of an array."""
        dst = _buf(dst)
        dst.append(ord("]"))
        return dst

    def append_array_delim(self, dst: bytearray) -> bytearray:
        """Append an element separator unless the buffer is empty."""
        dst = _buf(dst)
        if dst:
            dst.append(ord(","))
        return dst

    def append_bool(self, dst: bytearray, val: bool) -> bytearray:
        """Append true or false."""
        dst = _buf(dst)
        dst += b"true" if val else b"false"
        return dst

    def append_bools(self, dst: bytearray, vals: Iterable[bool]) -> bytearray:
        """Append a list of booleans."""
        return self._append_list(_buf(dst), vals, self.append_bool)

    def append_int(self, dst: bytearray, val: int) -> bytearray:
        """Append a signed integer."""
        dst = _buf(dst)
        dst += str(int(val)).encode("ascii")
        return dst

    def append_ints(self, dst: bytearray, vals: Iterable[int]) -> bytearray:
        """Append a list of signed integers."""
        return self._append_list(_buf(dst), vals, self.append_int)

    def append_uint(self, dst: bytearray, val: int) -> bytearray:
        """Append an unsigned integer."""
        if val < 0:
            raise ValueError(f"unsigned value must not be negative: {val}")
        return self.append_int(dst, val)

    def append_uints(self, dst: bytearray, vals: Iterable[int]) -> bytearray:
        """Append a list of unsigned integers."""
        return self._append_list(_buf(dst), vals, self.append_uint)

    def append_float32(self, dst: bytearray, val: float) -> bytearray:
        """Append a single precision float; NaN and infinities become strings."""
        dst = _buf(dst)
        dst += _format_float(val, 32)
        return dst

    def append_floats32(self, dst: bytearray, vals: Iterable[float]) -> bytearray:
        """Append a list of single precision floats."""
        return self._append_list(_buf(dst), vals, self.append_float32)

    def append_float64(self, dst: bytearray, val: float) -> bytearray:
        """Append a double precision float; NaN and infinities become strings."""
        dst = _buf(dst)
        dst += _format_float(val, 64)
        return dst

    def append_floats64(self, dst: bytearray, vals: Iterable[float]) -> bytearray:
        """Append a list of double precision floats."""
        return self._append_list(_buf(dst), vals, self.append_float64)

    def append_interface(self, dst: bytearray, i: Any) -> bytearray:
        """Marshal a value to JSON; a marshaling failure is logged as text."""
        dst = _buf(dst)
        try:
            marshaled = self.json_marshal(i)
        except (TypeError, ValueError) as exc:
            return self.append_string(dst, f"marshaling error: {exc}")
        dst += marshaled
        return dst

    def append_type(self, dst: bytearray, i: Any) -> bytearray:
        """Append the name of the value's type, or ``<nil>`` for None."""
        if i is None:
            return self.append_string(dst, "<nil>")
        return self.append_string(dst, _type_name(i))

    def append_object_data(self, dst: bytearray, o: bytes) -> bytearray:
        """Append already encoded object content, merging it with existing fields."""
        dst = _buf(dst)
        o = bytes(o)
        if not o:
            return dst
        if o[:1] == b"{":
            o = o[1:]
        if len(dst) > 1:
            dst.append(ord(","))
        dst += o
        return dst

    def append_ip_addr(self, dst: bytearray, ip: IPLike) -> bytearray:
        """Append an IPv4 or IPv6 address as a string."""
        return self.append_string(dst, _ip_text(ip))

    def append_ip_prefix(self, dst: bytearray, pfx: PrefixLike) -> bytearray:
        """Append an address and prefix length as ``address/length``."""
        if isinstance(pfx, str):
            pfx = ipaddress.ip_interface(pfx)
        if isinstance(pfx, (ipaddress.IPv4Interface, ipaddress.IPv6Interface)):
            address, length = pfx.ip, pfx.network.prefixlen
        else:
            address, length = pfx.network_address, pfx.prefixlen
        return self.append_string(dst, f"{_format_ip(address.packed)}/{length}")

    def append_mac_addr(self, dst: bytearray, ha: Union[str, bytes, bytearray]) -> bytearray:
        """Append a hardware address as colon separated hex pairs."""
        text = ":".join(f"{b:02x}" for b in _mac_bytes(ha))
        return self.append_string(dst, text)