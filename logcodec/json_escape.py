"""JSON string quoting and hex rendering for log field values."""

from __future__ import annotations

import re
from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]

# ASCII control characters, the quote, the backslash, DEL, and the lone
# surrogates that stand for undecodable bytes after a surrogateescape decode.
_NEEDS_ESCAPE = re.compile(r'[\x00-\x1f"\\\x7f\udc80-\udcff]')

_SHORT_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}


def _escape(match: re.Match) -> str:
    char = match.group()
    code = ord(char)
    if code >= 0xDC80:
        return "\\ufffd"
    short = _SHORT_ESCAPES.get(char)
    if short is not None:
        return short
    return f"\\u{code:04x}"


def quote_bytes(data: BytesLike) -> bytes:
    """Return ``data`` as a quoted JSON string.

    Control characters, quotes, backslashes and DEL are escaped; valid
    UTF-8 passes through unchanged and each byte of an invalid sequence
    becomes ``\\ufffd``.
    """
    raw = bytes(data)
    text = raw.decode("utf-8", "surrogateescape")
    if _NEEDS_ESCAPE.search(text) is None:
        return b'"' + raw + b'"'
    return b'"' + _NEEDS_ESCAPE.sub(_escape, text).encode("utf-8") + b'"'


def quote_string(s: str) -> bytes:
    """Return ``s`` as a quoted JSON string, encoded as UTF-8.

    Lone surrogates produced by a surrogateescape decode are treated as the
    raw bytes they stand for; any other surrogate is an invalid sequence.
    """
    try:
        raw = s.encode("utf-8", "surrogateescape")
    except UnicodeEncodeError:
        raw = s.encode("utf-8", "surrogatepass")
    return quote_bytes(raw)


def hex_string(data: BytesLike) -> bytes:
    """Return ``data`` as a quoted string of lower-case hex digits."""
    return b'"' + bytes(data).hex().encode("ascii") + b'"'