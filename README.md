# logcodec

Building blocks for writing structured log records in two wire formats:

- **JSON**: `logcodec.json_encoder.Encoder` appends JSON-encoded keys and
  values to a `bytearray`.
- **CBOR**: `logcodec.cbor_encoder.Encoder` appends the same kinds of fields
  in compact binary form.
- **CBOR to JSON**: `logcodec.cbor_decoder` turns a stream of binary log
  records back into newline-separated JSON that can be read and printed.

The two encoders share most of their methods (`append_key`, `append_string`,
`append_int`, `append_float64`, `append_time`, `append_ip_addr`, the list
variants and so on). Code that builds a record can therefore use either
format. The JSON encoder also has `append_type`. Every method takes the
buffer first and returns it. A `bytearray` passed in is extended in place,
and a `bytes` value is copied into a new `bytearray`.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Building a JSON record

```python
from logcodec.json_encoder import Encoder

enc = Encoder()
buf = bytearray()
enc.append_begin_marker(buf)
enc.append_key(buf, "level")
enc.append_string(buf, "info")
enc.append_key(buf, "count")
enc.append_int(buf, 42)
enc.append_end_marker(buf)
enc.append_line_break(buf)
# buf == b'{"level":"info","count":42}\n'
```

How values are written:

- **Strings.** `append_key` puts a comma before the key unless the object has
  just been opened. Control characters, quotes, backslashes and DEL are
  escaped. Each byte of invalid UTF-8 becomes `\ufffd`.
- **Floats.** They are written in plain decimal notation, with no exponent.
  NaN and the infinities become the strings `"NaN"`, `"+Inf"` and `"-Inf"`.
- **Times.** `append_time(dst, t, fmt)` writes epoch seconds when `fmt` is
  `""` (the default). The formats `"UNIXMS"`, `"UNIXMICRO"` and `"UNIXNANO"`
  give milliseconds, microseconds and nanoseconds. Any other `fmt` is passed
  to `datetime.strftime` and the result is written as a quoted string.
- **Durations.** `append_duration(dst, d, unit, use_int)` takes `timedelta`
  values or integer nanoseconds and counts `d` in units of `unit`.
- **Other values.** `append_interface` marshals a value with the encoder's
  `json_marshal` callable, which is compact `json.dumps` by default. If
  marshaling fails, the text `marshaling error: ...` is written as a string
  instead.

The helpers in `logcodec.json_escape` do the same escaping on their own:
`quote_string`, `quote_bytes` and `hex_string`.

## Building a CBOR record

```python
from logcodec.cbor_encoder import Encoder

enc = Encoder()
buf = bytearray()
enc.append_key(buf, "level")      # opens an indefinite-length map when buf is empty
enc.append_string(buf, "info")
enc.append_key(buf, "count")
enc.append_int(buf, 42)
enc.append_end_marker(buf)
```

Some values are stored under tags of their own:

- IP addresses, prefixes, MAC addresses and hex strings.
- Embedded JSON from `append_interface`.

Timestamps use CBOR tag 1. A time on a whole second is stored as an integer,
and any other time is stored as a float64. The header and float helpers live
in `logcodec.cbor_header`: `MajorType`, `append_type_prefix`,
`append_length_header`, `encode_float32` and `encode_float64`.

## Decoding CBOR back to JSON

```python
from logcodec.cbor_decoder import cbor_to_json, decode_if_binary_to_string

text = decode_if_binary_to_string(bytes(buf))
# '{"level":"info","count":42}\n'
```

- `cbor_to_json(data, time_zone=None)` decodes every object in `data` and
  writes one JSON line per object. `data` may be bytes or a readable binary
  file. It raises `DecodeError` on malformed or truncated input. Timestamps
  are shown in `time_zone`, which is UTC by default.
- `decode_if_binary_to_bytes` and `decode_if_binary_to_string` return the
  input unchanged when it does not start with a byte above `0x7f`. For binary
  input they decode it, and on an error they keep whatever was decoded before
  the error.
- `decode_object_to_str` decodes only the first object.
- `Decoder` gives access to the individual steps: `decode_object`,
  `decode_map`, `decode_array`, `decode_tag` and the others. The JSON text it
  has written so far is in `output`.

## What this package does not do

This package contains only the field encoders and the decoder. It has no
logger, no log levels or hooks, no output writers and no command-line tool.
Building the complete record and writing it out is left to the caller.