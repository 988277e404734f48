"""JSON and CBOR field encoders for structured log records, with a CBOR-to-JSON decoder."""

__version__ = "0.1.0"
__all__ = ["cbor_header", "cbor_encoder", "cbor_decoder", "json_escape", "json_encoder"]