"""Stdio transport: frame recovery and JSON repair."""

from klaviyo_mcp.transport.framing import (
    ReadBuffer,
    RecoveringReadBuffer,
    is_malformed_json_error,
    process_read_buffer,
)
from klaviyo_mcp.transport.sanitizer import repair, safe_parse

__all__ = [
    "ReadBuffer",
    "RecoveringReadBuffer",
    "is_malformed_json_error",
    "process_read_buffer",
    "repair",
    "safe_parse",
]
