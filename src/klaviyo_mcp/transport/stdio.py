"""Stdio transport for the MCP server with malformed-frame recovery.

Same contract as ``mcp.server.stdio.stdio_server``: an async context
manager yielding ``(read_stream, write_stream)``. Inbound bytes are framed
by a ``RecoveringReadBuffer`` so a corrupted line is repaired or skipped
instead of poisoning the session.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from io import TextIOWrapper
from typing import Any, AsyncIterator, List, Optional, Tuple, Union

import anyio
import anyio.lowlevel
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp import types
from mcp.shared.message import SessionMessage
from pydantic import ValidationError

from klaviyo_mcp.transport.framing import (
    MessageReader,
    RecoveringReadBuffer,
    process_read_buffer,
)

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 64 * 1024

Inbound = Union[SessionMessage, Exception]


def to_session_message(item: Union[Any, Exception]) -> Inbound:
    """Validate a decoded frame as JSON-RPC; errors pass through as values."""
    if isinstance(item, Exception):
        return item
    try:
        return SessionMessage(types.JSONRPCMessage.model_validate(item))
    except ValidationError as e:
        logger.warning("Discarding frame that is not a JSON-RPC message: %s", e)
        return e


def _report_error(error: Exception) -> None:
    logger.error("MCP transport error: %s", error)


@asynccontextmanager
async def recovering_stdio_server(
    stdin: Optional[anyio.AsyncFile[bytes]] = None,
    stdout: Optional[anyio.AsyncFile[str]] = None,
    reader: Optional[MessageReader] = None,
) -> AsyncIterator[
    Tuple[
        MemoryObjectReceiveStream[Inbound],
        MemoryObjectSendStream[SessionMessage],
    ]
]:
    """Serve MCP over stdin/stdout with frame recovery."""
    if stdin is None:
        stdin = anyio.wrap_file(sys.stdin.buffer)
    if stdout is None:
        stdout = anyio.wrap_file(TextIOWrapper(sys.stdout.buffer, encoding="utf-8"))
    frames = reader if reader is not None else RecoveringReadBuffer()

    read_stream_writer, read_stream = anyio.create_memory_object_stream[Inbound](0)
    write_stream, write_stream_reader = anyio.create_memory_object_stream[SessionMessage](0)

    async def stdin_reader() -> None:
        try:
            async with read_stream_writer:
                while True:
                    chunk = await stdin.read1(READ_CHUNK_BYTES)
                    if not chunk:
                        break
                    frames.append(chunk)

                    inbound: List[Union[Any, Exception]] = []

                    def on_error(error: Exception) -> None:
                        _report_error(error)
                        inbound.append(error)

                    process_read_buffer(frames, inbound.append, on_error)
                    for item in inbound:
                        await read_stream_writer.send(to_session_message(item))

                if frames.pending:
                    logger.debug(
                        "Discarding %d bytes of unterminated input at EOF",
                        frames.pending,
                    )
                    frames.clear()
        except anyio.ClosedResourceError:
            await anyio.lowlevel.checkpoint()

    async def stdout_writer() -> None:
        try:
            async with write_stream_reader:
                async for session_message in write_stream_reader:
                    payload = session_message.message.model_dump_json(
                        by_alias=True, exclude_none=True
                    )
                    await stdout.write(payload + "\n")
                    await stdout.flush()
        except anyio.ClosedResourceError:
            await anyio.lowlevel.checkpoint()

    async with anyio.create_task_group() as tg:
        tg.start_soon(stdin_reader)
        tg.start_soon(stdout_writer)
        yield read_stream, write_stream


async def serve_stdio(server: Any) -> None:
    """Run a FastMCP server over the recovering stdio transport."""
    lowlevel = server._mcp_server
    async with recovering_stdio_server() as (read_stream, write_stream):
        await lowlevel.run(
            read_stream,
            write_stream,
            lowlevel.create_initialization_options(),
        )
