"""Newline-delimited JSON framing with malformed-frame recovery.

``ReadBuffer`` is the plain framer. ``RecoveringReadBuffer`` wraps any
framer with the same interface and, when a frame fails to decode with a
known JSON error, sanitises it and moves past it instead of failing.
``process_read_buffer`` drains every complete frame to a consumer.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional, Protocol

from klaviyo_mcp.exceptions import FrameFault
from klaviyo_mcp.logging_config import looks_like_malformed_json
from klaviyo_mcp.transport.sanitizer import repair

logger = logging.getLogger(__name__)

NEWLINE = b"\n"


class MessageReader(Protocol):
    """What the processing loop needs from a framer."""

    @property
    def pending(self) -> int: ...

    def append(self, chunk: bytes) -> None: ...

    def has_frame(self) -> bool: ...

    def read_message(self) -> Optional[Any]: ...

    def skip_frame(self) -> bool: ...

    def clear(self) -> None: ...


def is_malformed_json_error(error: BaseException) -> bool:
    """True for decode faults that the recovery path knows how to handle."""
    if isinstance(error, (json.JSONDecodeError, UnicodeDecodeError)):
        return True
    if isinstance(error, FrameFault):
        return True
    return looks_like_malformed_json(str(error))


def _decode_line(line: bytes) -> str:
    return line.decode("utf-8").rstrip("\r")


class ReadBuffer:
    """Accumulates stdin bytes and yields one JSON document per line.

    A frame that fails to decode raises ``FrameFault`` and stays at the
    head of the buffer, so a wrapper can inspect it before skipping it.
    """

    def __init__(self) -> None:
        self._buffer = b""

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def append(self, chunk: bytes) -> None:
        self._buffer += chunk

    def has_frame(self) -> bool:
        return NEWLINE in self._buffer

    def peek_frame(self) -> Optional[bytes]:
        """Bytes of the first complete frame, without the newline."""
        index = self._buffer.find(NEWLINE)
        if index == -1:
            return None
        return self._buffer[:index]

    def skip_frame(self) -> bool:
        """Advance past the first newline; False if there is none."""
        index = self._buffer.find(NEWLINE)
        if index == -1:
            return False
        self._buffer = self._buffer[index + 1:]
        return True

    def read_message(self) -> Optional[Any]:
        line = self.peek_frame()
        if line is None:
            return None
        try:
            message = json.loads(_decode_line(line))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise FrameFault(f"Malformed JSON frame: {e}", frame=line) from e
        self.skip_frame()
        return message

    def clear(self) -> None:
        self._buffer = b""


class RecoveringReadBuffer:
    """``ReadBuffer`` wrapper that repairs or drops malformed frames.

    ``read_message`` returns ``None`` both when no frame is buffered and
    when a bad frame was dropped; use ``has_frame`` to tell them apart.
    Faults that do not look like malformed JSON propagate.
    """

    def __init__(
        self,
        inner: Optional[ReadBuffer] = None,
        sanitizer: Callable[[str], str] = repair,
    ):
        self._inner = inner if inner is not None else ReadBuffer()
        self._sanitizer = sanitizer
        self.recovered = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._inner.pending

    def append(self, chunk: bytes) -> None:
        self._inner.append(chunk)

    def has_frame(self) -> bool:
        return self._inner.has_frame()

    def skip_frame(self) -> bool:
        return self._inner.skip_frame()

    def clear(self) -> None:
        self._inner.clear()

    def read_message(self) -> Optional[Any]:
        try:
            return self._inner.read_message()
        except Exception as e:
            if not is_malformed_json_error(e):
                raise
            logger.debug("JSON error in buffer processing: %s", e)
            return self._recover()

    def _recover(self) -> Optional[Any]:
        line = self._inner.peek_frame()
        # Only foreign readers fault without a newline; ReadBuffer never does
        if line is None:
            logger.debug("Clearing buffer: malformed data with no frame delimiter")
            self._inner.clear()
            self.dropped += 1
            return None

        # Position always moves by the original frame length
        self._inner.skip_frame()
        try:
            text = _decode_line(line)
        except UnicodeDecodeError:
            text = line.decode("utf-8", errors="replace").rstrip("\r")

        repaired = self._sanitizer(text)
        if repaired != text:
            try:
                message = json.loads(repaired)
            except ValueError:
                pass
            else:
                self.recovered += 1
                logger.info("Recovered malformed JSON frame")
                return message

        self.dropped += 1
        logger.debug("Skipping unparsable JSON frame (%d bytes)", len(line))
        return None


def process_read_buffer(
    reader: MessageReader,
    on_message: Callable[[Any], None],
    on_error: Optional[Callable[[Exception], None]] = None,
) -> int:
    """Deliver every complete buffered frame, in order, then return.

    Returns the number of messages delivered. Errors that are not
    malformed-JSON faults go to *on_error* (or propagate when there is
    none); after such an error the offending frame is skipped so the loop
    never revisits it.
    """
    delivered = 0
    while reader.has_frame():
        before = reader.pending
        try:
            message = reader.read_message()
        except Exception as e:
            if on_error is None:
                raise
            on_error(e)
            if reader.pending == before:
                _skip_head(reader)
            continue
        if message is not None:
            on_message(message)
            delivered += 1
        elif reader.pending == before:
            # A reader that neither consumed nor failed would spin forever
            _skip_head(reader)
    return delivered


def _skip_head(reader: MessageReader) -> None:
    if not reader.skip_frame():
        reader.clear()
