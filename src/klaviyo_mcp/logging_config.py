"""Structured JSON logging for the Klaviyo MCP server.

Provides:
- StructuredJsonFormatter: JSON-line output with correlation_id, tool_name, duration
- RotatingFileHandler: 10MB x 5 files to ~/.klaviyo-mcp/logs/mcp_server.jsonl
- Human-readable stderr (stdout carries the MCP protocol)
- StartupNoiseFilter: demotes malformed-frame noise while the client connects
- API request/response/error helpers that mask credentials
"""

from __future__ import annotations

import contextvars
import json
import logging
import logging.handlers
import os
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Optional

# ---------------------------------------------------------------------------
# Correlation ID via contextvars (thread-safe, async-safe)
# ---------------------------------------------------------------------------
_correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)
_tool_name: contextvars.ContextVar[str] = contextvars.ContextVar(
    "tool_name", default=""
)


def new_correlation_id() -> str:
    """Generate and set a new correlation ID for the current context."""
    cid = f"cid_{uuid.uuid4().hex[:8]}"
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str:
    """Get the correlation ID for the current context."""
    return _correlation_id.get()


def set_tool_name(name: str) -> None:
    """Set the tool name for the current context."""
    _tool_name.set(name)


def get_tool_name() -> str:
    """Get the tool name for the current context."""
    return _tool_name.get()


_EXTRA_FIELDS = (
    "event", "duration_ms", "success", "params", "method", "endpoint",
    "status", "data", "error_type", "error",
)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------
class StructuredJsonFormatter(logging.Formatter):
    """Formats log records as single-line JSON (JSONL).

    Output includes:
    - timestamp (ISO 8601)
    - level
    - correlation_id (from contextvars)
    - tool_name (from contextvars)
    - logger name
    - message
    - Any extra fields passed via `extra={}` in the log call
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S")
            + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        cid = _correlation_id.get()
        if cid:
            log_entry["correlation_id"] = cid
        tn = _tool_name.get()
        if tn:
            log_entry["tool_name"] = tn

        for key in _EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Startup noise filter
# ---------------------------------------------------------------------------
_MALFORMED_JSON_MARKERS = (
    "JSON",
    "Expecting",
    "Unexpected token",
    "Unexpected end of",
    "non-whitespace character",
    "property name",
    "Extra data",
    "Unterminated string",
    "Invalid control character",
    "Invalid \\escape",
    "codec can't decode",
)


def looks_like_malformed_json(text: str) -> bool:
    """True if *text* carries one of the known JSON decode error signatures."""
    return any(marker in text for marker in _MALFORMED_JSON_MARKERS)


class StartupNoiseFilter(logging.Filter):
    """Drop malformed-JSON warnings for a bounded window after startup.

    Clients sometimes write partial frames while the handshake settles.
    Records emitted before the deadline that match the malformed-JSON
    signatures are suppressed; everything else passes. Once the window
    closes the filter is a no-op.
    """

    def __init__(
        self,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self._clock = clock
        self._deadline = clock() + window_seconds

    @property
    def active(self) -> bool:
        return self._clock() < self._deadline

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.active or record.levelno >= logging.ERROR:
            return True
        return not looks_like_malformed_json(record.getMessage())


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_logging(
    log_dir: str = "",
    log_level: str = "INFO",
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5,
    startup_quiet_seconds: float = 0.0,
) -> None:
    """Configure structured logging for the MCP server.

    - JSON file handler → ~/.klaviyo-mcp/logs/mcp_server.jsonl
    - Human-readable stderr handler; stdout is reserved for protocol frames
    """
    if not log_dir:
        log_dir = os.path.expanduser("~/.klaviyo-mcp/logs")

    Path(log_dir).mkdir(parents=True, exist_ok=True)
    log_file = os.path.join(log_dir, "mcp_server.jsonl")

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(StructuredJsonFormatter())
    file_handler.setLevel(logging.DEBUG)
    root.addHandler(file_handler)

    stderr_handler = logging.StreamHandler()
    stderr_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    stderr_handler.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    if startup_quiet_seconds > 0:
        stderr_handler.addFilter(StartupNoiseFilter(startup_quiet_seconds))
    root.addHandler(stderr_handler)


# ---------------------------------------------------------------------------
# Structured log helpers (used by decorator and services)
# ---------------------------------------------------------------------------
_structured_logger = logging.getLogger("klaviyo_mcp.structured")
_api_logger = logging.getLogger("klaviyo_mcp.api")

_SENSITIVE_MARKERS = ("key", "token", "password", "auth")
_MASK = "********"


def log_tool_start(tool_name: str, params: Optional[Dict] = None) -> None:
    """Log the start of a tool call with correlation context."""
    _structured_logger.info(
        f"Tool call started: {tool_name}",
        extra={
            "event": "tool_call_start",
            "params": _sanitize_params(mask_sensitive(params or {})),
        },
    )


def log_tool_complete(
    tool_name: str,
    duration_ms: float,
    success: bool,
    error: str = "",
    error_type: str = "",
) -> None:
    """Log the completion of a tool call."""
    extra: Dict[str, Any] = {
        "event": "tool_call_complete",
        "duration_ms": round(duration_ms, 1),
        "success": success,
    }
    if error:
        extra["error"] = error[:500]
    if error_type:
        extra["error_type"] = error_type

    level = logging.INFO if success else logging.WARNING
    _structured_logger.log(
        level,
        f"Tool call {'completed' if success else 'failed'}: {tool_name} "
        f"({duration_ms:.0f}ms)",
        extra=extra,
    )


def log_api_request(method: str, endpoint: str, data: Any = None) -> None:
    """Trace an outbound Klaviyo request."""
    _api_logger.debug(
        f"API Request: {method} {endpoint}",
        extra={
            "event": "api_request",
            "method": method,
            "endpoint": endpoint,
            "data": mask_sensitive(data),
        },
    )


def log_api_response(
    method: str,
    endpoint: str,
    status: int,
    data: Any = None,
    include_body: bool = False,
) -> None:
    """Trace an inbound Klaviyo response; the body only when asked to."""
    extra: Dict[str, Any] = {
        "event": "api_response",
        "method": method,
        "endpoint": endpoint,
        "status": status,
    }
    if include_body:
        extra["data"] = mask_sensitive(data)
    _api_logger.debug(f"API Response: {method} {endpoint} ({status})", extra=extra)


def log_api_error(method: str, endpoint: str, error: Exception) -> None:
    """Log a terminal API failure with masked detail."""
    extra: Dict[str, Any] = {
        "event": "api_error",
        "method": method,
        "endpoint": endpoint,
        "error_type": getattr(error, "error_type", type(error).__name__),
        "error": str(error)[:500],
    }
    status = getattr(error, "status", None)
    if status is not None:
        extra["status"] = status
    errors = getattr(error, "errors", None)
    if errors:
        extra["data"] = mask_sensitive(errors)
    _api_logger.error(f"API Error: {method} {endpoint}", extra=extra)


def mask_sensitive(data: Any) -> Any:
    """Return a copy of *data* with credential-like values masked.

    Keys containing ``key``, ``token``, ``password`` or ``auth`` (any case)
    are masked. Strings longer than 8 characters keep their first and last
    4 characters; anything else becomes a fixed placeholder.
    """
    if isinstance(data, dict):
        masked: Dict[Any, Any] = {}
        for k, v in data.items():
            if _is_sensitive(k):
                masked[k] = _mask_value(v)
            else:
                masked[k] = mask_sensitive(v)
        return masked
    if isinstance(data, (list, tuple)):
        return [mask_sensitive(v) for v in data]
    return data


def _is_sensitive(key: Any) -> bool:
    lowered = str(key).lower()
    return any(marker in lowered for marker in _SENSITIVE_MARKERS)


def _mask_value(value: Any) -> str:
    if isinstance(value, str) and len(value) > 8:
        return f"{value[:4]}...{value[-4:]}"
    return _MASK


def _sanitize_params(params: Dict) -> Dict:
    """Remove large values from params for logging."""
    sanitized = {}
    for k, v in params.items():
        if isinstance(v, str) and len(v) > 200:
            sanitized[k] = v[:100] + f"...({len(v)} chars)"
        else:
            sanitized[k] = v
    return sanitized
