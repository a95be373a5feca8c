"""@klaviyo_tool decorator — the shared wrapper for every MCP tool.

Wraps every MCP tool coroutine with:
- Correlation ID and tool name for structured logs
- Timing (records duration in milliseconds)
- Structured error formatting with recovery suggestions
- Tool annotation registration (read-only, destructive, idempotent hints)
"""

from __future__ import annotations

import functools
import json
import logging
import time
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from klaviyo_mcp.exceptions import KlaviyoError
from klaviyo_mcp.logging_config import (
    log_tool_complete,
    log_tool_start,
    new_correlation_id,
    set_tool_name,
)
from klaviyo_mcp.tools._response import CHARACTER_LIMIT, format_error_response

logger = logging.getLogger(__name__)


def klaviyo_tool(
    mcp: Any,
    *,
    read_only: bool = False,
    destructive: bool = False,
    idempotent: bool = False,
    open_world: bool = True,
):
    """Decorator that registers a coroutine as an MCP tool with standard wrappers.

    Args:
        mcp: The FastMCP server instance.
        read_only: Tool only reads data, never modifies.
        destructive: Tool may delete or overwrite data.
        idempotent: Calling the tool twice with the same args has the same effect.
        open_world: Tool talks to Klaviyo (true for everything but cache tools).

    Usage::

        @klaviyo_tool(mcp, read_only=True)
        async def get_lists() -> dict:
            \"\"\"Get lists from Klaviyo.\"\"\"
            return await get_services().client.get("/lists/")
    """

    def decorator(fn: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[dict]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> dict:
            tool_name = fn.__name__
            new_correlation_id()
            set_tool_name(tool_name)
            log_tool_start(tool_name, kwargs)
            start = time.time()

            try:
                result = await fn(*args, **kwargs)
            except KlaviyoError as e:
                duration_ms = (time.time() - start) * 1000
                log_tool_complete(
                    tool_name, duration_ms, False, str(e), e.error_type
                )
                return format_error_response(
                    e,
                    error_type=e.error_type,
                    suggestions=e.suggestions,
                    metadata=e.metadata,
                )
            except ValidationError as e:
                duration_ms = (time.time() - start) * 1000
                log_tool_complete(tool_name, duration_ms, False, str(e), "validation")
                return format_error_response(
                    e,
                    error_type="validation",
                    suggestions=["Check the tool arguments against its schema"],
                )
            except Exception as e:
                duration_ms = (time.time() - start) * 1000
                logger.exception("Unexpected error in tool %s", tool_name)
                log_tool_complete(tool_name, duration_ms, False, str(e), "unexpected")
                return format_error_response(e)

            duration_ms = (time.time() - start) * 1000
            log_tool_complete(tool_name, duration_ms, True)
            return _truncate_response(result)

        annotations = {}
        if read_only:
            annotations["readOnlyHint"] = True
        if destructive:
            annotations["destructiveHint"] = True
        if idempotent:
            annotations["idempotentHint"] = True
        if open_world:
            annotations["openWorldHint"] = True

        # Register with FastMCP, passing annotations where supported
        try:
            mcp.tool(wrapper, annotations=annotations)
        except TypeError:
            # Fallback for FastMCP versions without annotations param
            mcp.tool(wrapper)

        return wrapper

    return decorator


def _truncate_response(result: Any) -> Any:
    """Trim the largest list in an oversized dict response."""
    if not isinstance(result, dict):
        return result

    try:
        serialized = json.dumps(result, default=str)
    except (TypeError, ValueError):
        return result

    if len(serialized) <= CHARACTER_LIMIT:
        return result

    truncated = dict(result)
    for key in sorted(
        truncated.keys(),
        key=lambda k: len(json.dumps(truncated[k], default=str))
        if isinstance(truncated[k], (list, dict))
        else 0,
        reverse=True,
    ):
        val = truncated[key]
        if isinstance(val, list) and len(val) > 1:
            while len(val) > 1:
                val = val[: len(val) // 2]
                truncated[key] = val
                if len(json.dumps(truncated, default=str)) <= CHARACTER_LIMIT - 200:
                    break
            if len(json.dumps(truncated, default=str)) <= CHARACTER_LIMIT:
                break

    truncated["_truncated"] = True
    truncated["_note"] = (
        f"Response exceeded {CHARACTER_LIMIT} characters and was truncated. "
        f"Use filters or a smaller page_size, then follow next_cursor."
    )
    return truncated
