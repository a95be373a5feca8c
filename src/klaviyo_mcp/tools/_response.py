"""Response formatting utilities for the MCP tool layer.

Provides JSON:API page summaries, degraded-result notes, and structured
error formatting.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

CHARACTER_LIMIT = 25_000


def next_cursor(payload: Any) -> Optional[str]:
    """Extract ``page[cursor]`` from a JSON:API ``links.next`` URL."""
    if not isinstance(payload, dict):
        return None
    next_link = (payload.get("links") or {}).get("next")
    if not next_link:
        return None
    values = parse_qs(urlparse(next_link).query).get("page[cursor]")
    return values[0] if values else None


def summarize_page(payload: Any) -> Dict[str, Any]:
    """Wrap a list response with ``count``, ``has_more`` and ``next_cursor``."""
    if not isinstance(payload, dict):
        return {"data": payload}
    data = payload.get("data")
    result: Dict[str, Any] = dict(payload)
    result["count"] = len(data) if isinstance(data, list) else int(data is not None)
    cursor = next_cursor(payload)
    result["has_more"] = cursor is not None
    if cursor is not None:
        result["next_cursor"] = cursor
    return result


def with_fallback_note(result: Any, note: str) -> Any:
    """Attach *note* to results that came from a fallback request."""
    if isinstance(result, dict) and result.get("degraded"):
        result = dict(result)
        result["note"] = note
    return result


def format_error_response(
    error: Exception,
    error_type: str = "unexpected",
    suggestions: Optional[List[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build a structured error response dict for MCP clients.

    Args:
        error: The exception that occurred.
        error_type: Machine-readable error category.
        suggestions: Actionable recovery steps.
        metadata: Structured debugging context.
    """
    response: Dict[str, Any] = {
        "isError": True,
        "error_type": error_type,
        "error": str(error),
    }
    if suggestions:
        response["suggestions"] = suggestions
    if metadata:
        response["metadata"] = metadata
    return response
