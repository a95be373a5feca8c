"""Structured exception hierarchy for Klaviyo MCP operations.

Every exception carries ``error_type``, ``suggestions``, and ``metadata``
so the tool layer can return rich, actionable error responses to MCP clients.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class KlaviyoError(Exception):
    """Base exception for all Klaviyo MCP errors.

    Attributes:
        error_type: Machine-readable error category.
        resource_id: The Klaviyo resource involved (if any).
        suggestions: Actionable recovery steps for the MCP client.
        metadata: Structured context for debugging.
    """

    error_type: str = "unknown"

    def __init__(
        self,
        message: str,
        *,
        resource_id: str = "",
        suggestions: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.resource_id = resource_id
        self.suggestions = suggestions or []
        self.metadata = metadata or {}
        self.fallback_error: Optional[str] = None

    def attach_fallback_error(self, fallback_error: BaseException) -> None:
        """Record why a fallback attempt for this failure also failed."""
        self.fallback_error = str(fallback_error)
        self.metadata["fallback_error"] = self.fallback_error

    def to_dict(self) -> Dict[str, Any]:
        """Serialise for MCP error responses."""
        return {
            "error_type": self.error_type,
            "error": str(self),
            "resource_id": self.resource_id,
            "suggestions": self.suggestions,
            "metadata": self.metadata,
        }


# -----------------------------------------------------------------------
# Outbound (HTTP) failures
# -----------------------------------------------------------------------


class UpstreamError(KlaviyoError):
    """Klaviyo responded with a non-2xx status."""

    error_type = "api_error"

    def __init__(
        self,
        status: int,
        detail: str,
        *,
        method: str = "",
        endpoint: str = "",
        reason: str = "",
        errors: Optional[List[Dict[str, Any]]] = None,
        suggestions: Optional[List[str]] = None,
    ):
        status_text = f"{status} {reason}".strip()
        super().__init__(
            f"Klaviyo API Error ({status_text}): {detail}",
            suggestions=suggestions or _suggestions_for_status(status),
            metadata={
                "status": status,
                "method": method,
                "endpoint": endpoint,
            },
        )
        self.status = status
        self.detail = detail
        self.method = method
        self.endpoint = endpoint
        self.errors = errors or []


class RateLimitError(UpstreamError):
    """Klaviyo throttled the request (HTTP 429, or a 400 that says so)."""

    error_type = "rate_limited"

    def __init__(self, status: int, detail: str, **kwargs: Any):
        super().__init__(
            status,
            detail,
            suggestions=[
                "Wait a few seconds and retry",
                "Reduce the frequency of API calls",
            ],
            **kwargs,
        )


class NoResponseError(KlaviyoError):
    """The request was sent but no response came back."""

    error_type = "no_response"

    def __init__(self, method: str, endpoint: str, reason: str = ""):
        message = (
            "No response received from Klaviyo API. This could indicate "
            "network issues or an invalid endpoint."
        )
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            message,
            suggestions=[
                "Check network connectivity",
                "Verify the endpoint path is correct",
            ],
            metadata={"method": method, "endpoint": endpoint},
        )


class SetupError(KlaviyoError):
    """The request could not be built or dispatched."""

    error_type = "setup_error"

    def __init__(self, method: str, endpoint: str, reason: str):
        super().__init__(
            f"Error setting up request: {reason}",
            metadata={"method": method, "endpoint": endpoint},
        )


# -----------------------------------------------------------------------
# Inbound (transport) failures
# -----------------------------------------------------------------------


class FrameFault(KlaviyoError):
    """An inbound stdio frame could not be decoded."""

    error_type = "frame_fault"

    def __init__(self, message: str, *, frame: bytes = b""):
        super().__init__(message, metadata={"frame_bytes": len(frame)})
        self.frame = frame


# -----------------------------------------------------------------------
# Local failures
# -----------------------------------------------------------------------


class KlaviyoValidationError(KlaviyoError):
    """Tool input failed validation."""

    error_type = "validation"


class ConfigurationError(KlaviyoError):
    """Required configuration is missing or invalid."""

    error_type = "configuration"

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(
            message,
            suggestions=[
                "Set KLAVIYO_API_KEY to a Klaviyo private API key",
            ],
            **kwargs,
        )


def _suggestions_for_status(status: int) -> List[str]:
    if status in (401, 403):
        return [
            "Check that KLAVIYO_API_KEY is a valid private key",
            "Verify the key has the scopes this endpoint needs",
        ]
    if status == 404:
        return [
            "Verify the resource ID is correct",
            "Use the list tools to find valid IDs",
        ]
    if status >= 500:
        return ["Klaviyo may be degraded; retry shortly"]
    return []
