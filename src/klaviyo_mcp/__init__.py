"""Klaviyo MCP Server — Klaviyo's marketing API as MCP tools and resources.

Architecture:
    core/       — KlaviyoClient (retry, backoff, errors), ResponseCache
    transport/  — Stdio transport with malformed-frame recovery and JSON repair
    services/   — ServiceContainer wiring, reporting queries with fallbacks
    tools/      — MCP tool definitions with @klaviyo_tool and Pydantic validation
    resources.py — klaviyo://<kind>/{id} resource templates
    config.py   — Settings dataclass (single source of truth for configuration)
    logging_config.py — Structured JSON logging with correlation IDs
"""

__version__ = "1.0.0"

__all__ = [
    "__version__",
    "KlaviyoClient",
    "KlaviyoError",
    "ResponseCache",
    "Settings",
]

from klaviyo_mcp.config import Settings as Settings
from klaviyo_mcp.core.api_client import KlaviyoClient as KlaviyoClient
from klaviyo_mcp.core.cache import ResponseCache as ResponseCache
from klaviyo_mcp.exceptions import KlaviyoError as KlaviyoError
