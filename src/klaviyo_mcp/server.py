"""Klaviyo MCP Server - Entry point.

Creates the FastMCP instance, lazily initializes the shared
ServiceContainer, registers all tool modules and resources, and serves
them over the recovering stdio transport.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastmcp import FastMCP

from klaviyo_mcp.config import Settings
from klaviyo_mcp.services import ServiceContainer, create_services
from klaviyo_mcp.resources import register_resources
from klaviyo_mcp.transport.stdio import serve_stdio

# Import tool registration functions
from klaviyo_mcp.tools.cache import register_cache_tools
from klaviyo_mcp.tools.campaigns import register_campaign_tools
from klaviyo_mcp.tools.lists import register_list_tools
from klaviyo_mcp.tools.metrics import register_metric_tools
from klaviyo_mcp.tools.profiles import register_profile_tools

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared configuration
# ---------------------------------------------------------------------------
_settings = Settings()

# ---------------------------------------------------------------------------
# Structured logging (must be set up before any tool calls)
# ---------------------------------------------------------------------------
from klaviyo_mcp.logging_config import setup_logging  # noqa: E402

setup_logging(
    log_dir=_settings.log_dir,
    log_level=_settings.log_level,
    startup_quiet_seconds=_settings.startup_quiet_seconds,
)
logger.info("Klaviyo MCP structured logging initialized")

# ---------------------------------------------------------------------------
# Lazy-initialized globals
# ---------------------------------------------------------------------------
_services: ServiceContainer | None = None


def get_services() -> ServiceContainer:
    """Get or create the ServiceContainer (lazy init)."""
    global _services
    if _services is None:
        _services = create_services(_settings)
    return _services


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Run cache maintenance for the life of the session."""
    services = get_services()
    await services.start()
    logger.info("Klaviyo MCP server connected and ready")
    try:
        yield
    finally:
        await services.aclose()


# Create the MCP server
mcp = FastMCP("Klaviyo MCP", lifespan=lifespan)

# ---------------------------------------------------------------------------
# Register all tools and resources with the MCP server
# ---------------------------------------------------------------------------
register_campaign_tools(mcp, get_services)
register_profile_tools(mcp, get_services)
register_list_tools(mcp, get_services)
register_metric_tools(mcp, get_services)
register_cache_tools(mcp, get_services)
register_resources(mcp, get_services)


def main():
    """Entry point for the klaviyo-mcp CLI command."""
    logger.info("Starting Klaviyo MCP server...")
    asyncio.run(serve_stdio(mcp))


if __name__ == "__main__":
    main()
