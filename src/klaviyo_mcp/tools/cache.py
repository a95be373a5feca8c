"""Cache inspection and maintenance tools."""

from typing import Callable, Optional

from fastmcp import FastMCP

from klaviyo_mcp.tools._decorator import klaviyo_tool
from klaviyo_mcp.tools._models import ClearCacheInput


def register_cache_tools(mcp: FastMCP, get_services: Callable):
    """Register cache tools (local only, no Klaviyo calls)."""

    @klaviyo_tool(mcp, read_only=True, open_world=False)
    async def get_cache_stats() -> dict:
        """Show response-cache statistics: entries by type, TTLs, hit rate."""
        return get_services().cache.stats()

    @klaviyo_tool(mcp, destructive=True, idempotent=True, open_world=False)
    async def clear_cache(cache_type: Optional[str] = None) -> dict:
        """Clear cached Klaviyo responses.

        Args:
            cache_type: One of metrics, campaigns, templates, profiles,
                        default. Omit to clear everything.
        """
        model = ClearCacheInput(cache_type=cache_type)
        cache = get_services().cache
        if model.cache_type is None:
            removed = cache.clear_all()
        else:
            removed = cache.clear_by_type(model.cache_type)
        return {"cleared": removed, "cache_type": model.cache_type or "all"}
