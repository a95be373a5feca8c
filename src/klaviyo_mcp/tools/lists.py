"""List MCP tools for Klaviyo."""

import logging
from typing import Callable, List, Optional

from fastmcp import FastMCP

from klaviyo_mcp.tools._decorator import klaviyo_tool
from klaviyo_mcp.tools._models import (
    CreateListInput,
    ListProfilesInput,
    PageInput,
    ResourceIdInput,
)
from klaviyo_mcp.tools._response import summarize_page

logger = logging.getLogger(__name__)


def register_list_tools(mcp: FastMCP, get_services: Callable):
    """Register all list-related MCP tools."""

    @klaviyo_tool(mcp, read_only=True)
    async def get_lists(
        filter: Optional[str] = None,
        page_cursor: Optional[str] = None,
    ) -> dict:
        """Get lists from Klaviyo.

        Args:
            filter: JSON:API filter, e.g. ``equals(name,"Newsletter")``.
            page_cursor: Cursor from a previous call's ``next_cursor``.
        """
        params = PageInput(filter=filter, page_cursor=page_cursor).to_params()
        payload = await get_services().client.get("/lists/", params)
        return summarize_page(payload)

    @klaviyo_tool(mcp, read_only=True)
    async def get_list(id: str) -> dict:
        """Get a specific list from Klaviyo."""
        ResourceIdInput(id=id)
        return await get_services().client.get(f"/lists/{id}/")

    @klaviyo_tool(mcp)
    async def create_list(name: str) -> dict:
        """Create a new list in Klaviyo."""
        model = CreateListInput(name=name)
        return await get_services().client.post(
            "/lists/",
            {"data": {"type": "list", "attributes": {"name": model.name}}},
        )

    @klaviyo_tool(mcp, destructive=True, idempotent=True)
    async def delete_list(id: str) -> dict:
        """Delete a list. Profiles on the list are not deleted."""
        ResourceIdInput(id=id)
        return await get_services().client.delete(f"/lists/{id}/")

    @klaviyo_tool(mcp, idempotent=True)
    async def add_profiles_to_list(list_id: str, profile_ids: List[str]) -> dict:
        """Add existing profiles to a list.

        Args:
            list_id: The list ID.
            profile_ids: Profile IDs to add (up to 1000 per call).
        """
        model = ListProfilesInput(list_id=list_id, profile_ids=profile_ids)
        return await get_services().client.post(
            f"/lists/{model.list_id}/relationships/profiles/",
            {"data": [{"type": "profile", "id": pid} for pid in model.profile_ids]},
        )
