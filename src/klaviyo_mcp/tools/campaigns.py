"""Campaign MCP tools for Klaviyo."""

import logging
from typing import Callable, Optional

from fastmcp import FastMCP

from klaviyo_mcp.tools._decorator import klaviyo_tool
from klaviyo_mcp.tools._models import PageInput, ResourceIdInput
from klaviyo_mcp.tools._response import summarize_page

logger = logging.getLogger(__name__)

# Klaviyo requires a channel filter on the campaigns list endpoint
DEFAULT_CAMPAIGN_FILTER = "equals(messages.channel,'email')"


def register_campaign_tools(mcp: FastMCP, get_services: Callable):
    """Register all campaign-related MCP tools."""

    @klaviyo_tool(mcp, read_only=True)
    async def get_campaigns(
        filter: Optional[str] = None,
        page_size: Optional[int] = None,
        page_cursor: Optional[str] = None,
    ) -> dict:
        """Get campaigns from Klaviyo.

        Args:
            filter: JSON:API filter, e.g. ``equals(messages.channel,'sms')``.
                    Defaults to email campaigns.
            page_size: Number of campaigns per page (1-100).
            page_cursor: Cursor from a previous call's ``next_cursor``.
        """
        params = PageInput(
            filter=filter or DEFAULT_CAMPAIGN_FILTER,
            page_size=page_size,
            page_cursor=page_cursor,
        ).to_params()
        payload = await get_services().client.get("/campaigns/", params)
        return summarize_page(payload)

    @klaviyo_tool(mcp, read_only=True)
    async def get_campaign(id: str) -> dict:
        """Get a specific campaign from Klaviyo.

        Args:
            id: The campaign ID.
        """
        ResourceIdInput(id=id)
        return await get_services().client.get(f"/campaigns/{id}/")

    @klaviyo_tool(mcp, read_only=True)
    async def get_campaign_messages(campaign_id: str) -> dict:
        """Get all messages for a specific campaign."""
        ResourceIdInput(id=campaign_id)
        payload = await get_services().client.get(
            f"/campaigns/{campaign_id}/campaign-messages/"
        )
        return summarize_page(payload)

    @klaviyo_tool(mcp, read_only=True)
    async def get_campaign_message(id: str) -> dict:
        """Get a specific campaign message including template details."""
        ResourceIdInput(id=id)
        return await get_services().client.get(
            f"/campaign-messages/{id}/", {"include": "template"}
        )

    @klaviyo_tool(mcp, read_only=True)
    async def get_campaign_recipient_estimation(id: str) -> dict:
        """Get the estimated recipient count for a campaign."""
        ResourceIdInput(id=id)
        return await get_services().client.get(
            f"/campaign-recipient-estimations/{id}/"
        )
