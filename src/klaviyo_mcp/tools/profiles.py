"""Profile MCP tools for Klaviyo.

Profiles are cached for only a few minutes; writes go straight through
and drop the cached profile pages so later reads see the change.
"""

import logging
from typing import Any, Callable, Dict, Optional

from fastmcp import FastMCP

from klaviyo_mcp.tools._decorator import klaviyo_tool
from klaviyo_mcp.tools._models import (
    CreateProfileInput,
    PageInput,
    ResourceIdInput,
    UpdateProfileInput,
)
from klaviyo_mcp.tools._response import summarize_page

logger = logging.getLogger(__name__)


def register_profile_tools(mcp: FastMCP, get_services: Callable):
    """Register all profile-related MCP tools."""

    @klaviyo_tool(mcp, read_only=True)
    async def get_profiles(
        filter: Optional[str] = None,
        page_size: Optional[int] = None,
        page_cursor: Optional[str] = None,
    ) -> dict:
        """Get profiles from Klaviyo.

        Args:
            filter: JSON:API filter, e.g. ``equals(email,"a@example.com")``.
            page_size: Number of profiles per page (1-100).
            page_cursor: Cursor from a previous call's ``next_cursor``.
        """
        params = PageInput(
            filter=filter, page_size=page_size, page_cursor=page_cursor
        ).to_params()
        payload = await get_services().client.get("/profiles/", params)
        return summarize_page(payload)

    @klaviyo_tool(mcp, read_only=True)
    async def get_profile(id: str) -> dict:
        """Get a specific profile from Klaviyo."""
        ResourceIdInput(id=id)
        return await get_services().client.get(f"/profiles/{id}/")

    @klaviyo_tool(mcp)
    async def create_profile(
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        external_id: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        organization: Optional[str] = None,
        title: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
    ) -> dict:
        """Create a new profile in Klaviyo.

        At least one of email, phone_number or external_id is required.
        Phone numbers must be in E.164 format (e.g. +15005550006).
        """
        model = CreateProfileInput(
            email=email,
            phone_number=phone_number,
            external_id=external_id,
            first_name=first_name,
            last_name=last_name,
            organization=organization,
            title=title,
            properties=properties,
        )
        services = get_services()
        result = await services.client.post(
            "/profiles/",
            {"data": {"type": "profile", "attributes": model.to_attributes()}},
        )
        services.cache.clear_by_type("profiles")
        return result

    @klaviyo_tool(mcp, idempotent=True)
    async def update_profile(
        id: str,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        external_id: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        organization: Optional[str] = None,
        title: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
    ) -> dict:
        """Update an existing profile. Only the given attributes change."""
        model = UpdateProfileInput(
            id=id,
            email=email,
            phone_number=phone_number,
            external_id=external_id,
            first_name=first_name,
            last_name=last_name,
            organization=organization,
            title=title,
            properties=properties,
        )
        services = get_services()
        result = await services.client.patch(
            f"/profiles/{id}/",
            {
                "data": {
                    "type": "profile",
                    "id": id,
                    "attributes": model.to_attributes(),
                }
            },
        )
        services.cache.clear_by_type("profiles")
        return result
