"""MCP resource templates for Klaviyo objects.

Each ``klaviyo://<kind>/{id}`` URI resolves to the pretty-printed JSON:API
document for that object, or an error line when the lookup fails.
"""

import json
import logging
from typing import Callable, Dict

from fastmcp import FastMCP

from klaviyo_mcp.exceptions import KlaviyoError

logger = logging.getLogger(__name__)

# URI kind -> API collection
RESOURCE_ENDPOINTS: Dict[str, str] = {
    "profile": "profiles",
    "list": "lists",
    "segment": "segments",
    "campaign": "campaigns",
    "flow": "flows",
    "template": "templates",
    "metric": "metrics",
    "catalog": "catalogs",
}


async def read_resource(get_services: Callable, kind: str, resource_id: str) -> str:
    """Fetch one object; failures become readable text, never exceptions."""
    collection = RESOURCE_ENDPOINTS[kind]
    try:
        document = await get_services().client.get(f"/{collection}/{resource_id}/")
    except KlaviyoError as e:
        logger.warning("Resource %s/%s failed: %s", kind, resource_id, e)
        return f"Error fetching {kind}: {e}"
    return json.dumps(document, indent=2, default=str)


def register_resources(mcp: FastMCP, get_services: Callable):
    """Register a resource template per entry in ``RESOURCE_ENDPOINTS``."""
    for kind in RESOURCE_ENDPOINTS:
        _register(mcp, get_services, kind)


def _register(mcp: FastMCP, get_services: Callable, kind: str) -> None:
    async def resource(id: str) -> str:
        return await read_resource(get_services, kind, id)

    resource.__name__ = f"{kind}_resource"
    resource.__doc__ = f"Klaviyo {kind} by ID."
    mcp.resource(
        f"klaviyo://{kind}/{{id}}",
        name=kind,
        mime_type="application/json",
    )(resource)
