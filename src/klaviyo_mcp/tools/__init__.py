"""Klaviyo MCP tool modules.

Each module exposes a ``register_*_tools(mcp, get_services)`` function
that attaches ``@klaviyo_tool`` handlers to the FastMCP server instance.
"""
