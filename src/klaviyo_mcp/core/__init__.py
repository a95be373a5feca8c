"""Core infrastructure: API client, response cache, backoff."""

from klaviyo_mcp.core.api_client import KlaviyoClient, build_query, cache_key
from klaviyo_mcp.core.backoff import backoff_delay
from klaviyo_mcp.core.cache import CacheEntry, ResponseCache

__all__ = [
    "KlaviyoClient",
    "ResponseCache",
    "CacheEntry",
    "backoff_delay",
    "build_query",
    "cache_key",
]
