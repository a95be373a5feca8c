"""Service layer wiring.

``ServiceContainer`` owns the process-wide ``ResponseCache`` and the
``KlaviyoClient`` built on top of it, plus the background tasks that keep
the cache tidy. Tools receive the container through a lazy getter.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from klaviyo_mcp.config import Settings
from klaviyo_mcp.core.api_client import KlaviyoClient
from klaviyo_mcp.core.cache import ResponseCache
from klaviyo_mcp.services.reporting import ReportingService

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Holds all service instances with proper dependency wiring."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or Settings()

        self.cache = ResponseCache(
            ttl_seconds=self.settings.cache_ttl_seconds,
            max_entries=self.settings.cache_max_entries,
            enabled=self.settings.cache_enabled,
        )
        self.client = KlaviyoClient(self.settings, self.cache, http=http)
        self.reporting = ReportingService(self.client, self.settings)

        self._stats_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the cache sweeper and the periodic stats log."""
        if not self.cache.enabled:
            return
        self.cache.start_sweeper(self.settings.cache_sweep_interval_seconds)
        if self._stats_task is None:
            self._stats_task = asyncio.get_running_loop().create_task(
                self._log_stats_forever(self.settings.cache_stats_interval_seconds)
            )
        logger.info(
            "Cache initialized (max_entries=%d, ttl=%s)",
            self.settings.cache_max_entries,
            self.settings.cache_ttl_seconds,
        )

    async def aclose(self) -> None:
        await self.cache.stop_sweeper()
        task, self._stats_task = self._stats_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.client.aclose()

    async def _log_stats_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            logger.debug("Cache statistics: %s", self.cache.stats())


def create_services(settings: Optional[Settings] = None) -> ServiceContainer:
    """Create the full service graph with proper dependency injection."""
    return ServiceContainer(settings)


__all__ = ["ServiceContainer", "ReportingService", "create_services"]
