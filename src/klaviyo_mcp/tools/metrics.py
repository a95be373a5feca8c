"""Metric and reporting MCP tools for Klaviyo.

Reporting tools carry a fallback: when the full query fails Klaviyo is
asked for a reduced report, and the response says so in ``note``.
"""

import logging
from typing import Callable, List, Optional

from fastmcp import FastMCP

from klaviyo_mcp.tools._decorator import klaviyo_tool
from klaviyo_mcp.tools._models import (
    CampaignMetricsInput,
    MetricAggregatesInput,
    PageInput,
    ResourceIdInput,
)
from klaviyo_mcp.tools._response import summarize_page, with_fallback_note

logger = logging.getLogger(__name__)


def register_metric_tools(mcp: FastMCP, get_services: Callable):
    """Register metric and reporting MCP tools."""

    @klaviyo_tool(mcp, read_only=True)
    async def get_metrics(
        filter: Optional[str] = None,
        page_cursor: Optional[str] = None,
    ) -> dict:
        """Get metrics (event types such as Placed Order) from Klaviyo."""
        params = PageInput(filter=filter, page_cursor=page_cursor).to_params()
        payload = await get_services().client.get("/metrics/", params)
        return summarize_page(payload)

    @klaviyo_tool(mcp, read_only=True)
    async def get_metric(id: str) -> dict:
        """Get a specific metric from Klaviyo."""
        ResourceIdInput(id=id)
        return await get_services().client.get(f"/metrics/{id}/")

    @klaviyo_tool(mcp, read_only=True)
    async def get_campaign_metrics(
        id: str,
        metrics: Optional[List[str]] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        conversion_metric_id: Optional[str] = None,
    ) -> dict:
        """Get performance metrics for a campaign (open rate, click rate, ...).

        Args:
            id: The campaign ID.
            metrics: Statistics to fetch, e.g. ``["open_rate", "click_rate"]``.
                     Unsupported names are dropped.
            start_date: ISO 8601 start; needs end_date. Defaults to the last 30 days.
            end_date: ISO 8601 end.
            conversion_metric_id: Metric used for conversion statistics.
        """
        model = CampaignMetricsInput(
            id=id,
            metrics=metrics,
            start_date=start_date,
            end_date=end_date,
            conversion_metric_id=conversion_metric_id,
        )
        result = await get_services().reporting.campaign_metrics(
            model.id,
            model.metrics,
            model.start_date,
            model.end_date,
            model.conversion_metric_id,
        )
        return with_fallback_note(
            result, "Used fallback approach with minimal statistics."
        )

    @klaviyo_tool(mcp, read_only=True)
    async def get_campaign_performance(id: str) -> dict:
        """Get an all-time performance summary for a sent campaign.

        Returns the campaign name, send time and report metrics.
        """
        ResourceIdInput(id=id)
        result = await get_services().reporting.campaign_performance(id)
        return with_fallback_note(
            result, "Limited metrics available due to API constraints."
        )

    @klaviyo_tool(mcp, read_only=True)
    async def query_metric_aggregates(
        metric_id: str,
        measurement: str = "count",
        timeframe: str = "last_30_days",
        group_by: Optional[List[str]] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> dict:
        """Query aggregated metric data for custom analytics reporting.

        Args:
            metric_id: The metric to aggregate.
            measurement: count, unique, sum, average, min or max.
            timeframe: e.g. last_30_days, this_month, last_90_days.
            group_by: Dimensions to group by, e.g. ``["$message"]``.
            start_date: Custom start (ISO 8601); overrides timeframe with end_date.
            end_date: Custom end (ISO 8601).
        """
        model = MetricAggregatesInput(
            metric_id=metric_id,
            measurement=measurement,
            timeframe=timeframe,
            group_by=group_by,
            start_date=start_date,
            end_date=end_date,
        )
        result = await get_services().reporting.metric_aggregates(
            model.metric_id,
            model.measurement,
            model.timeframe,
            model.group_by,
            model.start_date,
            model.end_date,
        )
        return with_fallback_note(
            result, "Used fallback approach with simplified parameters."
        )
