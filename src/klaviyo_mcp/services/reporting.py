"""Reporting API payload builders and fallback-aware queries.

The Klaviyo reporting endpoints reject some statistic / timeframe
combinations depending on account configuration, so each query carries a
simplified fallback request the client can use when the full one fails.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from klaviyo_mcp.config import (
    DEFAULT_STATISTICS,
    TIMEFRAME_OPTIONS,
    VALID_CAMPAIGN_STATISTICS,
    VALID_MEASUREMENTS,
    Settings,
    campaign_filter,
    date_range_filter,
)
from klaviyo_mcp.core.api_client import KlaviyoClient
from klaviyo_mcp.exceptions import KlaviyoError, KlaviyoValidationError

logger = logging.getLogger(__name__)

CAMPAIGN_VALUES_ENDPOINT = "/campaign-values-reports/"
METRIC_AGGREGATES_ENDPOINT = "/metric-aggregates/"


def _day_range(start: date, end: date) -> List[str]:
    return date_range_filter(
        f"{start.isoformat()}T00:00:00",
        f"{end.isoformat()}T23:59:59",
    )


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _data(payload: Any) -> Dict[str, Any]:
    data = payload.get("data") if isinstance(payload, dict) else None
    return data if isinstance(data, dict) else {}


def _campaign_message_ids(campaign: Any) -> List[str]:
    related = (_data(campaign).get("relationships") or {}).get("campaign-messages") or {}
    return [m["id"] for m in related.get("data") or [] if isinstance(m, dict) and "id" in m]


class ReportingService:
    """Campaign and metric reporting on top of ``KlaviyoClient``."""

    def __init__(self, client: KlaviyoClient, settings: Settings):
        self._client = client
        self._settings = settings

    # ------------------------------------------------------------------
    # Payloads
    # ------------------------------------------------------------------

    def campaign_values_payload(
        self,
        campaign_id: str,
        statistics: Sequence[str],
        timeframe: Optional[Dict[str, str]] = None,
        conversion_metric_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return {
            "data": {
                "type": "campaign-values-report",
                "attributes": {
                    "statistics": list(statistics),
                    "timeframe": timeframe or {"key": self._settings.default_timeframe},
                    "conversion_metric_id": conversion_metric_id
                    or self._settings.default_conversion_metric_id,
                    "filter": campaign_filter(campaign_id),
                },
            }
        }

    def metric_aggregate_payload(
        self,
        metric_id: str,
        measurement: str,
        filters: List[str],
        group_by: Optional[Sequence[str]] = None,
        timeframe_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        attributes: Dict[str, Any] = {
            "metric_id": metric_id,
            "measurements": [measurement],
            "interval": "day",
            "filter": filters,
            "timezone": "UTC",
        }
        if timeframe_key:
            attributes["timeframe"] = {"key": timeframe_key}
        if group_by:
            attributes["by"] = list(group_by)
        return {"data": {"type": "metric-aggregate", "attributes": attributes}}

    @staticmethod
    def aggregate_filters(
        timeframe: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Resolve a timeframe into date filters or a timeframe key.

        Explicit dates win. ``last_30_days`` and ``this_month`` become date
        filters; other known keys are passed through; anything else falls
        back to the last 7 days.
        """
        today = today or _today()
        if start_date and end_date:
            start = date.fromisoformat(start_date.split("T")[0])
            end = date.fromisoformat(end_date.split("T")[0])
            return {"filters": _day_range(start, end), "timeframe_key": None}
        if timeframe == "last_30_days":
            return {
                "filters": _day_range(today - timedelta(days=30), today),
                "timeframe_key": None,
            }
        if timeframe == "this_month":
            return {
                "filters": _day_range(today.replace(day=1), today),
                "timeframe_key": None,
            }
        if timeframe in TIMEFRAME_OPTIONS:
            return {"filters": [], "timeframe_key": timeframe}
        return {
            "filters": _day_range(today - timedelta(days=7), today),
            "timeframe_key": None,
        }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def campaign_metrics(
        self,
        campaign_id: str,
        statistics: Optional[Sequence[str]] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        conversion_metric_id: Optional[str] = None,
    ) -> Any:
        """Campaign values report; falls back to the basic statistic set."""
        requested = list(statistics or DEFAULT_STATISTICS["standard"])
        valid = [s for s in requested if s in VALID_CAMPAIGN_STATISTICS]
        if not valid:
            logger.warning(
                "No valid statistics in %s; using %s",
                requested, DEFAULT_STATISTICS["basic"],
            )
            valid = list(DEFAULT_STATISTICS["basic"])

        timeframe = None
        if start_date and end_date:
            timeframe = {"start": start_date, "end": end_date}

        payload = self.campaign_values_payload(
            campaign_id, valid, timeframe, conversion_metric_id
        )

        async def fallback(error: KlaviyoError) -> Any:
            logger.warning(
                "Campaign metrics failed (%s); retrying with basic statistics", error
            )
            basic = self.campaign_values_payload(
                campaign_id, DEFAULT_STATISTICS["basic"]
            )
            return await self._client.post(CAMPAIGN_VALUES_ENDPOINT, basic)

        return await self._client.post(CAMPAIGN_VALUES_ENDPOINT, payload, fallback)

    async def campaign_performance(self, campaign_id: str) -> Dict[str, Any]:
        """All-time performance summary for a sent campaign.

        Returns ``campaign_name``, ``send_time`` and the report ``metrics``.
        A failed comprehensive report falls back to the basic statistics
        and the result is tagged ``degraded``.
        """
        campaign = await self._client.get(f"/campaigns/{campaign_id}/")
        message_ids = _campaign_message_ids(campaign)
        if not message_ids:
            logger.warning("No campaign messages found for campaign ID: %s", campaign_id)
            raise KlaviyoValidationError(
                f"No campaign messages found for campaign ID: {campaign_id}",
                resource_id=campaign_id,
                suggestions=["Check that the campaign has at least one message"],
            )
        await self._client.get(f"/campaign-messages/{message_ids[0]}/")

        all_time = {"key": "all_time"}
        payload = self.campaign_values_payload(
            campaign_id, DEFAULT_STATISTICS["comprehensive"], all_time
        )

        async def fallback(error: KlaviyoError) -> Any:
            logger.warning(
                "Campaign performance failed (%s); retrying with basic statistics",
                error,
            )
            basic = self.campaign_values_payload(
                campaign_id, DEFAULT_STATISTICS["basic"], all_time
            )
            return await self._client.post(CAMPAIGN_VALUES_ENDPOINT, basic)

        report = await self._client.post(CAMPAIGN_VALUES_ENDPOINT, payload, fallback)

        attributes = _data(campaign).get("attributes") or {}
        performance: Dict[str, Any] = {
            "campaign_name": attributes.get("name"),
            "send_time": attributes.get("send_time"),
            "metrics": _data(report).get("attributes"),
        }
        if isinstance(report, dict) and report.get("degraded"):
            performance["degraded"] = True
        return performance

    async def metric_aggregates(
        self,
        metric_id: str,
        measurement: str,
        timeframe: str,
        group_by: Optional[Sequence[str]] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Any:
        """Aggregate a metric; falls back to a 7-day daily count."""
        if measurement not in VALID_MEASUREMENTS:
            logger.warning("Invalid measurement %r; using 'count'", measurement)
            measurement = "count"
        try:
            resolved = self.aggregate_filters(timeframe, start_date, end_date)
        except ValueError as e:
            raise KlaviyoValidationError(f"Invalid date: {e}") from e

        payload = self.metric_aggregate_payload(
            metric_id,
            measurement,
            resolved["filters"],
            group_by,
            resolved["timeframe_key"],
        )

        async def fallback(error: KlaviyoError) -> Any:
            logger.warning(
                "Metric aggregates failed (%s); retrying with a 7-day count", error
            )
            today = _today()
            simple = self.metric_aggregate_payload(
                metric_id, "count", _day_range(today - timedelta(days=7), today)
            )
            return await self._client.post(METRIC_AGGREGATES_ENDPOINT, simple)

        return await self._client.post(METRIC_AGGREGATES_ENDPOINT, payload, fallback)
