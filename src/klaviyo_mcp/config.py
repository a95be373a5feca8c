"""Configuration for the Klaviyo MCP Server.

Centralises the API, retry, cache and logging settings so that a Klaviyo
API revision bump or a tuning change touches a single file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes")


def _default_ttls() -> Dict[str, int]:
    return {
        "metrics": 3600,  # 1 hour
        "campaigns": 1800,  # 30 minutes
        "templates": 3600,
        "profiles": 300,  # 5 minutes
        "default": 600,
    }


# Statistics accepted by the campaign-values-reports endpoint
VALID_CAMPAIGN_STATISTICS: Tuple[str, ...] = (
    "delivered",
    "open_rate",
    "click_rate",
    "bounce_rate",
    "unsubscribe_rate",
    "revenue_per_recipient",
)

DEFAULT_STATISTICS: Dict[str, List[str]] = {
    "basic": ["delivered"],
    "standard": ["delivered", "open_rate", "click_rate", "bounce_rate"],
    "comprehensive": list(VALID_CAMPAIGN_STATISTICS),
}

VALID_MEASUREMENTS: Tuple[str, ...] = (
    "count",
    "unique",
    "sum",
    "average",
    "min",
    "max",
)

TIMEFRAME_OPTIONS: Tuple[str, ...] = (
    "today",
    "yesterday",
    "last_7_days",
    "last_14_days",
    "last_30_days",
    "last_90_days",
    "last_month",
    "this_month",
    "all_time",
)


def campaign_filter(campaign_id: str) -> str:
    """Reporting API filter selecting a single campaign."""
    return f'equals(campaign_id,"{campaign_id}")'


def date_range_filter(start: str, end: str) -> List[str]:
    """Metric-aggregate filters for a half-open datetime range."""
    return [
        f"greater-or-equal(datetime,{start})",
        f"less-than(datetime,{end})",
    ]


@dataclass
class Settings:
    """Server-wide configuration — single source of truth.

    Values come from environment variables with sensible defaults.
    """

    # Klaviyo API
    api_key: str = field(
        default_factory=lambda: os.environ.get("KLAVIYO_API_KEY", "")
    )
    base_url: str = field(
        default_factory=lambda: os.environ.get(
            "KLAVIYO_API_BASE_URL", "https://a.klaviyo.com/api"
        )
    )
    api_revision: str = field(
        default_factory=lambda: os.environ.get("KLAVIYO_API_REVISION", "2024-06-15")
    )
    request_timeout_seconds: float = 30.0
    default_timeframe: str = "last_30_days"
    default_conversion_metric_id: str = field(
        default_factory=lambda: os.environ.get(
            "KLAVIYO_CONVERSION_METRIC_ID", "VevE7N"  # Placed Order
        )
    )

    # Rate limiting / retry
    max_retries: int = 3
    initial_delay_ms: float = 1000.0
    max_delay_ms: float = 10000.0
    backoff_factor: float = 2.0

    # Caching
    cache_enabled: bool = field(
        default_factory=lambda: _env_bool("KLAVIYO_MCP_CACHE", "true")
    )
    cache_ttl_seconds: Dict[str, int] = field(default_factory=_default_ttls)
    cache_max_entries: int = 100
    cache_sweep_interval_seconds: float = 60.0
    cache_stats_interval_seconds: float = 300.0

    # Logging
    log_dir: str = field(
        default_factory=lambda: os.environ.get(
            "KLAVIYO_MCP_LOG_DIR",
            os.path.expanduser("~/.klaviyo-mcp/logs"),
        )
    )
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO")
    )
    log_requests: bool = True
    log_responses: bool = field(
        default_factory=lambda: _env_bool("LOG_RESPONSES", "false")
    )
    startup_quiet_seconds: float = 5.0

    def ttl_for(self, cache_type: str) -> int:
        """TTL in seconds for *cache_type*, falling back to ``default``."""
        ttls = self.cache_ttl_seconds
        return ttls.get(cache_type, ttls.get("default", 600))

    def ensure_dirs(self) -> None:
        """Create required directories if they don't exist."""
        Path(self.log_dir).mkdir(parents=True, exist_ok=True)
