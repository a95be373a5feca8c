"""Pydantic input models for MCP tool validation.

Every tool with non-trivial arguments gets a model with Field() constraints.
Models are organized by domain section.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =========================================================================
# Base
# =========================================================================


class StrictModel(BaseModel):
    """Base model that rejects extra fields."""

    model_config = ConfigDict(extra="forbid")


class ResourceIdInput(StrictModel):
    """Input requiring a Klaviyo resource id."""

    id: str = Field(..., min_length=1, max_length=128)


class PageInput(StrictModel):
    """Common list-endpoint parameters."""

    filter: Optional[str] = Field(None, description="JSON:API filter expression")
    page_size: Optional[int] = Field(None, ge=1, le=100)
    page_cursor: Optional[str] = None

    def to_params(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# =========================================================================
# Profiles
# =========================================================================


class ProfileAttributes(StrictModel):
    """Writable profile attributes (at least one identifier required on create)."""

    email: Optional[str] = Field(None, max_length=254)
    phone_number: Optional[str] = Field(None, max_length=32)
    external_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    organization: Optional[str] = None
    title: Optional[str] = None
    properties: Optional[Dict[str, Any]] = None

    @field_validator("email")
    @classmethod
    def email_must_look_valid(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and "@" not in v:
            raise ValueError("email must contain '@'")
        return v

    def to_attributes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class CreateProfileInput(ProfileAttributes):
    @model_validator(mode="after")
    def needs_identifier(self) -> "CreateProfileInput":
        if not (self.email or self.phone_number or self.external_id):
            raise ValueError("one of email, phone_number or external_id is required")
        return self


class UpdateProfileInput(ProfileAttributes):
    id: str = Field(..., min_length=1, max_length=128)

    def to_attributes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude={"id"})


# =========================================================================
# Lists
# =========================================================================


class CreateListInput(StrictModel):
    name: str = Field(..., min_length=1, max_length=256)


class ListProfilesInput(StrictModel):
    list_id: str = Field(..., min_length=1, max_length=128)
    profile_ids: List[str] = Field(..., min_length=1, max_length=1000)


# =========================================================================
# Reporting
# =========================================================================


class CampaignMetricsInput(StrictModel):
    id: str = Field(..., min_length=1, max_length=128)
    metrics: Optional[List[str]] = None
    start_date: Optional[str] = Field(None, description="ISO 8601 start")
    end_date: Optional[str] = Field(None, description="ISO 8601 end")
    conversion_metric_id: Optional[str] = None


class MetricAggregatesInput(StrictModel):
    metric_id: str = Field(..., min_length=1, max_length=128)
    measurement: str = "count"
    timeframe: str = "last_30_days"
    group_by: Optional[List[str]] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None


# =========================================================================
# Cache
# =========================================================================


class ClearCacheInput(StrictModel):
    cache_type: Optional[
        Literal["metrics", "campaigns", "templates", "profiles", "default"]
    ] = None
