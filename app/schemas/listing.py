"""Pydantic schemas for request/response validation."""

import typing as t
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.models import Freshness, ListingStatus, Priority


class ListingBase(BaseModel):
    """Base listing schema."""

    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    food_items: str | None = Field(None, max_length=2000)
    allergens: str | None = Field(None, max_length=255)
    pickup_instructions: str | None = Field(None, max_length=1000)
    total_quantity: float = Field(..., gt=0)
    unit: str = Field("kg", min_length=1, max_length=20)
    freshness: Freshness = Freshness.FRESH


class ListingCreate(ListingBase):
    """Schema for creating a new listing."""

    available_from: datetime | None = None
    available_until: datetime | None = None

    @model_validator(mode="after")
    def validate_availability(self) -> "ListingCreate":
        """Ensure the availability window is not inverted.

        Returns:
            ListingCreate: The validated schema.
        """
        if (
            self.available_from is not None
            and self.available_until is not None
            and self.available_until <= self.available_from
        ):
            raise ValueError("available_until must be after available_from")
        return self


class ListingCancel(BaseModel):
    """Schema for cancelling a listing."""

    reason: str | None = Field(None, max_length=500)


class ListingResponse(ListingBase):
    """Schema for listing response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    provider_id: int
    priority: Priority
    status: ListingStatus
    safe_until: datetime
    available_from: datetime
    available_until: datetime
    claimed_quantity: float
    remaining_quantity: float
    wasted_quantity: float
    completion_rate: float
    time_remaining: str
    is_expired: bool
    claim_count: int
    created_at: datetime
    updated_at: datetime


class ListingListResponse(BaseModel):
    """Schema for listing list response."""

    listings: t.List[ListingResponse]
    total: int
