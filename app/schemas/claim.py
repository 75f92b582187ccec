"""Pydantic schemas for request/response validation."""

import typing as t
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.core.models import ClaimStatus, ListingStatus


class ClaimCreate(BaseModel):
    """Schema for claiming part of a listing."""

    listing_id: int
    requested_quantity: float = Field(..., gt=0)
    notes: str | None = Field(None, max_length=1000)


class ClaimApprove(BaseModel):
    """Schema for approving a claim."""

    approved_quantity: float | None = Field(
        None, gt=0, description="Defaults to the requested quantity"
    )


class ClaimReject(BaseModel):
    """Schema for rejecting a claim."""

    reason: str | None = Field(None, max_length=500)


class ClaimCancel(BaseModel):
    """Schema for cancelling a claim."""

    reason: str | None = Field(None, max_length=500)


class PickupVerify(BaseModel):
    """Schema for verifying a pickup code."""

    pickup_code: str = Field(..., min_length=1, max_length=12)


class ClaimResponse(BaseModel):
    """Schema for claim response.

    ``pickup_code`` is only filled in for the receiver who owns the claim.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    listing_id: int
    listing_title: str
    listing_status: ListingStatus
    receiver_id: int
    requested_quantity: float
    approved_quantity: float | None = None
    unit: str
    status: ClaimStatus
    notes: str | None = None
    pickup_code: str | None = None
    pickup_time: datetime | None = None
    actual_pickup_time: datetime | None = None
    cancel_reason: str | None = None
    rejection_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class ClaimListResponse(BaseModel):
    """Schema for claim list response."""

    claims: t.List[ClaimResponse]
    total: int
