"""Pydantic schemas for request/response validation."""

from pydantic import BaseModel


class ListingStats(BaseModel):
    """Schema for expiry and waste statistics of a provider's listings."""

    total_listings: int
    active_listings: int
    expired_listings: int
    today_expired: int
    total_claimed: float
    total_wasted: float
    waste_rate: float


class ImpactResponse(BaseModel):
    """Schema for the analytics counters of a user."""

    listings_created: int
    claims_made: int
    food_shared_kg: float
    food_received_kg: float
    carbon_saved: float
    water_saved: float
    points: int
    level: int
