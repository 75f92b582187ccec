"""Pydantic schemas for request/response validation."""

import typing as t
from datetime import datetime

from pydantic import BaseModel


class SweepResult(BaseModel):
    """Outcome of sweeping one listing."""

    listing_id: int
    title: str | None = None
    total_quantity: float | None = None
    claimed_quantity: float | None = None
    wasted_quantity: float | None = None
    outcome: t.Literal["expired", "error"]
    error: str | None = None


class SweepReport(BaseModel):
    """Summary of one expiry sweep."""

    checked_at: datetime
    updated_count: int
    results: t.List[SweepResult]


class CronSweepResponse(BaseModel):
    """Response of the out-of-band sweep endpoint."""

    success: bool
    message: str
    processed_count: int
    results: t.List[SweepResult]
    timestamp: datetime
