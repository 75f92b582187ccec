"""Schemas package."""

from app.schemas.auth import (
    Token,
    TokenData,
    UserCreate,
    UserResponse,
)
from app.schemas.claim import (
    ClaimApprove,
    ClaimCancel,
    ClaimCreate,
    ClaimListResponse,
    ClaimReject,
    ClaimResponse,
    PickupVerify,
)
from app.schemas.listing import (
    ListingCancel,
    ListingCreate,
    ListingListResponse,
    ListingResponse,
)
from app.schemas.statistics import ImpactResponse, ListingStats
from app.schemas.sweep import CronSweepResponse, SweepReport, SweepResult

__all__ = [
    "ClaimApprove",
    "ClaimCancel",
    "ClaimCreate",
    "ClaimListResponse",
    "ClaimReject",
    "ClaimResponse",
    "CronSweepResponse",
    "ImpactResponse",
    "ListingCancel",
    "ListingCreate",
    "ListingListResponse",
    "ListingResponse",
    "ListingStats",
    "PickupVerify",
    "SweepReport",
    "SweepResult",
    "Token",
    "TokenData",
    "UserCreate",
    "UserResponse",
]
