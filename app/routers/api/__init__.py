"""API routes package."""

from fastapi import APIRouter

from app.routers.api import analytics, auth, claims, cron, listings

# Create main API router with /api prefix
ROUTER = APIRouter(prefix="/api")

# Include all sub-routers
ROUTER.include_router(auth.ROUTER)
ROUTER.include_router(listings.ROUTER)
ROUTER.include_router(claims.ROUTER)
ROUTER.include_router(cron.ROUTER)
ROUTER.include_router(analytics.ROUTER)

__all__ = [
    "analytics",
    "auth",
    "claims",
    "cron",
    "listings",
    "ROUTER",
]
