"""Listing endpoints."""

import typing as t

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_provider, get_current_user
from app.core.database import get_db
from app.core.models import Freshness, ListingStatus, User, UserRole
from app.schemas.listing import (
    ListingCancel,
    ListingCreate,
    ListingListResponse,
    ListingResponse,
)
from app.schemas.statistics import ListingStats
from app.services import LifecycleError, ListingService
from app.utils.dates import Clock, get_clock
from app.utils.http_errors import lifecycle_http_error

ROUTER = APIRouter(prefix="/listings", tags=["Listings"])


@ROUTER.post(
    "", response_model=ListingResponse, status_code=status.HTTP_201_CREATED
)
async def create_listing(
    listing_data: ListingCreate,
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_provider)],
) -> ListingResponse:
    """Post surplus food.

    Args:
        listing_data (ListingCreate): The listing data.
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The provider posting the food.

    Returns:
        ListingResponse: The created listing.
    """
    try:
        return await ListingService(db, clock).create_listing(
            current_user.id, listing_data
        )
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc


@ROUTER.get("", response_model=ListingListResponse)
async def list_my_listings(
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_provider)],
    listing_status: ListingStatus | None = Query(
        None, alias="status", description="Filter by listing status"
    ),
) -> ListingListResponse:
    """List the current provider's listings, open and urgent first.

    Args:
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The provider.
        listing_status (ListingStatus | None): Filter by listing status.

    Returns:
        ListingListResponse: The provider's listings.
    """
    try:
        return await ListingService(db, clock).list_provider_listings(
            current_user.id, listing_status
        )
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc


@ROUTER.get("/available", response_model=ListingListResponse)
async def list_available_listings(  # pylint: disable=too-many-arguments,too-many-positional-arguments,line-too-long  # noqa: E501
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    _: t.Annotated[User, Depends(get_current_user)],
    search: str | None = Query(
        None, description="Search in title and description"
    ),
    freshness: Freshness | None = Query(
        None, description="Filter by freshness"
    ),
    sort_by: str = Query("created_at", description="Sort field"),
    order: t.Literal["asc", "desc"] = Query("desc", description="Sort order"),
) -> ListingListResponse:
    """Browse listings that can still be claimed.

    Args:
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        _ (User): The authenticated user.
        search (str | None): Search in title and description.
        freshness (Freshness | None): Filter by freshness.
        sort_by (str): Sort field.
        order (str): Sort order.

    Returns:
        ListingListResponse: The claimable listings.
    """
    try:
        return await ListingService(db, clock).list_available_listings(
            search=search, freshness=freshness, sort_by=sort_by, order=order
        )
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc


@ROUTER.get("/stats", response_model=ListingStats)
async def get_statistics(
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_provider)],
) -> ListingStats:
    """Get expiry and waste statistics.

    Providers see their own listings, admins see every listing.

    Args:
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The provider or admin.

    Returns:
        ListingStats: The statistics.
    """
    provider_id: int | None = (
        None if current_user.role == UserRole.ADMIN else current_user.id
    )
    try:
        return await ListingService(db, clock).get_statistics(provider_id)
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc


@ROUTER.get("/{listing_id}", response_model=ListingResponse)
async def get_listing(
    listing_id: int,
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_user)],
) -> ListingResponse:
    """Get a specific listing by ID.

    Args:
        listing_id (int): The ID of the listing.
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The authenticated user.

    Returns:
        ListingResponse: The listing.
    """
    try:
        return await ListingService(db, clock).get_listing(
            listing_id, viewer_id=current_user.id
        )
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc


@ROUTER.post("/{listing_id}/cancel", response_model=ListingResponse)
async def cancel_listing(
    listing_id: int,
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_provider)],
    cancel_data: ListingCancel | None = None,
) -> ListingResponse:
    """Withdraw an open listing.

    Args:
        listing_id (int): The ID of the listing.
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The provider owning the listing.
        cancel_data (ListingCancel | None): Optional reason.

    Returns:
        ListingResponse: The cancelled listing.
    """
    try:
        return await ListingService(db, clock).cancel_listing(
            listing_id,
            current_user.id,
            cancel_data.reason if cancel_data else None,
        )
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc


@ROUTER.delete("/{listing_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_listing(
    listing_id: int,
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_provider)],
) -> None:
    """Delete a listing without approved claims.

    Args:
        listing_id (int): The ID of the listing.
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The provider owning the listing.
    """
    try:
        await ListingService(db, clock).delete_listing(
            listing_id, current_user.id
        )
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc
