"""Claim endpoints."""

import typing as t

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import (
    get_current_provider,
    get_current_receiver,
    get_current_user,
)
from app.core.database import get_db
from app.core.models import Claim, ClaimStatus, User, UserRole
from app.schemas.claim import (
    ClaimApprove,
    ClaimCancel,
    ClaimCreate,
    ClaimListResponse,
    ClaimReject,
    ClaimResponse,
    PickupVerify,
)
from app.services import ClaimService, LifecycleError
from app.utils.dates import Clock, get_clock
from app.utils.http_errors import lifecycle_http_error

ROUTER = APIRouter(prefix="/claims", tags=["Claims"])


@ROUTER.post(
    "", response_model=ClaimResponse, status_code=status.HTTP_201_CREATED
)
async def create_claim(
    claim_data: ClaimCreate,
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_receiver)],
) -> ClaimResponse:
    """Request part of a listing.

    Args:
        claim_data (ClaimCreate): The listing and requested quantity.
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The receiver making the claim.

    Returns:
        ClaimResponse: The pending claim.
    """
    service: ClaimService = ClaimService(db, clock)
    try:
        claim: Claim = await service.create_claim(
            claim_data.listing_id,
            current_user.id,
            claim_data.requested_quantity,
            claim_data.notes,
        )
        return await service.claim_response(claim, include_code=True)
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc


@ROUTER.get("", response_model=ClaimListResponse)
async def list_claims(
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_user)],
    claim_status: ClaimStatus | None = Query(
        None, alias="status", description="Filter by claim status"
    ),
) -> ClaimListResponse:
    """List claims: made on my listings (provider) or made by me.

    Args:
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The authenticated user.
        claim_status (ClaimStatus | None): Filter by claim status.

    Returns:
        ClaimListResponse: The claims, newest first.
    """
    service: ClaimService = ClaimService(db, clock)
    try:
        if current_user.role == UserRole.PROVIDER:
            return await service.list_provider_claims(
                current_user.id, claim_status
            )
        return await service.list_receiver_claims(
            current_user.id, claim_status
        )
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc


@ROUTER.get("/search", response_model=ClaimResponse)
async def find_claim_by_email(
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_provider)],
    email: str = Query(..., description="Receiver email address"),
) -> ClaimResponse:
    """Find a receiver's active claim on my listings by their email.

    Args:
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The provider.
        email (str): The receiver's email address.

    Returns:
        ClaimResponse: The receiver's most recent active claim.
    """
    try:
        return await ClaimService(db, clock).find_active_claim_by_email(
            current_user.id, email
        )
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc


@ROUTER.get("/{claim_id}", response_model=ClaimResponse)
async def get_claim(
    claim_id: int,
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_user)],
) -> ClaimResponse:
    """Get a claim I made or a claim on one of my listings.

    Args:
        claim_id (int): The ID of the claim.
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The authenticated user.

    Returns:
        ClaimResponse: The claim.
    """
    try:
        return await ClaimService(db, clock).get_claim(
            claim_id, current_user.id
        )
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc


@ROUTER.post("/{claim_id}/approve", response_model=ClaimResponse)
async def approve_claim(
    claim_id: int,
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_provider)],
    approve_data: ClaimApprove | None = None,
) -> ClaimResponse:
    """Approve a pending claim, optionally for less than requested.

    Args:
        claim_id (int): The ID of the claim.
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The provider owning the listing.
        approve_data (ClaimApprove | None): Optional approved quantity.

    Returns:
        ClaimResponse: The approved claim.
    """
    service: ClaimService = ClaimService(db, clock)
    try:
        claim: Claim = await service.approve_claim(
            claim_id,
            current_user.id,
            approve_data.approved_quantity if approve_data else None,
        )
        return await service.claim_response(claim)
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc


@ROUTER.post("/{claim_id}/reject", response_model=ClaimResponse)
async def reject_claim(
    claim_id: int,
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_provider)],
    reject_data: ClaimReject | None = None,
) -> ClaimResponse:
    """Reject a pending claim.

    Args:
        claim_id (int): The ID of the claim.
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The provider owning the listing.
        reject_data (ClaimReject | None): Optional reason.

    Returns:
        ClaimResponse: The rejected claim.
    """
    service: ClaimService = ClaimService(db, clock)
    try:
        claim: Claim = await service.reject_claim(
            claim_id,
            current_user.id,
            reject_data.reason if reject_data else None,
        )
        return await service.claim_response(claim)
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc


@ROUTER.post("/{claim_id}/verify", response_model=ClaimResponse)
async def verify_pickup_code(
    claim_id: int,
    verify_data: PickupVerify,
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_provider)],
) -> ClaimResponse:
    """Check the pickup code the receiver presents at the counter.

    Args:
        claim_id (int): The ID of the claim.
        verify_data (PickupVerify): The presented code.
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The provider owning the listing.

    Returns:
        ClaimResponse: The confirmed claim.
    """
    service: ClaimService = ClaimService(db, clock)
    try:
        claim: Claim = await service.verify_pickup_code(
            claim_id, current_user.id, verify_data.pickup_code
        )
        return await service.claim_response(claim)
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc


@ROUTER.post("/{claim_id}/confirm", response_model=ClaimResponse)
async def confirm_claim(
    claim_id: int,
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_receiver)],
) -> ClaimResponse:
    """Confirm an approved claim as its receiver.

    Args:
        claim_id (int): The ID of the claim.
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The receiver owning the claim.

    Returns:
        ClaimResponse: The confirmed claim, with its pickup code.
    """
    service: ClaimService = ClaimService(db, clock)
    try:
        claim: Claim = await service.confirm_claim(claim_id, current_user.id)
        return await service.claim_response(claim, include_code=True)
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc


@ROUTER.post("/{claim_id}/complete", response_model=ClaimResponse)
async def complete_delivery(
    claim_id: int,
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_provider)],
) -> ClaimResponse:
    """Record the hand-over of a confirmed claim.

    Args:
        claim_id (int): The ID of the claim.
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The provider owning the listing.

    Returns:
        ClaimResponse: The completed claim.
    """
    service: ClaimService = ClaimService(db, clock)
    try:
        claim: Claim = await service.complete_delivery(
            claim_id, current_user.id
        )
        return await service.claim_response(claim)
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc


@ROUTER.post("/{claim_id}/cancel", response_model=ClaimResponse)
async def cancel_claim(
    claim_id: int,
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
    current_user: t.Annotated[User, Depends(get_current_receiver)],
    cancel_data: ClaimCancel | None = None,
) -> ClaimResponse:
    """Withdraw one of my pending or approved claims.

    Args:
        claim_id (int): The ID of the claim.
        db (AsyncSession): The database session.
        clock (Clock): The application clock.
        current_user (User): The receiver owning the claim.
        cancel_data (ClaimCancel | None): Optional reason.

    Returns:
        ClaimResponse: The cancelled claim.
    """
    service: ClaimService = ClaimService(db, clock)
    try:
        claim: Claim = await service.cancel_claim(
            claim_id,
            current_user.id,
            cancel_data.reason if cancel_data else None,
        )
        return await service.claim_response(claim, include_code=True)
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc
