"""Claim service - business logic for the claim workflow.

Every mutating operation is one unit of work on a single listing: take the
listing write lock, re-read the listing with all its claims, validate,
write, flush. Domain events are queued on the session and only dispatched
after the caller committed.
"""

import logging
import typing as t
from datetime import datetime

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.events import (
    EVENT_BUS,
    ClaimApproved,
    ClaimCompleted,
    ClaimCreated,
    ListingExpired,
)
from app.core.models import (
    ACTIVE_CLAIM_STATUSES,
    CLAIMABLE_LISTING_STATUSES,
    Claim,
    ClaimStatus,
    Listing,
    ListingStatus,
    User,
)
from app.schemas.claim import ClaimListResponse, ClaimResponse
from app.services.errors import (
    DuplicateClaimError,
    ExpiredError,
    InsufficientQuantityError,
    InvalidCodeError,
    InvalidQuantityError,
    InvalidStateError,
    NotFoundError,
    translate_storage_errors,
)
from app.services.expiry_sweeper import ExpirySweeper
from app.services.ledger import QuantityLedger, compute_ledger, exceeds
from app.services.listing_state import ListingStateMachine, load_listing
from app.utils.codes import generate_pickup_code, pickup_code_matches
from app.utils.dates import SYSTEM_CLOCK, Clock, ensure_utc

LOGGER: logging.Logger = logging.getLogger(__name__)

DEFAULT_CANCEL_REASON: str = "Cancelled by receiver"
CANCELLABLE_CLAIM_STATUSES: t.FrozenSet[ClaimStatus] = frozenset(
    {ClaimStatus.PENDING, ClaimStatus.APPROVED}
)
VERIFIABLE_CLAIM_STATUSES: t.FrozenSet[ClaimStatus] = frozenset(
    {ClaimStatus.PENDING, ClaimStatus.APPROVED}
)


class ClaimService:
    """Service class for claim operations."""

    db: AsyncSession
    clock: Clock
    state_machine: ListingStateMachine

    def __init__(self, db: AsyncSession, clock: Clock = SYSTEM_CLOCK) -> None:
        """Initialize ClaimService.

        Args:
            db (AsyncSession): The database session.
            clock (Clock): Source of the current time.
        """
        self.db = db
        self.clock = clock
        self.state_machine = ListingStateMachine()

    @staticmethod
    def convert_claim_to_response(
        claim: Claim, listing: Listing, include_code: bool = False
    ) -> ClaimResponse:
        """Convert Claim model to ClaimResponse schema.

        Args:
            claim (Claim): The claim model.
            listing (Listing): The claimed listing.
            include_code (bool): Expose the pickup code (receiver only).

        Returns:
            ClaimResponse: The claim response schema.
        """
        return ClaimResponse(
            id=claim.id,
            listing_id=claim.listing_id,
            listing_title=listing.title,
            listing_status=listing.status,
            receiver_id=claim.receiver_id,
            requested_quantity=claim.requested_quantity,
            approved_quantity=claim.approved_quantity,
            unit=listing.unit,
            status=claim.status,
            notes=claim.notes,
            pickup_code=claim.pickup_code if include_code else None,
            pickup_time=claim.pickup_time,
            actual_pickup_time=claim.actual_pickup_time,
            cancel_reason=claim.cancel_reason,
            rejection_reason=claim.rejection_reason,
            created_at=claim.created_at,
            updated_at=claim.updated_at or claim.created_at,
        )

    async def claim_response(
        self, claim: Claim, include_code: bool = False
    ) -> ClaimResponse:
        """Convert a claim returned by a workflow operation.

        Args:
            claim (Claim): The claim model.
            include_code (bool): Expose the pickup code (receiver only).

        Returns:
            ClaimResponse: The claim response schema.
        """
        listing: Listing | None = await self.db.get(Listing, claim.listing_id)
        if listing is None:
            raise NotFoundError("Listing", claim.listing_id)
        return self.convert_claim_to_response(claim, listing, include_code)

    async def _lock_claim(self, claim_id: int) -> t.Tuple[Listing, Claim]:
        """Lock a claim's listing and return both, freshly read.

        Args:
            claim_id (int): The claim ID.

        Returns:
            Tuple[Listing, Claim]: The locked listing and the claim.
        """
        listing_id: int | None = (
            await self.db.execute(
                select(Claim.listing_id).where(Claim.id == claim_id)
            )
        ).scalar_one_or_none()
        if listing_id is None:
            raise NotFoundError("Claim", claim_id)

        listing: Listing = await load_listing(self.db, listing_id, lock=True)
        for claim in listing.claims:
            if claim.id == claim_id:
                return listing, claim
        raise NotFoundError("Claim", claim_id)

    async def _lock_provider_claim(
        self, claim_id: int, provider_id: int
    ) -> t.Tuple[Listing, Claim]:
        listing, claim = await self._lock_claim(claim_id)
        if listing.provider_id != provider_id:
            raise NotFoundError("Claim", claim_id)
        return listing, claim

    async def _lock_receiver_claim(
        self, claim_id: int, receiver_id: int
    ) -> t.Tuple[Listing, Claim]:
        listing, claim = await self._lock_claim(claim_id)
        if claim.receiver_id != receiver_id:
            raise NotFoundError("Claim", claim_id)
        return listing, claim

    async def _refuse_if_expired(
        self, listing: Listing, now: datetime
    ) -> None:
        """Raise ExpiredError for a listing past its safety window.

        A listing still marked claimable is swept first, and that expiry is
        committed on its own so the refusal does not roll it back.

        Args:
            listing (Listing): The locked listing.
            now (datetime): Current time.
        """
        if listing.status == ListingStatus.EXPIRED:
            raise ExpiredError(listing.id)
        if listing.status not in CLAIMABLE_LISTING_STATUSES:
            return
        if ensure_utc(listing.safe_until) > now:
            return

        event: ListingExpired
        _, event = ExpirySweeper(self.db, self.clock).expire_listing(
            listing, now
        )
        await self.db.commit()
        EVENT_BUS.queue(self.db, event)
        await EVENT_BUS.dispatch(self.db)
        raise ExpiredError(listing.id)

    def _complete_claim_event(
        self, listing: Listing, claim: Claim
    ) -> ClaimCompleted:
        return ClaimCompleted(
            claim_id=claim.id,
            listing_id=listing.id,
            provider_id=listing.provider_id,
            receiver_id=claim.receiver_id,
            quantity=claim.counted_quantity,
            unit=listing.unit,
            food_name=listing.food_items or listing.title,
        )

    @translate_storage_errors
    async def create_claim(
        self,
        listing_id: int,
        receiver_id: int,
        requested_quantity: float,
        notes: str | None = None,
    ) -> Claim:
        """Request part of a listing.

        Args:
            listing_id (int): The listing to claim from.
            receiver_id (int): The receiver making the claim.
            requested_quantity (float): Quantity requested, in listing units.
            notes (str | None): Free-text note for the provider.

        Returns:
            Claim: The new PENDING claim.
        """
        if requested_quantity <= 0:
            raise InvalidQuantityError("Requested quantity must be positive")

        now: datetime = self.clock.now()
        listing: Listing = await load_listing(self.db, listing_id, lock=True)
        await self._refuse_if_expired(listing, now)
        if listing.status not in CLAIMABLE_LISTING_STATUSES:
            raise InvalidStateError(
                "Listing is not available for claiming", listing.status.value
            )
        if any(
            claim.receiver_id == receiver_id
            and claim.status in ACTIVE_CLAIM_STATUSES
            for claim in listing.claims
        ):
            raise DuplicateClaimError(listing_id, receiver_id)

        ledger: QuantityLedger = compute_ledger(
            listing.total_quantity, listing.status, listing.claims
        )
        if exceeds(requested_quantity, ledger.remaining_quantity):
            raise InsufficientQuantityError(
                ledger.remaining_quantity, listing.unit
            )

        claim: Claim = Claim(
            listing_id=listing.id,
            receiver_id=receiver_id,
            requested_quantity=requested_quantity,
            status=ClaimStatus.PENDING,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        listing.claims.append(claim)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise DuplicateClaimError(listing_id, receiver_id) from exc

        LOGGER.info(
            "Claim %s created on listing %s by receiver %s (%s %s)",
            claim.id,
            listing.id,
            receiver_id,
            requested_quantity,
            listing.unit,
        )
        EVENT_BUS.queue(
            self.db,
            ClaimCreated(
                claim_id=claim.id,
                listing_id=listing.id,
                receiver_id=receiver_id,
                requested_quantity=requested_quantity,
            ),
        )
        return claim

    @translate_storage_errors
    async def approve_claim(
        self,
        claim_id: int,
        provider_id: int,
        approved_quantity: float | None = None,
    ) -> Claim:
        """Approve a pending claim and issue its pickup code.

        Args:
            claim_id (int): The claim to approve.
            provider_id (int): The provider owning the listing.
            approved_quantity (float | None):
                Quantity granted, defaults to the requested quantity.

        Returns:
            Claim: The APPROVED claim.
        """
        now: datetime = self.clock.now()
        listing, claim = await self._lock_provider_claim(claim_id, provider_id)
        if claim.status != ClaimStatus.PENDING:
            raise InvalidStateError(
                "Only pending claims can be approved", claim.status.value
            )
        await self._refuse_if_expired(listing, now)
        if listing.status not in CLAIMABLE_LISTING_STATUSES:
            raise InvalidStateError(
                "Listing is not available for claiming", listing.status.value
            )

        quantity: float = (
            claim.requested_quantity
            if approved_quantity is None
            else approved_quantity
        )
        if quantity <= 0 or quantity > claim.requested_quantity:
            raise InvalidQuantityError(
                "Approved quantity must be positive and at most the "
                "requested quantity"
            )
        ledger: QuantityLedger = compute_ledger(
            listing.total_quantity, listing.status, listing.claims
        )
        if exceeds(quantity, ledger.remaining_quantity):
            raise InsufficientQuantityError(
                ledger.remaining_quantity, listing.unit
            )

        claim.status = ClaimStatus.APPROVED
        claim.approved_quantity = quantity
        claim.pickup_code = generate_pickup_code()
        claim.updated_at = now
        self.state_machine.recompute(listing, now)
        await self.db.flush()

        LOGGER.info(
            "Claim %s approved for %s %s", claim.id, quantity, listing.unit
        )
        EVENT_BUS.queue(
            self.db,
            ClaimApproved(
                claim_id=claim.id,
                listing_id=listing.id,
                receiver_id=claim.receiver_id,
                approved_quantity=quantity,
                unit=listing.unit,
                pickup_code=claim.pickup_code,
            ),
        )
        return claim

    @translate_storage_errors
    async def reject_claim(
        self, claim_id: int, provider_id: int, reason: str | None = None
    ) -> Claim:
        """Reject a pending claim.

        Args:
            claim_id (int): The claim to reject.
            provider_id (int): The provider owning the listing.
            reason (str | None): Why the claim was rejected.

        Returns:
            Claim: The REJECTED claim.
        """
        now: datetime = self.clock.now()
        listing, claim = await self._lock_provider_claim(claim_id, provider_id)
        if claim.status != ClaimStatus.PENDING:
            raise InvalidStateError(
                "Only pending claims can be rejected", claim.status.value
            )

        claim.status = ClaimStatus.REJECTED
        claim.rejection_reason = reason
        claim.updated_at = now
        self.state_machine.recompute(listing, now)
        await self.db.flush()

        LOGGER.info("Claim %s rejected", claim.id)
        return claim

    @translate_storage_errors
    async def verify_pickup_code(
        self, claim_id: int, provider_id: int, input_code: str
    ) -> Claim:
        """Check the code presented at pickup and confirm the claim.

        A code can only be used once: a confirmed claim is no longer
        verifiable.

        Args:
            claim_id (int): The claim being picked up.
            provider_id (int): The provider handing the food over.
            input_code (str): The code the receiver presented.

        Returns:
            Claim: The CONFIRMED claim.
        """
        now: datetime = self.clock.now()
        listing, claim = await self._lock_provider_claim(claim_id, provider_id)
        if claim.status not in VERIFIABLE_CLAIM_STATUSES:
            raise InvalidStateError(
                "Pickup code cannot be verified", claim.status.value
            )
        if not pickup_code_matches(claim.pickup_code, input_code):
            LOGGER.warning("Invalid pickup code for claim %s", claim.id)
            raise InvalidCodeError()

        claim.status = ClaimStatus.CONFIRMED
        claim.pickup_time = now
        claim.updated_at = now
        self.state_machine.recompute(listing, now)
        await self.db.flush()

        LOGGER.info("Pickup code verified for claim %s", claim.id)
        return claim

    @translate_storage_errors
    async def confirm_claim(self, claim_id: int, receiver_id: int) -> Claim:
        """Confirm an approved claim from the receiver's side.

        Args:
            claim_id (int): The claim to confirm.
            receiver_id (int): The receiver owning the claim.

        Returns:
            Claim: The CONFIRMED claim, with a pickup code.
        """
        now: datetime = self.clock.now()
        listing, claim = await self._lock_receiver_claim(claim_id, receiver_id)
        if claim.status != ClaimStatus.APPROVED:
            raise InvalidStateError(
                "Only approved claims can be confirmed", claim.status.value
            )

        if claim.pickup_code is None:
            claim.pickup_code = generate_pickup_code()
        claim.status = ClaimStatus.CONFIRMED
        claim.pickup_time = now
        claim.updated_at = now
        self.state_machine.recompute(listing, now)
        await self.db.flush()

        LOGGER.info("Claim %s confirmed by receiver", claim.id)
        return claim

    @translate_storage_errors
    async def complete_delivery(
        self, claim_id: int, provider_id: int
    ) -> Claim:
        """Record the hand-over of a confirmed claim.

        Completing the last active claim completes the listing.

        Args:
            claim_id (int): The claim handed over.
            provider_id (int): The provider owning the listing.

        Returns:
            Claim: The COMPLETED claim.
        """
        now: datetime = self.clock.now()
        listing, claim = await self._lock_provider_claim(claim_id, provider_id)
        if claim.status != ClaimStatus.CONFIRMED:
            raise InvalidStateError(
                "Only confirmed claims can be completed", claim.status.value
            )

        claim.status = ClaimStatus.COMPLETED
        claim.actual_pickup_time = now
        claim.updated_at = now
        self.state_machine.recompute(listing, now)
        self.state_machine.apply_completion_rule(listing, now)
        await self.db.flush()

        LOGGER.info("Claim %s completed", claim.id)
        EVENT_BUS.queue(self.db, self._complete_claim_event(listing, claim))
        return claim

    @translate_storage_errors
    async def cancel_claim(
        self, claim_id: int, receiver_id: int, reason: str | None = None
    ) -> Claim:
        """Withdraw a pending or approved claim.

        The quantity goes back to the listing, which may become AVAILABLE
        again.

        Args:
            claim_id (int): The claim to cancel.
            receiver_id (int): The receiver owning the claim.
            reason (str | None): Why the claim was cancelled.

        Returns:
            Claim: The CANCELLED claim.
        """
        now: datetime = self.clock.now()
        listing, claim = await self._lock_receiver_claim(claim_id, receiver_id)
        if claim.status not in CANCELLABLE_CLAIM_STATUSES:
            raise InvalidStateError(
                "Only pending or approved claims can be cancelled",
                claim.status.value,
            )
        if self.state_machine.is_terminal(listing.status):
            raise InvalidStateError(
                "Claims of a closed listing cannot be cancelled",
                listing.status.value,
            )

        claim.status = ClaimStatus.CANCELLED
        claim.cancel_reason = reason or DEFAULT_CANCEL_REASON
        claim.updated_at = now
        self.state_machine.recompute(listing, now)
        await self.db.flush()

        LOGGER.info("Claim %s cancelled: %s", claim.id, claim.cancel_reason)
        return claim

    def _claims_query(self) -> Select[t.Tuple[Claim]]:
        return (
            select(Claim)
            .join(Listing, Claim.listing_id == Listing.id)
            .options(selectinload(Claim.listing))
            .order_by(Claim.created_at.desc(), Claim.id.desc())
        )

    async def _sweep(self) -> None:
        await ExpirySweeper(self.db, self.clock).sweep()

    @translate_storage_errors
    async def get_claim(self, claim_id: int, user_id: int) -> ClaimResponse:
        """Get a claim visible to its receiver or the listing's provider.

        Args:
            claim_id (int): The claim ID.
            user_id (int): The requesting user.

        Returns:
            ClaimResponse: The claim; the code is shown to the receiver only.
        """
        await self._sweep()
        claim: Claim | None = (
            await self.db.execute(
                self._claims_query().where(Claim.id == claim_id)
            )
        ).scalar_one_or_none()
        if claim is None:
            raise NotFoundError("Claim", claim_id)
        if user_id not in (claim.receiver_id, claim.listing.provider_id):
            raise NotFoundError("Claim", claim_id)
        return self.convert_claim_to_response(
            claim, claim.listing, include_code=claim.receiver_id == user_id
        )

    @translate_storage_errors
    async def list_receiver_claims(
        self, receiver_id: int, status: ClaimStatus | None = None
    ) -> ClaimListResponse:
        """List the claims a receiver made.

        Args:
            receiver_id (int): The receiver.
            status (ClaimStatus | None): Only claims in this status.

        Returns:
            ClaimListResponse: The claims, newest first.
        """
        await self._sweep()
        query: Select[t.Tuple[Claim]] = self._claims_query().where(
            Claim.receiver_id == receiver_id
        )
        if status is not None:
            query = query.where(Claim.status == status)
        claims: t.Sequence[Claim] = (
            (await self.db.execute(query)).scalars().all()
        )
        return ClaimListResponse(
            claims=[
                self.convert_claim_to_response(
                    claim, claim.listing, include_code=True
                )
                for claim in claims
            ],
            total=len(claims),
        )

    @translate_storage_errors
    async def list_provider_claims(
        self, provider_id: int, status: ClaimStatus | None = None
    ) -> ClaimListResponse:
        """List the claims made on a provider's listings.

        Args:
            provider_id (int): The provider.
            status (ClaimStatus | None): Only claims in this status.

        Returns:
            ClaimListResponse: The claims, newest first.
        """
        await self._sweep()
        query: Select[t.Tuple[Claim]] = self._claims_query().where(
            Listing.provider_id == provider_id
        )
        if status is not None:
            query = query.where(Claim.status == status)
        claims: t.Sequence[Claim] = (
            (await self.db.execute(query)).scalars().all()
        )
        return ClaimListResponse(
            claims=[
                self.convert_claim_to_response(claim, claim.listing)
                for claim in claims
            ],
            total=len(claims),
        )

    @translate_storage_errors
    async def find_active_claim_by_email(
        self, provider_id: int, email: str
    ) -> ClaimResponse:
        """Find a receiver's active claim on a provider's listings.

        Used at the counter when the receiver gives their email instead of
        a claim number.

        Args:
            provider_id (int): The provider.
            email (str): The receiver's email address.

        Returns:
            ClaimResponse: The most recent active claim.
        """
        await self._sweep()
        claim: Claim | None = (
            (
                await self.db.execute(
                    self._claims_query()
                    .join(User, Claim.receiver_id == User.id)
                    .where(
                        Listing.provider_id == provider_id,
                        User.email == email.strip().lower(),
                        Claim.status.in_(list(ACTIVE_CLAIM_STATUSES)),
                    )
                    .limit(1)
                )
            )
            .scalars()
            .first()
        )
        if claim is None:
            raise NotFoundError("Active claim", email, field="email")
        return self.convert_claim_to_response(claim, claim.listing)
