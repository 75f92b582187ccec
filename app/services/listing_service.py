"""Listing service - business logic for listing operations."""

import logging
import typing as t
from datetime import datetime
from datetime import timedelta as td

from sqlalchemy import Select, UnaryExpression, case, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import SETTINGS
from app.core.events import EVENT_BUS, ListingCreated, ListingViewed
from app.core.models import (
    CLAIMABLE_LISTING_STATUSES,
    PROTECTED_CLAIM_STATUSES,
    ClaimStatus,
    Freshness,
    Listing,
    ListingStatus,
    Priority,
)
from app.schemas.listing import (
    ListingCreate,
    ListingListResponse,
    ListingResponse,
)
from app.schemas.statistics import ListingStats
from app.services.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    translate_storage_errors,
)
from app.services.expiry_sweeper import ExpirySweeper
from app.services.ledger import QuantityLedger, compute_ledger
from app.services.listing_state import ListingStateMachine, load_listing
from app.utils.dates import (
    SYSTEM_CLOCK,
    Clock,
    ensure_utc,
    format_time_remaining,
)

LOGGER: logging.Logger = logging.getLogger(__name__)

DEFAULT_LISTING_CANCEL_REASON: str = "Listing cancelled by provider"

# Claims a cancelled listing takes down with it
LISTING_CANCELS_CLAIMS: t.FrozenSet[ClaimStatus] = frozenset(
    {ClaimStatus.PENDING, ClaimStatus.APPROVED}
)

AVAILABLE_SORT_FIELDS: t.Dict[str, t.Any] = {
    "created_at": Listing.created_at,
    "updated_at": Listing.updated_at,
    "title": Listing.title,
    "total_quantity": Listing.total_quantity,
    "safe_until": Listing.safe_until,
    "available_until": Listing.available_until,
}

# Open listings first, most urgent first
STATUS_RANK = case(
    *(
        (Listing.status == status, rank)
        for rank, status in enumerate(ListingStatus)
    )
)
PRIORITY_RANK = case(
    (Listing.priority == Priority.URGENT, 0),
    (Listing.priority == Priority.HIGH, 1),
    else_=2,
)


def safety_window_hours(freshness: Freshness) -> float:
    """Hours a listing stays safe to eat, by declared freshness.

    Args:
        freshness (Freshness): The declared freshness.

    Returns:
        float: The configured window, or the default one.
    """
    return SETTINGS.freshness_windows_hours.get(
        freshness.value, SETTINGS.default_safety_window_hours
    )


def derive_priority(freshness: Freshness, hours_left: float) -> Priority:
    """Pickup priority of a new listing.

    Args:
        freshness (Freshness): The declared freshness.
        hours_left (float): Hours until the listing stops being safe.

    Returns:
        Priority: URGENT, HIGH or MEDIUM.
    """
    if hours_left <= SETTINGS.urgent_priority_hours:
        return Priority.URGENT
    if hours_left <= SETTINGS.high_priority_hours:
        return Priority.HIGH
    if freshness == Freshness.FRESHLY_COOKED:
        return Priority.HIGH
    return Priority.MEDIUM


class ListingService:
    """Service class for listing operations."""

    db: AsyncSession
    clock: Clock
    state_machine: ListingStateMachine

    def __init__(self, db: AsyncSession, clock: Clock = SYSTEM_CLOCK) -> None:
        """Initialize ListingService.

        Args:
            db (AsyncSession): The database session.
            clock (Clock): Source of the current time.
        """
        self.db = db
        self.clock = clock
        self.state_machine = ListingStateMachine()

    @staticmethod
    def convert_listing_to_response(
        listing: Listing, now: datetime
    ) -> ListingResponse:
        """Convert Listing model to ListingResponse schema.

        Args:
            listing (Listing): The listing with its claims loaded.
            now (datetime): Reference time for the remaining time.

        Returns:
            ListingResponse: The listing response schema.
        """
        ledger: QuantityLedger = compute_ledger(
            listing.total_quantity, listing.status, listing.claims
        )
        return ListingResponse(
            id=listing.id,
            provider_id=listing.provider_id,
            title=listing.title,
            description=listing.description,
            food_items=listing.food_items,
            allergens=listing.allergens,
            pickup_instructions=listing.pickup_instructions,
            total_quantity=listing.total_quantity,
            unit=listing.unit,
            freshness=listing.freshness,
            priority=listing.priority,
            status=listing.status,
            safe_until=ensure_utc(listing.safe_until),
            available_from=ensure_utc(listing.available_from),
            available_until=ensure_utc(listing.available_until),
            claimed_quantity=ledger.claimed_quantity,
            remaining_quantity=ledger.remaining_quantity,
            wasted_quantity=ledger.wasted_quantity,
            completion_rate=round(ledger.completion_rate * 100, 2),
            time_remaining=format_time_remaining(listing.safe_until, now),
            is_expired=listing.status == ListingStatus.EXPIRED,
            claim_count=len(listing.claims),
            created_at=listing.created_at,
            updated_at=listing.updated_at or listing.created_at,
        )

    async def sweep(self) -> None:
        """Expire overdue listings before reading any."""
        await ExpirySweeper(self.db, self.clock).sweep()

    async def _lock_provider_listing(
        self, listing_id: int, provider_id: int
    ) -> Listing:
        listing: Listing = await load_listing(self.db, listing_id, lock=True)
        if listing.provider_id != provider_id:
            raise NotFoundError("Listing", listing_id)
        return listing

    @translate_storage_errors
    async def create_listing(
        self, provider_id: int, data: ListingCreate
    ) -> ListingResponse:
        """Post a new listing.

        The safety window comes from the declared freshness and decides the
        pickup priority.

        Args:
            provider_id (int): The provider posting the food.
            data (ListingCreate): The listing details.

        Returns:
            ListingResponse: The created listing.
        """
        now: datetime = self.clock.now()
        window: float = safety_window_hours(data.freshness)
        safe_until: datetime = now + td(hours=window)

        listing: Listing = Listing(
            provider_id=provider_id,
            title=data.title,
            description=data.description,
            food_items=data.food_items,
            allergens=data.allergens,
            pickup_instructions=data.pickup_instructions,
            total_quantity=data.total_quantity,
            unit=data.unit,
            freshness=data.freshness,
            priority=derive_priority(data.freshness, window),
            status=ListingStatus.AVAILABLE,
            safe_until=safe_until,
            available_from=(
                ensure_utc(data.available_from) if data.available_from else now
            ),
            available_until=(
                ensure_utc(data.available_until)
                if data.available_until
                else now + td(hours=SETTINGS.default_availability_hours)
            ),
            lock_version=0,
            created_at=now,
            updated_at=now,
            claims=[],
        )
        self.db.add(listing)
        await self.db.flush()

        LOGGER.info(
            "Listing %s created by provider %s: %s %s, safe until %s (%s)",
            listing.id,
            provider_id,
            listing.total_quantity,
            listing.unit,
            safe_until.isoformat(),
            listing.priority.value,
        )
        EVENT_BUS.queue(
            self.db,
            ListingCreated(
                listing_id=listing.id,
                provider_id=provider_id,
                title=listing.title,
                total_quantity=listing.total_quantity,
                unit=listing.unit,
            ),
        )
        return self.convert_listing_to_response(listing, now)

    @translate_storage_errors
    async def get_listing(
        self, listing_id: int, viewer_id: int | None = None
    ) -> ListingResponse:
        """Get a listing by ID.

        Args:
            listing_id (int): The listing ID.
            viewer_id (int | None): The reading user; provider reads of
                their own listing are not counted as views.

        Returns:
            ListingResponse: The listing.
        """
        await self.sweep()
        listing: Listing = await load_listing(self.db, listing_id)
        if viewer_id != listing.provider_id:
            EVENT_BUS.queue(self.db, ListingViewed(listing_id=listing.id))
        return self.convert_listing_to_response(listing, self.clock.now())

    @translate_storage_errors
    async def list_provider_listings(
        self, provider_id: int, status: ListingStatus | None = None
    ) -> ListingListResponse:
        """List a provider's listings, open and most urgent first.

        Args:
            provider_id (int): The provider.
            status (ListingStatus | None): Only listings in this status.

        Returns:
            ListingListResponse: The listings.
        """
        await self.sweep()
        query: Select[t.Tuple[Listing]] = (
            select(Listing)
            .options(selectinload(Listing.claims))
            .where(Listing.provider_id == provider_id)
        )
        if status is not None:
            query = query.where(Listing.status == status)
        query = query.order_by(
            STATUS_RANK, PRIORITY_RANK, Listing.safe_until.asc()
        )

        listings: t.Sequence[Listing] = (
            (await self.db.execute(query)).scalars().all()
        )
        now: datetime = self.clock.now()
        return ListingListResponse(
            listings=[
                self.convert_listing_to_response(listing, now)
                for listing in listings
            ],
            total=len(listings),
        )

    @translate_storage_errors
    async def list_available_listings(
        self,
        search: str | None = None,
        freshness: Freshness | None = None,
        sort_by: str = "created_at",
        order: str = "desc",
    ) -> ListingListResponse:
        """List listings receivers can still claim from.

        Args:
            search (str | None): Text to look for in title or description.
            freshness (Freshness | None): Only listings of this freshness.
            sort_by (str): A key of ``AVAILABLE_SORT_FIELDS``; unknown keys
                sort by creation time.
            order (str): ``"asc"`` or ``"desc"``.

        Returns:
            ListingListResponse: The claimable listings.
        """
        await self.sweep()
        now: datetime = self.clock.now()
        query: Select[t.Tuple[Listing]] = (
            select(Listing)
            .options(selectinload(Listing.claims))
            .where(
                Listing.status.in_(list(CLAIMABLE_LISTING_STATUSES)),
                Listing.available_until > now,
                Listing.safe_until > now,
            )
        )
        if search:
            pattern: str = f"%{search}%"
            query = query.where(
                or_(
                    Listing.title.ilike(pattern),
                    Listing.description.ilike(pattern),
                )
            )
        if freshness is not None:
            query = query.where(Listing.freshness == freshness)

        column: t.Any = AVAILABLE_SORT_FIELDS.get(
            sort_by, Listing.created_at
        )
        order_clause: UnaryExpression[t.Any] = (
            column.asc() if order == "asc" else column.desc()
        )
        query = query.order_by(order_clause, Listing.id.asc())

        listings: t.Sequence[Listing] = (
            (await self.db.execute(query)).scalars().all()
        )
        return ListingListResponse(
            listings=[
                self.convert_listing_to_response(listing, now)
                for listing in listings
            ],
            total=len(listings),
        )

    @translate_storage_errors
    async def get_statistics(
        self, provider_id: int | None = None
    ) -> ListingStats:
        """Expiry and waste statistics, for one provider or everyone.

        Args:
            provider_id (int | None): Restrict to this provider's listings.

        Returns:
            ListingStats: Listing counts and claimed/wasted totals.
        """
        await self.sweep()
        now: datetime = self.clock.now()
        start_of_day: datetime = now.replace(
            hour=0, minute=0, second=0, microsecond=0
        )

        query: Select[t.Tuple[Listing]] = select(Listing).options(
            selectinload(Listing.claims)
        )
        if provider_id is not None:
            query = query.where(Listing.provider_id == provider_id)
        listings: t.Sequence[Listing] = (
            (await self.db.execute(query)).scalars().all()
        )

        total_claimed: float = 0.0
        total_wasted: float = 0.0
        expired: int = 0
        today_expired: int = 0
        active: int = 0
        for listing in listings:
            ledger: QuantityLedger = compute_ledger(
                listing.total_quantity, listing.status, listing.claims
            )
            total_claimed += ledger.claimed_quantity
            total_wasted += ledger.wasted_quantity
            if listing.status in CLAIMABLE_LISTING_STATUSES:
                active += 1
            elif listing.status == ListingStatus.EXPIRED:
                expired += 1
                if ensure_utc(listing.updated_at) >= start_of_day:
                    today_expired += 1

        total: int = len(listings)
        return ListingStats(
            total_listings=total,
            active_listings=active,
            expired_listings=expired,
            today_expired=today_expired,
            total_claimed=total_claimed,
            total_wasted=total_wasted,
            waste_rate=round(expired / total * 100, 2) if total else 0.0,
        )

    @translate_storage_errors
    async def cancel_listing(
        self, listing_id: int, provider_id: int, reason: str | None = None
    ) -> ListingResponse:
        """Withdraw an open listing and the claims still waiting on it.

        Args:
            listing_id (int): The listing to cancel.
            provider_id (int): The provider owning the listing.
            reason (str | None): Reason recorded on cancelled claims.

        Returns:
            ListingResponse: The CANCELLED listing.
        """
        now: datetime = self.clock.now()
        listing: Listing = await self._lock_provider_listing(
            listing_id, provider_id
        )
        if listing.status not in CLAIMABLE_LISTING_STATUSES:
            raise InvalidStateError(
                "Only open listings can be cancelled", listing.status.value
            )
        # Food already handed over must be completed, not withdrawn
        if any(
            claim.status == ClaimStatus.CONFIRMED for claim in listing.claims
        ):
            raise InvalidStateError(
                "Listing has a confirmed pickup awaiting completion",
                listing.status.value,
            )

        cancelled: int = 0
        for claim in listing.claims:
            if claim.status in LISTING_CANCELS_CLAIMS:
                claim.status = ClaimStatus.CANCELLED
                claim.cancel_reason = reason or DEFAULT_LISTING_CANCEL_REASON
                claim.updated_at = now
                cancelled += 1
        self.state_machine.transition(listing, ListingStatus.CANCELLED, now)
        await self.db.flush()

        LOGGER.info(
            "Listing %s cancelled with %d claim(s)", listing.id, cancelled
        )
        return self.convert_listing_to_response(listing, now)

    @translate_storage_errors
    async def delete_listing(self, listing_id: int, provider_id: int) -> None:
        """Delete a listing nobody was promised food from.

        Args:
            listing_id (int): The listing to delete.
            provider_id (int): The provider owning the listing.
        """
        listing: Listing = await self._lock_provider_listing(
            listing_id, provider_id
        )
        protected: int = sum(
            1
            for claim in listing.claims
            if claim.status in PROTECTED_CLAIM_STATUSES
        )
        if protected:
            raise ConflictError(listing_id, protected)

        await self.db.delete(listing)
        await self.db.flush()
        LOGGER.info("Listing %s deleted", listing_id)

