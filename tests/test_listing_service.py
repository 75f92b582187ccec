"""Tests for listing operations."""

from datetime import timedelta as td

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.events import EVENT_BUS, ListingCreated, ListingViewed
from app.core.models import (
    ClaimStatus,
    Freshness,
    ListingStatus,
    Priority,
    User,
    UserRole,
)
from app.services.claim_service import ClaimService
from app.services.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
)
from app.services.listing_service import ListingService, derive_priority
from app.services.listing_state import load_listing
from tests.conftest import NOW, FrozenClock, make_listing, make_user


@pytest.fixture
async def provider(db_session: AsyncSession) -> User:
    return await make_user(db_session, role=UserRole.PROVIDER)


@pytest.fixture
def listings(db_session: AsyncSession, clock: FrozenClock) -> ListingService:
    return ListingService(db_session, clock)


class TestCreateListing:
    @pytest.mark.parametrize(
        ("freshness", "hours", "priority"),
        [
            (Freshness.FRESH, 8, Priority.MEDIUM),
            (Freshness.GOOD, 12, Priority.MEDIUM),
            (Freshness.FRESHLY_COOKED, 4, Priority.HIGH),
            (Freshness.NEAR_EXPIRY, 2, Priority.URGENT),
            (Freshness.USE_IMMEDIATELY, 1, Priority.URGENT),
            (Freshness.OTHER, 6, Priority.MEDIUM),
        ],
    )
    async def test_safety_window_and_priority(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
        freshness: Freshness,
        hours: float,
        priority: Priority,
    ) -> None:
        listing = await make_listing(
            db_session, clock, provider, freshness=freshness
        )
        assert listing.safe_until == NOW + td(hours=hours)
        assert listing.priority == priority
        assert listing.status == ListingStatus.AVAILABLE
        assert listing.remaining_quantity == 10
        assert listing.claim_count == 0

    async def test_default_availability_window(
        self, db_session: AsyncSession, clock: FrozenClock, provider: User
    ) -> None:
        listing = await make_listing(db_session, clock, provider)
        assert listing.available_from == NOW
        assert listing.available_until == NOW + td(hours=12)
        assert listing.time_remaining == "8h 0m"

    async def test_creation_is_announced(
        self, db_session: AsyncSession, clock: FrozenClock, provider: User
    ) -> None:
        listing = await make_listing(db_session, clock, provider)
        pending = EVENT_BUS.pending(db_session)
        assert pending == [
            ListingCreated(
                listing_id=listing.id,
                provider_id=provider.id,
                title="Vegetable curry",
                total_quantity=10,
                unit="kg",
            )
        ]

    def test_freshly_cooked_food_is_high_priority(self) -> None:
        assert derive_priority(Freshness.FRESHLY_COOKED, 10) == Priority.HIGH
        assert derive_priority(Freshness.FRESH, 10) == Priority.MEDIUM


class TestReadListings:
    async def test_views_by_others_are_counted(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
        listings: ListingService,
    ) -> None:
        receiver = await make_user(db_session)
        listing = await make_listing(db_session, clock, provider)
        EVENT_BUS.discard(db_session)

        await listings.get_listing(listing.id, viewer_id=provider.id)
        assert EVENT_BUS.pending(db_session) == []
        await listings.get_listing(listing.id, viewer_id=receiver.id)
        assert EVENT_BUS.pending(db_session) == [
            ListingViewed(listing_id=listing.id)
        ]

    async def test_unknown_listing(self, listings: ListingService) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            await listings.get_listing(42)
        assert str(exc_info.value) == "Listing with ID 42 not found"

    async def test_available_listings_filter_and_sort(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
        listings: ListingService,
    ) -> None:
        await make_listing(db_session, clock, provider, title="Tomato soup")
        await make_listing(
            db_session,
            clock,
            provider,
            title="Apple crumble",
            freshness=Freshness.GOOD,
        )
        await make_listing(
            db_session,
            clock,
            provider,
            title="Closed window",
            available_from=NOW - td(hours=3),
            available_until=NOW - td(hours=1),
        )
        cancelled = await make_listing(
            db_session, clock, provider, title="Withdrawn"
        )
        await listings.cancel_listing(cancelled.id, provider.id)

        result = await listings.list_available_listings(
            sort_by="title", order="asc"
        )
        assert [item.title for item in result.listings] == [
            "Apple crumble",
            "Tomato soup",
        ]

        searched = await listings.list_available_listings(search="soup")
        assert [item.title for item in searched.listings] == ["Tomato soup"]

        good = await listings.list_available_listings(
            freshness=Freshness.GOOD
        )
        assert good.total == 1

    async def test_fully_claimed_listings_are_not_available(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
        listings: ListingService,
    ) -> None:
        receiver = await make_user(db_session)
        listing = await make_listing(db_session, clock, provider)
        claims = ClaimService(db_session, clock)
        claim = await claims.create_claim(listing.id, receiver.id, 10)
        await claims.approve_claim(claim.id, provider.id)

        result = await listings.list_available_listings()
        assert result.total == 0

    async def test_provider_listings_open_first(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
        listings: ListingService,
    ) -> None:
        closed = await make_listing(db_session, clock, provider, title="Old")
        await listings.cancel_listing(closed.id, provider.id)
        await make_listing(
            db_session,
            clock,
            provider,
            title="Fresh",
        )
        await make_listing(
            db_session,
            clock,
            provider,
            title="Hurry",
            freshness=Freshness.USE_IMMEDIATELY,
        )

        result = await listings.list_provider_listings(provider.id)
        assert [item.title for item in result.listings] == [
            "Hurry",
            "Fresh",
            "Old",
        ]
        only_cancelled = await listings.list_provider_listings(
            provider.id, ListingStatus.CANCELLED
        )
        assert only_cancelled.total == 1

    async def test_statistics(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
        listings: ListingService,
    ) -> None:
        receiver = await make_user(db_session)
        claims = ClaimService(db_session, clock)
        short = await make_listing(
            db_session, clock, provider, freshness=Freshness.USE_IMMEDIATELY
        )
        await make_listing(db_session, clock, provider)
        claim = await claims.create_claim(short.id, receiver.id, 4)
        await claims.approve_claim(claim.id, provider.id)
        clock.advance(hours=2)

        stats = await listings.get_statistics(provider.id)
        assert stats.total_listings == 2
        assert stats.active_listings == 1
        assert stats.expired_listings == 1
        assert stats.today_expired == 1
        assert stats.total_claimed == 4
        assert stats.total_wasted == 6
        assert stats.waste_rate == 50.0


class TestCancelListing:
    async def test_cancel_takes_down_waiting_claims(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
        listings: ListingService,
    ) -> None:
        first = await make_user(db_session)
        second = await make_user(db_session)
        listing = await make_listing(db_session, clock, provider)
        claims = ClaimService(db_session, clock)
        approved = await claims.create_claim(listing.id, first.id, 2)
        await claims.approve_claim(approved.id, provider.id)
        await claims.create_claim(listing.id, second.id, 2)

        response = await listings.cancel_listing(
            listing.id, provider.id, "Kitchen closed"
        )
        assert response.status == ListingStatus.CANCELLED
        row = await load_listing(db_session, listing.id)
        assert {claim.status for claim in row.claims} == {
            ClaimStatus.CANCELLED
        }
        assert {claim.cancel_reason for claim in row.claims} == {
            "Kitchen closed"
        }

    async def test_fully_claimed_listing_cannot_be_cancelled(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
        listings: ListingService,
    ) -> None:
        receiver = await make_user(db_session)
        listing = await make_listing(db_session, clock, provider)
        claims = ClaimService(db_session, clock)
        claim = await claims.create_claim(listing.id, receiver.id, 10)
        await claims.approve_claim(claim.id, provider.id)

        with pytest.raises(InvalidStateError):
            await listings.cancel_listing(listing.id, provider.id)

    async def test_confirmed_pickup_blocks_cancellation(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
        listings: ListingService,
    ) -> None:
        receiver = await make_user(db_session)
        listing = await make_listing(db_session, clock, provider)
        claims = ClaimService(db_session, clock)
        claim = await claims.create_claim(listing.id, receiver.id, 4)
        claim = await claims.approve_claim(claim.id, provider.id)
        await claims.verify_pickup_code(
            claim.id, provider.id, claim.pickup_code
        )

        with pytest.raises(InvalidStateError) as exc_info:
            await listings.cancel_listing(listing.id, provider.id)
        assert exc_info.value.current_status == "partially_claimed"

        row = await load_listing(db_session, listing.id)
        assert row.status == ListingStatus.PARTIALLY_CLAIMED
        assert row.claims[0].status == ClaimStatus.CONFIRMED

        await claims.complete_delivery(claim.id, provider.id)
        row = await load_listing(db_session, listing.id)
        assert row.status == ListingStatus.COMPLETED

    async def test_only_the_owner_can_cancel(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
        listings: ListingService,
    ) -> None:
        stranger = await make_user(db_session, role=UserRole.PROVIDER)
        listing = await make_listing(db_session, clock, provider)
        with pytest.raises(NotFoundError):
            await listings.cancel_listing(listing.id, stranger.id)


class TestDeleteListing:
    async def test_approved_claims_block_deletion(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
        listings: ListingService,
    ) -> None:
        receiver = await make_user(db_session)
        listing = await make_listing(db_session, clock, provider)
        claims = ClaimService(db_session, clock)
        claim = await claims.create_claim(listing.id, receiver.id, 2)
        await claims.approve_claim(claim.id, provider.id)

        with pytest.raises(ConflictError) as exc_info:
            await listings.delete_listing(listing.id, provider.id)
        assert exc_info.value.claim_count == 1

    async def test_pending_claims_are_deleted_with_listing(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
        listings: ListingService,
    ) -> None:
        receiver = await make_user(db_session)
        listing = await make_listing(db_session, clock, provider)
        await ClaimService(db_session, clock).create_claim(
            listing.id, receiver.id, 2
        )

        await listings.delete_listing(listing.id, provider.id)
        with pytest.raises(NotFoundError):
            await load_listing(db_session, listing.id)
