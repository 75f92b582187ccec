"""Tests for the expiry sweeper."""

import typing as t

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.events import EVENT_BUS, ListingExpired
from app.core.models import ClaimStatus, ListingStatus, User, UserRole
from app.services.claim_service import ClaimService
from app.services.errors import ExpiredError
from app.services.expiry_sweeper import (
    ExpirySweeper,
    sweep_expired_listings_task,
)
from app.services.listing_service import ListingService
from app.services.listing_state import load_listing
from tests.conftest import FrozenClock, make_listing, make_user


@pytest.fixture
async def provider(db_session: AsyncSession) -> User:
    return await make_user(db_session, role=UserRole.PROVIDER)


class TestSweep:
    async def test_read_path_expires_overdue_listing(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
    ) -> None:
        receiver = await make_user(db_session)
        listing = await make_listing(db_session, clock, provider)
        claims = ClaimService(db_session, clock)
        claim = await claims.create_claim(listing.id, receiver.id, 3)
        await claims.approve_claim(claim.id, provider.id)
        clock.advance(hours=8, seconds=1)

        response = await ListingService(db_session, clock).get_listing(
            listing.id
        )
        assert response.status == ListingStatus.EXPIRED
        assert response.is_expired
        assert response.claimed_quantity == 3
        assert response.wasted_quantity == 7
        assert response.time_remaining == "Expired"

        other = await make_user(db_session)
        with pytest.raises(ExpiredError):
            await claims.create_claim(listing.id, other.id, 1)

    async def test_listing_is_safe_until_its_deadline(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
    ) -> None:
        await make_listing(db_session, clock, provider)
        clock.advance(hours=8)

        report = await ExpirySweeper(db_session, clock).sweep()
        assert report.updated_count == 0
        assert report.results == []

    async def test_sweep_is_idempotent(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
    ) -> None:
        listing = await make_listing(db_session, clock, provider)
        clock.advance(hours=9)
        sweeper = ExpirySweeper(db_session, clock)

        first = await sweeper.sweep()
        row = await load_listing(db_session, listing.id)
        expired_at = row.updated_at
        second = await sweeper.sweep()

        assert [result.wasted_quantity for result in first.results] == [10]
        assert second.updated_count == 0
        row = await load_listing(db_session, listing.id)
        assert row.status == ListingStatus.EXPIRED
        assert row.updated_at == expired_at

    async def test_closed_listings_are_not_swept(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
    ) -> None:
        listing = await make_listing(db_session, clock, provider)
        await ListingService(db_session, clock).cancel_listing(
            listing.id, provider.id
        )
        clock.advance(hours=9)

        report = await ExpirySweeper(db_session, clock).sweep()
        assert report.updated_count == 0
        row = await load_listing(db_session, listing.id)
        assert row.status == ListingStatus.CANCELLED

    async def test_claims_keep_their_status(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
    ) -> None:
        receiver = await make_user(db_session)
        listing = await make_listing(db_session, clock, provider)
        claims = ClaimService(db_session, clock)
        claim = await claims.create_claim(listing.id, receiver.id, 3)
        clock.advance(hours=9)

        await ExpirySweeper(db_session, clock).sweep()
        row = await load_listing(db_session, listing.id)
        assert row.claims[0].id == claim.id
        assert row.claims[0].status == ClaimStatus.PENDING

    async def test_failed_listing_does_not_stop_the_sweep(
        self,
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        broken = await make_listing(db_session, clock, provider, title="A")
        healthy = await make_listing(db_session, clock, provider, title="B")
        clock.advance(hours=9)
        sweeper = ExpirySweeper(db_session, clock)
        sweep_one = sweeper._sweep_one  # pylint: disable=protected-access

        async def flaky(listing_id: int, now: t.Any) -> t.Any:
            if listing_id == broken.id:
                raise OperationalError("UPDATE", {}, Exception("disk I/O"))
            return await sweep_one(listing_id, now)

        monkeypatch.setattr(sweeper, "_sweep_one", flaky)
        report = await sweeper.sweep()

        outcomes = {
            result.listing_id: result.outcome for result in report.results
        }
        assert outcomes == {broken.id: "error", healthy.id: "expired"}
        assert report.updated_count == 1
        row = await load_listing(db_session, broken.id)
        assert row.status == ListingStatus.AVAILABLE


class TestSweepTask:
    async def test_task_commits_and_dispatches(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        db_session: AsyncSession,
        clock: FrozenClock,
        provider: User,
    ) -> None:
        events: t.List[ListingExpired] = []

        async def capture(event: ListingExpired) -> None:
            events.append(event)

        EVENT_BUS.subscribe(ListingExpired, capture)
        listing = await make_listing(db_session, clock, provider)
        await db_session.commit()
        clock.advance(hours=9)

        report = await sweep_expired_listings_task(session_maker, clock)
        assert report is not None
        assert report.updated_count == 1
        assert [event.listing_id for event in events] == [listing.id]

        row = await load_listing(db_session, listing.id)
        assert row.status == ListingStatus.EXPIRED
