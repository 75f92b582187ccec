"""Expiry sweeper: moves listings past their safety window to EXPIRED."""

import logging
import typing as t
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import ASYNC_SESSION_MAKER
from app.core.events import EVENT_BUS, ListingExpired
from app.core.models import CLAIMABLE_LISTING_STATUSES, Listing
from app.schemas.sweep import SweepReport, SweepResult
from app.services.errors import NotFoundError, translate_storage_errors
from app.services.ledger import QuantityLedger
from app.services.listing_state import ListingStateMachine, load_listing
from app.utils.dates import SYSTEM_CLOCK, Clock, ensure_utc

LOGGER: logging.Logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Service class sweeping overdue listings."""

    db: AsyncSession
    clock: Clock
    state_machine: ListingStateMachine

    def __init__(self, db: AsyncSession, clock: Clock = SYSTEM_CLOCK) -> None:
        """Initialize ExpirySweeper.

        Args:
            db (AsyncSession): The database session.
            clock (Clock): Source of the current time.
        """
        self.db = db
        self.clock = clock
        self.state_machine = ListingStateMachine()

    def expire_listing(
        self, listing: Listing, now: datetime
    ) -> t.Tuple[SweepResult, ListingExpired]:
        """Expire one locked listing.

        The caller queues the returned event once its write went through.

        Args:
            listing (Listing): The listing with its claims loaded.
            now (datetime): Time of the sweep.

        Returns:
            Tuple[SweepResult, ListingExpired]:
                Quantities of the expired listing and the event announcing it.
        """
        ledger: QuantityLedger = self.state_machine.expire(listing, now)
        LOGGER.info(
            "Listing %s expired: %s %s wasted of %s",
            listing.id,
            ledger.wasted_quantity,
            listing.unit,
            ledger.total_quantity,
        )
        result: SweepResult = SweepResult(
            listing_id=listing.id,
            title=listing.title,
            total_quantity=ledger.total_quantity,
            claimed_quantity=ledger.claimed_quantity,
            wasted_quantity=ledger.wasted_quantity,
            outcome="expired",
        )
        event: ListingExpired = ListingExpired(
            listing_id=listing.id,
            provider_id=listing.provider_id,
            title=listing.title,
            total_quantity=ledger.total_quantity,
            claimed_quantity=ledger.claimed_quantity,
            wasted_quantity=ledger.wasted_quantity,
            unit=listing.unit,
        )
        return result, event

    async def _sweep_one(
        self, listing_id: int, now: datetime
    ) -> t.Tuple[SweepResult, ListingExpired] | None:
        """Lock, re-check and expire one listing.

        Args:
            listing_id (int): The candidate listing.
            now (datetime): Time of the sweep.

        Returns:
            Tuple[SweepResult, ListingExpired] | None:
                The result and event, or None if the listing no longer
                qualifies.
        """
        listing: Listing = await load_listing(self.db, listing_id, lock=True)
        if listing.status not in CLAIMABLE_LISTING_STATUSES:
            return None
        if ensure_utc(listing.safe_until) >= now:
            return None
        return self.expire_listing(listing, now)

    @translate_storage_errors
    async def sweep(self, now: datetime | None = None) -> SweepReport:
        """Expire every open listing whose safety window has passed.

        Each listing is handled in its own savepoint: a failure is logged,
        reported and does not stop the sweep.

        Args:
            now (datetime | None): Reference time, defaults to the clock.

        Returns:
            SweepReport: What was expired and what failed.
        """
        checked_at: datetime = ensure_utc(now or self.clock.now())
        listing_ids: t.Sequence[int] = (
            (
                await self.db.execute(
                    select(Listing.id)
                    .where(
                        Listing.status.in_(list(CLAIMABLE_LISTING_STATUSES)),
                        Listing.safe_until < checked_at,
                    )
                    .order_by(Listing.safe_until.asc())
                )
            )
            .scalars()
            .all()
        )

        results: t.List[SweepResult] = []
        for listing_id in listing_ids:
            outcome: t.Tuple[SweepResult, ListingExpired] | None = None
            try:
                async with self.db.begin_nested():
                    outcome = await self._sweep_one(listing_id, checked_at)
            except NotFoundError:
                # Deleted since selection
                continue
            except SQLAlchemyError as exc:
                LOGGER.exception("Failed to expire listing %s", listing_id)
                results.append(
                    SweepResult(
                        listing_id=listing_id, outcome="error", error=str(exc)
                    )
                )
                continue
            if outcome is None:
                continue
            result, event = outcome
            EVENT_BUS.queue(self.db, event)
            results.append(result)

        updated_count: int = sum(
            1 for result in results if result.outcome == "expired"
        )
        if listing_ids:
            LOGGER.info(
                "Expiry sweep: %d of %d overdue listing(s) expired",
                updated_count,
                len(listing_ids),
            )
        return SweepReport(
            checked_at=checked_at,
            updated_count=updated_count,
            results=results,
        )


async def sweep_expired_listings_task(
    session_maker: async_sessionmaker[AsyncSession] = ASYNC_SESSION_MAKER,
    clock: Clock = SYSTEM_CLOCK,
) -> SweepReport | None:
    """Background task running one sweep in its own unit of work.

    Args:
        session_maker (async_sessionmaker[AsyncSession]): Session factory.
        clock (Clock): Source of the current time.

    Returns:
        SweepReport | None: The report, or None if the sweep failed.
    """
    LOGGER.debug("Running expiry sweep...")

    try:
        async with session_maker() as session:
            report: SweepReport = await ExpirySweeper(session, clock).sweep()
            await session.commit()
        await EVENT_BUS.dispatch(session)
        return report
    except Exception:  # pylint: disable=broad-except
        LOGGER.exception("Error in expiry sweep task")
        return None
