"""Listing state machine.

Owns every status change of a listing::

    available -> partially_claimed <-> fully_claimed -> completed
        |               |                   |
        +---------------+-------------------+--> expired (sweeper only)
        |               |
        +---------------+--> cancelled (provider only)

Status follows the quantity ledger while the listing is open. Completed,
expired and cancelled listings never change again.
"""

import logging
import typing as t
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.models import (
    ACTIVE_CLAIM_STATUSES,
    TERMINAL_LISTING_STATUSES,
    Listing,
    ListingStatus,
)
from app.services.errors import InvalidStateError, NotFoundError
from app.services.ledger import QuantityLedger, compute_ledger, exceeds

LOGGER: logging.Logger = logging.getLogger(__name__)


class ListingStateMachine:
    """Transition rules for listing status."""

    VALID_TRANSITIONS: t.ClassVar[
        t.Dict[ListingStatus, t.FrozenSet[ListingStatus]]
    ] = {
        ListingStatus.AVAILABLE: frozenset(
            {
                ListingStatus.PARTIALLY_CLAIMED,
                ListingStatus.FULLY_CLAIMED,
                ListingStatus.COMPLETED,
                ListingStatus.EXPIRED,
                ListingStatus.CANCELLED,
            }
        ),
        ListingStatus.PARTIALLY_CLAIMED: frozenset(
            {
                ListingStatus.AVAILABLE,
                ListingStatus.FULLY_CLAIMED,
                ListingStatus.COMPLETED,
                ListingStatus.EXPIRED,
                ListingStatus.CANCELLED,
            }
        ),
        ListingStatus.FULLY_CLAIMED: frozenset(
            {
                ListingStatus.AVAILABLE,
                ListingStatus.PARTIALLY_CLAIMED,
                ListingStatus.COMPLETED,
                ListingStatus.EXPIRED,
            }
        ),
        ListingStatus.COMPLETED: frozenset(),
        ListingStatus.EXPIRED: frozenset(),
        ListingStatus.CANCELLED: frozenset(),
    }

    @classmethod
    def is_valid_transition(
        cls, from_status: ListingStatus, to_status: ListingStatus
    ) -> bool:
        """Check if a status transition is allowed.

        Args:
            from_status (ListingStatus): Current status.
            to_status (ListingStatus): Desired status.

        Returns:
            bool: True if the transition is allowed.
        """
        return to_status in cls.VALID_TRANSITIONS[from_status]

    @staticmethod
    def is_terminal(status: ListingStatus) -> bool:
        """Check if a status has no outgoing transitions."""
        return status in TERMINAL_LISTING_STATUSES

    def transition(
        self, listing: Listing, to_status: ListingStatus, now: datetime
    ) -> bool:
        """Move a listing to a new status.

        Staying in the current status is a no-op.

        Args:
            listing (Listing): The listing, locked by the caller.
            to_status (ListingStatus): Target status.
            now (datetime): Time of the change.

        Returns:
            bool: True if the status changed.
        """
        from_status: ListingStatus = listing.status
        if from_status == to_status:
            return False
        if not self.is_valid_transition(from_status, to_status):
            raise InvalidStateError(
                f"Listing cannot move to {to_status.value}", from_status.value
            )
        listing.status = to_status
        listing.updated_at = now
        LOGGER.info(
            "Listing %s: %s -> %s",
            listing.id,
            from_status.value,
            to_status.value,
        )
        return True

    def recompute(self, listing: Listing, now: datetime) -> QuantityLedger:
        """Re-derive an open listing's status from its claimed quantity.

        Args:
            listing (Listing): The listing with its claims loaded.
            now (datetime): Time of the change.

        Returns:
            QuantityLedger: The ledger the decision was based on.
        """
        ledger: QuantityLedger = compute_ledger(
            listing.total_quantity, listing.status, listing.claims
        )
        if self.is_terminal(listing.status):
            return ledger

        target: ListingStatus
        if not exceeds(listing.total_quantity, ledger.claimed_quantity):
            target = ListingStatus.FULLY_CLAIMED
        elif ledger.claimed_quantity > 0:
            target = ListingStatus.PARTIALLY_CLAIMED
        else:
            target = ListingStatus.AVAILABLE
        self.transition(listing, target, now)
        return ledger

    def apply_completion_rule(self, listing: Listing, now: datetime) -> bool:
        """Complete an open listing once none of its claims is active.

        Args:
            listing (Listing): The listing with its claims loaded.
            now (datetime): Time of the change.

        Returns:
            bool: True if the listing became COMPLETED.
        """
        if self.is_terminal(listing.status):
            return False
        if any(
            claim.status in ACTIVE_CLAIM_STATUSES for claim in listing.claims
        ):
            return False
        return self.transition(listing, ListingStatus.COMPLETED, now)

    def expire(self, listing: Listing, now: datetime) -> QuantityLedger:
        """Move a listing to EXPIRED and account for its wasted quantity.

        Args:
            listing (Listing): The listing with its claims loaded.
            now (datetime): Time of the change.

        Returns:
            QuantityLedger: The ledger after expiry.
        """
        self.transition(listing, ListingStatus.EXPIRED, now)
        return compute_ledger(
            listing.total_quantity, listing.status, listing.claims
        )


async def lock_listing(db: AsyncSession, listing_id: int) -> None:
    """Take the write lock of a listing for the rest of the transaction.

    A no-op update of the lock counter holds the row lock on PostgreSQL and
    the database write lock on SQLite until commit or rollback.

    Args:
        db (AsyncSession): The database session.
        listing_id (int): The listing to lock.
    """
    result = await db.execute(
        update(Listing)
        .where(Listing.id == listing_id)
        .values(
            lock_version=Listing.lock_version + 1,
            updated_at=Listing.updated_at,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("Listing", listing_id)


async def load_listing(
    db: AsyncSession, listing_id: int, *, lock: bool = False
) -> Listing:
    """Read a listing and its claims fresh from the store.

    Args:
        db (AsyncSession): The database session.
        listing_id (int): The listing to read.
        lock (bool): Take the listing write lock before reading.

    Returns:
        Listing: The listing with its claims loaded.
    """
    if lock:
        await lock_listing(db, listing_id)
    listing: Listing | None = (
        await db.execute(
            select(Listing)
            .options(selectinload(Listing.claims))
            .where(Listing.id == listing_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if listing is None:
        raise NotFoundError("Listing", listing_id)
    return listing
