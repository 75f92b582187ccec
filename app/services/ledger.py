"""Quantity ledger: claimed, remaining and wasted quantity of a listing."""

import typing as t
from dataclasses import dataclass

from app.core.models import ClaimStatus, ListingStatus

# Quantities are kept to this many decimal places so sums of fractional
# claims compare exactly against what is left.
QUANTITY_PRECISION: int = 6

# Claims whose quantity is allocated to the receiver.
COUNTED_CLAIM_STATUSES: t.FrozenSet[ClaimStatus] = frozenset(
    {ClaimStatus.APPROVED, ClaimStatus.CONFIRMED, ClaimStatus.COMPLETED}
)


class LedgerClaim(t.Protocol):  # pylint: disable=too-few-public-methods
    """The claim fields the ledger reads."""

    status: ClaimStatus
    requested_quantity: float
    approved_quantity: float | None


@dataclass(frozen=True)
class QuantityLedger:
    """Quantities derived from a listing and its claims."""

    total_quantity: float
    claimed_quantity: float
    remaining_quantity: float
    completion_rate: float
    wasted_quantity: float


def round_quantity(quantity: float) -> float:
    """Round a quantity to the ledger precision."""
    return round(quantity, QUANTITY_PRECISION)


def exceeds(quantity: float, available: float) -> bool:
    """Check if a quantity is more than what is available.

    Both sides are compared at the ledger precision, so asking for exactly
    the remaining quantity of fractional claims succeeds.

    Args:
        quantity (float): The quantity asked for.
        available (float): The quantity left.

    Returns:
        bool: True if the quantity does not fit.
    """
    return round_quantity(quantity) > round_quantity(available)


def claimed_quantity(claims: t.Iterable[LedgerClaim]) -> float:
    """Sum the allocated quantity of counted claims.

    Args:
        claims (Iterable[LedgerClaim]): The listing's claims, any status.

    Returns:
        float: Approved quantity (requested before approval) of counted claims.
    """
    total: float = 0.0
    for claim in claims:
        if claim.status not in COUNTED_CLAIM_STATUSES:
            continue
        if claim.approved_quantity is not None:
            total += claim.approved_quantity
        else:
            total += claim.requested_quantity
    return round_quantity(total)


def compute_ledger(
    total_quantity: float,
    status: ListingStatus,
    claims: t.Iterable[LedgerClaim],
) -> QuantityLedger:
    """Derive the quantity ledger of a listing.

    Args:
        total_quantity (float): The listing's fixed total quantity.
        status (ListingStatus): The listing's current status.
        claims (Iterable[LedgerClaim]): The listing's claims, any status.

    Returns:
        QuantityLedger: Claimed, remaining and wasted quantity.
    """
    claimed: float = claimed_quantity(claims)
    unclaimed: float = round_quantity(max(0.0, total_quantity - claimed))
    return QuantityLedger(
        total_quantity=total_quantity,
        claimed_quantity=claimed,
        remaining_quantity=unclaimed,
        completion_rate=claimed / total_quantity if total_quantity else 0.0,
        wasted_quantity=(
            unclaimed if status == ListingStatus.EXPIRED else 0.0
        ),
    )
