"""Tests for the quantity ledger."""

from dataclasses import dataclass

import pytest

from app.core.models import ClaimStatus, ListingStatus
from app.services.ledger import claimed_quantity, compute_ledger, exceeds


@dataclass
class FakeClaim:
    status: ClaimStatus
    requested_quantity: float
    approved_quantity: float | None = None


class TestClaimedQuantity:
    def test_pending_claims_are_not_counted(self) -> None:
        claims = [FakeClaim(ClaimStatus.PENDING, 6)]
        assert claimed_quantity(claims) == 0

    def test_approved_quantity_wins_over_requested(self) -> None:
        claims = [FakeClaim(ClaimStatus.APPROVED, 6, approved_quantity=4)]
        assert claimed_quantity(claims) == 4

    def test_confirmed_and_completed_are_counted(self) -> None:
        claims = [
            FakeClaim(ClaimStatus.CONFIRMED, 2, approved_quantity=2),
            FakeClaim(ClaimStatus.COMPLETED, 3, approved_quantity=3),
        ]
        assert claimed_quantity(claims) == 5

    @pytest.mark.parametrize(
        "status", [ClaimStatus.REJECTED, ClaimStatus.CANCELLED]
    )
    def test_closed_claims_release_quantity(self, status: ClaimStatus) -> None:
        claims = [FakeClaim(status, 5, approved_quantity=5)]
        assert claimed_quantity(claims) == 0


class TestComputeLedger:
    def test_open_listing_has_no_waste(self) -> None:
        ledger = compute_ledger(
            10,
            ListingStatus.PARTIALLY_CLAIMED,
            [FakeClaim(ClaimStatus.APPROVED, 6, approved_quantity=6)],
        )
        assert ledger.claimed_quantity == 6
        assert ledger.remaining_quantity == 4
        assert ledger.completion_rate == pytest.approx(0.6)
        assert ledger.wasted_quantity == 0

    def test_expired_listing_wastes_unclaimed_quantity(self) -> None:
        ledger = compute_ledger(
            10,
            ListingStatus.EXPIRED,
            [FakeClaim(ClaimStatus.COMPLETED, 3, approved_quantity=3)],
        )
        assert ledger.wasted_quantity == 7
        assert ledger.claimed_quantity + ledger.wasted_quantity == 10

    def test_remaining_never_goes_negative(self) -> None:
        ledger = compute_ledger(
            5,
            ListingStatus.FULLY_CLAIMED,
            [FakeClaim(ClaimStatus.APPROVED, 6, approved_quantity=6)],
        )
        assert ledger.remaining_quantity == 0

    def test_fractional_claims_leave_an_exact_remainder(self) -> None:
        ledger = compute_ledger(
            0.3,
            ListingStatus.PARTIALLY_CLAIMED,
            [FakeClaim(ClaimStatus.APPROVED, 0.1, approved_quantity=0.1)],
        )
        assert ledger.remaining_quantity == 0.2
        assert not exceeds(0.2, ledger.remaining_quantity)
        assert exceeds(0.21, ledger.remaining_quantity)

    def test_fractional_claims_can_fill_a_listing(self) -> None:
        claims = [
            FakeClaim(ClaimStatus.APPROVED, 0.1, approved_quantity=0.1),
            FakeClaim(ClaimStatus.APPROVED, 0.2, approved_quantity=0.2),
        ]
        ledger = compute_ledger(0.3, ListingStatus.FULLY_CLAIMED, claims)
        assert ledger.claimed_quantity == 0.3
        assert ledger.remaining_quantity == 0
