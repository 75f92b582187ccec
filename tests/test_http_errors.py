"""Tests for the HTTP translation of lifecycle errors."""

import pytest

from app.services.errors import (
    ConflictError,
    DuplicateClaimError,
    ExpiredError,
    InsufficientQuantityError,
    InvalidCodeError,
    InvalidQuantityError,
    InvalidStateError,
    LifecycleError,
    NotFoundError,
    StorageError,
)
from app.utils.http_errors import lifecycle_http_error


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (NotFoundError("Claim", 3), 404),
        (ExpiredError(1), 410),
        (DuplicateClaimError(1, 2), 409),
        (ConflictError(1, 2), 409),
        (InvalidQuantityError("Requested quantity must be positive"), 422),
        (InvalidCodeError(), 400),
        (LifecycleError("boom"), 500),
    ],
)
def test_status_codes(error: LifecycleError, status_code: int) -> None:
    assert lifecycle_http_error(error).status_code == status_code


def test_insufficient_quantity_carries_remaining() -> None:
    exc = lifecycle_http_error(InsufficientQuantityError(2.5, "kg"))
    assert exc.status_code == 409
    assert exc.detail == {
        "message": "Only 2.5 kg available",
        "remaining_quantity": 2.5,
        "unit": "kg",
    }


def test_invalid_state_carries_current_status() -> None:
    exc = lifecycle_http_error(
        InvalidStateError("Pickup code cannot be verified", "confirmed")
    )
    assert exc.status_code == 409
    assert exc.detail["current_status"] == "confirmed"


def test_storage_error_is_retryable() -> None:
    exc = lifecycle_http_error(StorageError("database is locked"))
    assert exc.status_code == 503
    assert exc.headers == {"Retry-After": "1"}
    assert "locked" not in exc.detail
