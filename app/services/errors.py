"""Errors raised by the listing and claim lifecycle."""

import functools
import typing as t

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

P = t.ParamSpec("P")
R = t.TypeVar("R")


class LifecycleError(Exception):
    """Base class for listing and claim lifecycle errors."""


class NotFoundError(LifecycleError):
    """Raised when a listing or claim does not exist (or is not yours)."""

    entity: str
    entity_id: int | str

    def __init__(
        self, entity: str, entity_id: int | str, field: str = "ID"
    ) -> None:
        """Initialize NotFoundError.

        Args:
            entity (str): Kind of record, e.g. ``"Listing"``.
            entity_id (int | str): The value that was looked up.
            field (str): What the value identifies the record by.
        """
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} with {field} {entity_id} not found")


class InvalidStateError(LifecycleError):
    """Raised when an operation is not valid for the current status."""

    current_status: str

    def __init__(self, message: str, current_status: str) -> None:
        """Initialize InvalidStateError.

        Args:
            message (str): What was attempted.
            current_status (str): The status that forbids it.
        """
        self.current_status = current_status
        super().__init__(f"{message} (current status: {current_status})")


class ExpiredError(LifecycleError):
    """Raised when a listing's safety window has passed."""

    listing_id: int

    def __init__(self, listing_id: int) -> None:
        self.listing_id = listing_id
        super().__init__(f"Listing {listing_id} has expired")


class DuplicateClaimError(LifecycleError):
    """Raised when a receiver already has an active claim on a listing."""

    listing_id: int
    receiver_id: int

    def __init__(self, listing_id: int, receiver_id: int) -> None:
        self.listing_id = listing_id
        self.receiver_id = receiver_id
        super().__init__("You have already claimed this listing")


class InsufficientQuantityError(LifecycleError):
    """Raised when more is requested than the listing has left."""

    remaining_quantity: float
    unit: str

    def __init__(self, remaining_quantity: float, unit: str) -> None:
        """Initialize InsufficientQuantityError.

        Args:
            remaining_quantity (float): Exact quantity still available.
            unit (str): Unit of the listing.
        """
        self.remaining_quantity = remaining_quantity
        self.unit = unit
        super().__init__(
            f"Only {format_quantity(remaining_quantity)} {unit} available"
        )


class InvalidQuantityError(LifecycleError):
    """Raised when a requested or approved quantity is out of range."""


class InvalidCodeError(LifecycleError):
    """Raised when a pickup code does not match."""

    def __init__(self) -> None:
        super().__init__("Invalid pickup code")


class ConflictError(LifecycleError):
    """Raised when a listing cannot be deleted because of its claims."""

    listing_id: int
    claim_count: int

    def __init__(self, listing_id: int, claim_count: int) -> None:
        self.listing_id = listing_id
        self.claim_count = claim_count
        super().__init__(
            f"Cannot delete listing with {claim_count} approved claim(s)"
        )


class StorageError(LifecycleError):
    """Raised when the store fails transiently; safe to retry."""


def format_quantity(quantity: float) -> str:
    """Render a quantity without a trailing ``.0`` for whole numbers.

    Args:
        quantity (float): The quantity.

    Returns:
        str: ``"4"`` for 4.0, ``"2.5"`` for 2.5.
    """
    if float(quantity).is_integer():
        return str(int(quantity))
    return f"{quantity:g}"


def translate_storage_errors(
    func: t.Callable[P, t.Awaitable[R]],
) -> t.Callable[P, t.Awaitable[R]]:
    """Surface driver and pool failures of a use-case as StorageError.

    Args:
        func: The coroutine function to wrap.

    Returns:
        The wrapped coroutine function.
    """

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return await func(*args, **kwargs)
        except (OperationalError, PoolTimeoutError) as exc:
            raise StorageError(str(exc)) from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                raise StorageError(str(exc)) from exc
            raise

    return wrapper
