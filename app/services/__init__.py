"""Services package."""

from app.services.analytics import (
    AnalyticsRecorder,
    AnalyticsService,
    register_subscribers,
)
from app.services.auth_service import (
    AuthError,
    AuthService,
    EmailExistsError,
    InvalidCredentialsError,
    RegistrationDisabledError,
)
from app.services.claim_service import ClaimService
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
from app.services.expiry_sweeper import (
    ExpirySweeper,
    sweep_expired_listings_task,
)
from app.services.listing_service import ListingService
from app.services.listing_state import ListingStateMachine

__all__ = [
    "AnalyticsRecorder",
    "AnalyticsService",
    "AuthError",
    "AuthService",
    "ClaimService",
    "ConflictError",
    "DuplicateClaimError",
    "EmailExistsError",
    "ExpiredError",
    "ExpirySweeper",
    "InsufficientQuantityError",
    "InvalidCodeError",
    "InvalidCredentialsError",
    "InvalidQuantityError",
    "InvalidStateError",
    "LifecycleError",
    "ListingService",
    "ListingStateMachine",
    "NotFoundError",
    "RegistrationDisabledError",
    "StorageError",
    "register_subscribers",
    "sweep_expired_listings_task",
]
