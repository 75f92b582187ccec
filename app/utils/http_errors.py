"""Translation of lifecycle errors to HTTP responses."""

from fastapi import HTTPException, status

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


def lifecycle_http_error(exc: LifecycleError) -> HTTPException:
    """Build the HTTP error answering a failed lifecycle operation.

    Args:
        exc (LifecycleError): The error raised by a service.

    Returns:
        HTTPException: The exception to raise from the endpoint.
    """
    match exc:
        case NotFoundError():
            return HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
            )
        case ExpiredError():
            return HTTPException(
                status_code=status.HTTP_410_GONE, detail=str(exc)
            )
        case InsufficientQuantityError():
            return HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    "message": str(exc),
                    "remaining_quantity": exc.remaining_quantity,
                    "unit": exc.unit,
                },
            )
        case InvalidStateError():
            return HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    "message": str(exc),
                    "current_status": exc.current_status,
                },
            )
        case DuplicateClaimError() | ConflictError():
            return HTTPException(
                status_code=status.HTTP_409_CONFLICT, detail=str(exc)
            )
        case InvalidQuantityError():
            return HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=str(exc),
            )
        case InvalidCodeError():
            return HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
            )
        case StorageError():
            return HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Storage temporarily unavailable, please retry",
                headers={"Retry-After": "1"},
            )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
    )
