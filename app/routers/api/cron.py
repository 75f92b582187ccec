"""Cron endpoints for out-of-band expiry sweeps."""

import logging
import secrets
import typing as t

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import SETTINGS
from app.core.database import get_db
from app.schemas.sweep import CronSweepResponse, SweepReport
from app.services import ExpirySweeper, LifecycleError
from app.utils.dates import Clock, get_clock
from app.utils.http_errors import lifecycle_http_error

LOGGER: logging.Logger = logging.getLogger(__name__)

ROUTER = APIRouter(prefix="/cron", tags=["Cron"])


def verify_cron_token(
    authorization: t.Annotated[str | None, Header()] = None,
) -> None:
    """Check the bearer token of an external scheduler.

    Any caller is accepted when no token is configured.

    Args:
        authorization (str | None): The Authorization header.
    """
    if not SETTINGS.cron_secret_token:
        return
    expected: str = f"Bearer {SETTINGS.cron_secret_token}"
    if authorization is None or not secrets.compare_digest(
        authorization, expected
    ):
        LOGGER.warning("Rejected cron call with invalid token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


@ROUTER.post(
    "/ttl-cleanup",
    response_model=CronSweepResponse,
    dependencies=[Depends(verify_cron_token)],
)
async def run_ttl_cleanup(
    db: t.Annotated[AsyncSession, Depends(get_db)],
    clock: t.Annotated[Clock, Depends(get_clock)],
) -> CronSweepResponse:
    """Expire every listing past its safety window now.

    Args:
        db (AsyncSession): The database session.
        clock (Clock): The application clock.

    Returns:
        CronSweepResponse: The listings that were expired.
    """
    try:
        report: SweepReport = await ExpirySweeper(db, clock).sweep()
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc

    return CronSweepResponse(
        success=True,
        message=f"Expired {report.updated_count} listing(s)",
        processed_count=report.updated_count,
        results=report.results,
        timestamp=report.checked_at,
    )


@ROUTER.get("/ttl-cleanup")
async def ttl_cleanup_health(
    clock: t.Annotated[Clock, Depends(get_clock)],
) -> t.Dict[str, str]:
    """Health check for the external scheduler.

    Returns:
        Dict[str, str]: Status and server time.
    """
    return {
        "status": "healthy",
        "service": "ttl-cleanup",
        "timestamp": clock.now().isoformat(),
    }
