"""Analytics endpoints."""

import typing as t

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user
from app.core.database import get_db
from app.core.models import User
from app.schemas.statistics import ImpactResponse
from app.services import AnalyticsService

ROUTER = APIRouter(prefix="/analytics", tags=["Analytics"])


@ROUTER.get("/me", response_model=ImpactResponse)
async def get_my_impact(
    db: t.Annotated[AsyncSession, Depends(get_db)],
    current_user: t.Annotated[User, Depends(get_current_user)],
) -> ImpactResponse:
    """Get the food I shared or received and its environmental impact.

    Args:
        db (AsyncSession): The database session.
        current_user (User): The authenticated user.

    Returns:
        ImpactResponse: Counters, points and level.
    """
    return await AnalyticsService(db).get_user_impact(current_user.id)
