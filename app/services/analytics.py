"""Analytics counters fed by lifecycle events.

Counters only ever go up. They are updated after the lifecycle transaction
committed, in a session of their own, so losing an update never affects a
listing or claim. Every change is a single ``UPDATE ... SET n = n + k`` so
subscribers running side by side never overwrite each other.
"""

import logging
import typing as t

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import ASYNC_SESSION_MAKER, Base
from app.core.events import (
    ClaimCompleted,
    ClaimCreated,
    EventBus,
    ListingCreated,
    ListingViewed,
)
from app.core.models import ListingAnalytics, UserAnalytics
from app.schemas.statistics import ImpactResponse
from app.services.email_notifications import register_mail_subscribers
from app.utils.impact import (
    LEVEL_THRESHOLDS,
    MAX_LEVEL,
    EnvironmentalImpact,
    environmental_impact,
    level_for,
    points_for,
)

LOGGER: logging.Logger = logging.getLogger(__name__)

# Level as a SQL expression of the stored points
LEVEL_FROM_POINTS = case(
    *[
        (UserAnalytics.points < upper_bound, level)
        for upper_bound, level in LEVEL_THRESHOLDS
    ],
    else_=MAX_LEVEL,
)


async def ensure_counters(
    session: AsyncSession,
    model: t.Type[Base],
    owner_column: str,
    owner_id: int,
) -> None:
    """Create the counter row of a listing or user if it is missing.

    Args:
        session (AsyncSession): The database session.
        model (Type[Base]): ``ListingAnalytics`` or ``UserAnalytics``.
        owner_column (str): Name of the unique owner column.
        owner_id (int): The listing or user.
    """
    column = getattr(model, owner_column)
    existing: int | None = (
        await session.execute(select(model.id).where(column == owner_id))
    ).scalar_one_or_none()
    if existing is not None:
        return
    try:
        async with session.begin_nested():
            session.add(model(**{owner_column: owner_id}))
    except IntegrityError:
        # Another subscriber created it first
        LOGGER.debug("%s for %s already exists", model.__name__, owner_id)


async def increment(
    session: AsyncSession,
    model: t.Type[Base],
    owner_column: str,
    owner_id: int,
    **amounts: float,
) -> None:
    """Atomically add amounts to the counters of a listing or user.

    The row is created on first use.

    Args:
        session (AsyncSession): The database session.
        model (Type[Base]): ``ListingAnalytics`` or ``UserAnalytics``.
        owner_column (str): Name of the unique owner column.
        owner_id (int): The listing or user.
        **amounts (float): Counter name to amount added.
    """
    statement = (
        update(model)
        .where(getattr(model, owner_column) == owner_id)
        .values(
            {
                name: getattr(model, name) + amount
                for name, amount in amounts.items()
            }
        )
        .execution_options(synchronize_session=False)
    )
    if (await session.execute(statement)).rowcount:
        return
    await ensure_counters(session, model, owner_column, owner_id)
    if not (await session.execute(statement)).rowcount:
        LOGGER.warning("No %s row for %s", model.__name__, owner_id)


async def credit_impact(
    session: AsyncSession,
    user_id: int,
    impact: EnvironmentalImpact,
    **amounts: float,
) -> None:
    """Add a rescued quantity's impact and points to a user.

    Args:
        session (AsyncSession): The database session.
        user_id (int): The user credited.
        impact (EnvironmentalImpact): The impact to credit.
        **amounts (float): Extra counters of the user to increase.
    """
    await increment(
        session,
        UserAnalytics,
        "user_id",
        user_id,
        carbon_saved=impact.co2_saved,
        water_saved=impact.water_saved,
        points=points_for(impact.quantity_kg),
        **amounts,
    )
    await session.execute(
        update(UserAnalytics)
        .where(UserAnalytics.user_id == user_id)
        .values(level=LEVEL_FROM_POINTS)
        .execution_options(synchronize_session=False)
    )


class AnalyticsRecorder:
    """Event subscriber maintaining listing and user counters."""

    session_maker: async_sessionmaker[AsyncSession]

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] = ASYNC_SESSION_MAKER,
    ) -> None:
        """Initialize AnalyticsRecorder.

        Args:
            session_maker (async_sessionmaker[AsyncSession]):
                Factory for the recorder's own sessions.
        """
        self.session_maker = session_maker

    def register(self, bus: EventBus) -> None:
        """Subscribe to the events that move counters.

        Args:
            bus (EventBus): The event bus.
        """
        bus.subscribe(ListingCreated, self.on_listing_created)
        bus.subscribe(ListingViewed, self.on_listing_viewed)
        bus.subscribe(ClaimCreated, self.on_claim_created)
        bus.subscribe(ClaimCompleted, self.on_claim_completed)

    async def on_listing_created(self, event: ListingCreated) -> None:
        """Count a new listing for its provider."""
        async with self.session_maker() as session:
            await ensure_counters(
                session, ListingAnalytics, "listing_id", event.listing_id
            )
            await increment(
                session,
                UserAnalytics,
                "user_id",
                event.provider_id,
                listings_created=1,
            )
            await session.commit()

    async def on_listing_viewed(self, event: ListingViewed) -> None:
        """Count a listing view."""
        async with self.session_maker() as session:
            await increment(
                session,
                ListingAnalytics,
                "listing_id",
                event.listing_id,
                view_count=1,
            )
            await session.commit()

    async def on_claim_created(self, event: ClaimCreated) -> None:
        """Count a claim made on a listing."""
        async with self.session_maker() as session:
            await increment(
                session,
                ListingAnalytics,
                "listing_id",
                event.listing_id,
                claim_count=1,
            )
            await session.commit()

    async def on_claim_completed(self, event: ClaimCompleted) -> None:
        """Credit the impact of a completed hand-over.

        Args:
            event (ClaimCompleted): The completed claim.
        """
        impact: EnvironmentalImpact = environmental_impact(
            event.quantity, event.unit, event.food_name
        )
        async with self.session_maker() as session:
            await increment(
                session,
                ListingAnalytics,
                "listing_id",
                event.listing_id,
                people_served=impact.people_served,
                carbon_saved=impact.co2_saved,
                water_saved=impact.water_saved,
            )
            await credit_impact(
                session,
                event.receiver_id,
                impact,
                claims_made=1,
                food_received_kg=impact.quantity_kg,
            )
            await credit_impact(
                session,
                event.provider_id,
                impact,
                food_shared_kg=impact.quantity_kg,
            )
            await session.commit()

        LOGGER.info(
            "Claim %s impact: %.2f kg, %.2f kg CO2, %.0f L water, %d served",
            event.claim_id,
            impact.quantity_kg,
            impact.co2_saved,
            impact.water_saved,
            impact.people_served,
        )


class AnalyticsService:
    """Service class for reading analytics counters."""

    db: AsyncSession

    def __init__(self, db: AsyncSession) -> None:
        """Initialize AnalyticsService.

        Args:
            db (AsyncSession): The database session.
        """
        self.db = db

    async def get_user_impact(self, user_id: int) -> ImpactResponse:
        """Get a user's counters, zero if nothing was recorded yet.

        Args:
            user_id (int): The user.

        Returns:
            ImpactResponse: The user's impact and level.
        """
        analytics: UserAnalytics | None = (
            await self.db.execute(
                select(UserAnalytics).where(UserAnalytics.user_id == user_id)
            )
        ).scalar_one_or_none()
        if analytics is None:
            return ImpactResponse(
                listings_created=0,
                claims_made=0,
                food_shared_kg=0.0,
                food_received_kg=0.0,
                carbon_saved=0.0,
                water_saved=0.0,
                points=0,
                level=level_for(0),
            )
        return ImpactResponse.model_validate(analytics, from_attributes=True)


def register_subscribers(
    bus: EventBus,
    session_maker: async_sessionmaker[AsyncSession] = ASYNC_SESSION_MAKER,
) -> AnalyticsRecorder:
    """Subscribe every best-effort consumer of lifecycle events.

    Args:
        bus (EventBus): The event bus.
        session_maker (async_sessionmaker[AsyncSession]):
            Factory for the analytics sessions.

    Returns:
        AnalyticsRecorder: The registered analytics recorder.
    """
    recorder: AnalyticsRecorder = AnalyticsRecorder(session_maker)
    recorder.register(bus)
    register_mail_subscribers(bus)
    return recorder
