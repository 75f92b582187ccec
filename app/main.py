"""FastAPI application entry point."""

import logging
import typing as t
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from app.core.config import SETTINGS
from app.core.database import close_db, init_db
from app.core.events import EVENT_BUS
from app.core.globals import OPENAPI_TAGS
from app.routers import api_router
from app.services import register_subscribers, sweep_expired_listings_task

logging.basicConfig(
    level=logging.DEBUG if SETTINGS.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
LOGGER: logging.Logger = logging.getLogger(__name__)

SCHEDULER: AsyncIOScheduler = AsyncIOScheduler()
SWEEP_JOB_ID: str = "expiry_sweep"


def schedule_expiry_sweep(scheduler: AsyncIOScheduler) -> None:
    """Register the periodic expiry sweep on a scheduler.

    Args:
        scheduler (AsyncIOScheduler): The scheduler to add the job to.
    """
    scheduler.add_job(
        sweep_expired_listings_task,
        trigger=IntervalTrigger(minutes=SETTINGS.sweep_interval_minutes),
        id=SWEEP_JOB_ID,
        name="Expire listings past their safety window",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    LOGGER.info(
        "Expiry sweeper scheduled to run every %d minutes",
        SETTINGS.sweep_interval_minutes,
    )


@asynccontextmanager
async def lifespan(_: FastAPI) -> t.AsyncGenerator[None, None]:
    """Create tables, wire event subscribers and start the sweeper.

    Overdue listings left from a previous run are swept once at startup.

    Args:
        _ (FastAPI): The FastAPI application instance.
    """
    LOGGER.info("Starting %s %s", SETTINGS.app_name, SETTINGS.app_version)
    await init_db()

    EVENT_BUS.clear()
    register_subscribers(EVENT_BUS)

    schedule_expiry_sweep(SCHEDULER)
    SCHEDULER.start()
    await sweep_expired_listings_task()

    yield

    SCHEDULER.shutdown(wait=False)
    await close_db()
    LOGGER.info("%s stopped", SETTINGS.app_name)


APPLICATION: FastAPI = FastAPI(
    title=SETTINGS.app_name,
    description=(
        "Surplus food listings, receiver claims and pickup verification"
    ),
    version=SETTINGS.app_version,
    lifespan=lifespan,
    openapi_tags=OPENAPI_TAGS,
)

APPLICATION.add_middleware(
    CORSMiddleware,
    allow_origins=SETTINGS.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

APPLICATION.include_router(api_router)


@APPLICATION.get("/", include_in_schema=False)
async def root() -> RedirectResponse:
    """Send browsers to the interactive API documentation."""
    return RedirectResponse(url="/docs", status_code=303)


@APPLICATION.get("/health", tags=["Health"])
async def health_check() -> t.Dict[str, str | bool]:
    """Liveness probe.

    Returns:
        Dict[str, str | bool]: Service status, version and whether the
            expiry sweeper is scheduled.
    """
    return {
        "status": "healthy",
        "version": SETTINGS.app_version,
        "sweeper_running": SCHEDULER.running,
    }
