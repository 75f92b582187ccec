"""Domain events emitted by the listing/claim lifecycle.

Services queue events on the session while they work. The unit of work
hands them to subscribers only after its transaction committed, so a failing
subscriber can never roll back a listing or claim transition.
"""

import logging
import typing as t
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

LOGGER: logging.Logger = logging.getLogger(__name__)

PENDING_EVENTS_KEY: str = "pending_events"

Handler = t.Callable[[t.Any], t.Awaitable[None]]


@dataclass(frozen=True)
class ListingCreated:
    """A provider posted a new listing."""

    listing_id: int
    provider_id: int
    title: str
    total_quantity: float
    unit: str


@dataclass(frozen=True)
class ListingViewed:
    """A listing detail was read."""

    listing_id: int


@dataclass(frozen=True)
class ListingExpired:
    """The sweeper moved a listing to EXPIRED."""

    listing_id: int
    provider_id: int
    title: str
    total_quantity: float
    claimed_quantity: float
    wasted_quantity: float
    unit: str


@dataclass(frozen=True)
class ClaimCreated:
    """A receiver requested part of a listing."""

    claim_id: int
    listing_id: int
    receiver_id: int
    requested_quantity: float


@dataclass(frozen=True)
class ClaimApproved:
    """A provider approved a claim and a pickup code was issued."""

    claim_id: int
    listing_id: int
    receiver_id: int
    approved_quantity: float
    unit: str
    pickup_code: str


@dataclass(frozen=True)
class ClaimCompleted:
    """Food was handed over to the receiver."""

    claim_id: int
    listing_id: int
    provider_id: int
    receiver_id: int
    quantity: float
    unit: str
    food_name: str


class EventBus:
    """In-process publish/subscribe for post-commit domain events."""

    _handlers: t.DefaultDict[type, t.List[Handler]]

    def __init__(self) -> None:
        self._handlers = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        """Register a handler for an event type.

        Args:
            event_type (type): The event class to listen for.
            handler (Handler): Coroutine function called with the event.
        """
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)

    def clear(self) -> None:
        """Remove every registered handler."""
        self._handlers.clear()

    @staticmethod
    def queue(session: AsyncSession, event: t.Any) -> None:
        """Attach an event to the session's unit of work.

        Args:
            session (AsyncSession): The session doing the work.
            event (Any): The event to dispatch after commit.
        """
        session.info.setdefault(PENDING_EVENTS_KEY, []).append(event)

    @staticmethod
    def pending(session: AsyncSession) -> t.List[t.Any]:
        """Return the events queued on a session and not yet dispatched."""
        return list(session.info.get(PENDING_EVENTS_KEY, []))

    @staticmethod
    def discard(session: AsyncSession) -> None:
        """Drop queued events after a rollback."""
        session.info.pop(PENDING_EVENTS_KEY, None)

    async def dispatch(self, session: AsyncSession) -> int:
        """Hand queued events to their subscribers.

        Handler failures are logged and skipped.

        Args:
            session (AsyncSession): The session whose transaction committed.

        Returns:
            int: Number of events dispatched.
        """
        events: t.List[t.Any] = session.info.pop(PENDING_EVENTS_KEY, [])
        for event in events:
            for handler in list(self._handlers.get(type(event), [])):
                try:
                    await handler(event)
                except Exception:  # pylint: disable=broad-except
                    LOGGER.exception(
                        "Event handler %s failed for %s",
                        getattr(handler, "__qualname__", repr(handler)),
                        type(event).__name__,
                    )
        return len(events)


EVENT_BUS: EventBus = EventBus()
