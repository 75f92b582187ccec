"""Date utilities and the injectable clock."""

import typing as t
from datetime import datetime, timezone


class Clock(t.Protocol):  # pylint: disable=too-few-public-methods
    """Source of the current time for business logic."""

    def now(self) -> datetime:
        """Return the current timezone-aware UTC time."""


class SystemClock:  # pylint: disable=too-few-public-methods
    """Clock backed by the system wall clock."""

    def now(self) -> datetime:
        """Return the current timezone-aware UTC time.

        Returns:
            datetime: The current time in UTC.
        """
        return datetime.now(timezone.utc)


SYSTEM_CLOCK: SystemClock = SystemClock()


def get_clock() -> Clock:
    """Dependency returning the application clock.

    Returns:
        Clock: The system clock.
    """
    return SYSTEM_CLOCK


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from the database.

    Args:
        value (datetime): The datetime to normalise.

    Returns:
        datetime: A timezone-aware datetime in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_until(deadline: datetime, now: datetime) -> float:
    """Calculate the number of hours from now until a deadline.

    Args:
        deadline (datetime): The deadline.
        now (datetime): The reference time.

    Returns:
        float: Hours left, negative when the deadline has passed.
    """
    return (ensure_utc(deadline) - ensure_utc(now)).total_seconds() / 3600


def format_time_remaining(deadline: datetime, now: datetime) -> str:
    """Render the time left before a deadline as ``"<h>h <m>m"``.

    Args:
        deadline (datetime): The deadline.
        now (datetime): The reference time.

    Returns:
        str: The formatted remaining time, or ``"Expired"``.
    """
    seconds: float = (ensure_utc(deadline) - ensure_utc(now)).total_seconds()
    if seconds <= 0:
        return "Expired"
    minutes: int = int(seconds // 60)
    return f"{minutes // 60}h {minutes % 60}m"
