"""Email notifications: pickup codes to receivers, expiry notices to
providers.

Both are best-effort event subscribers. With SMTP disabled they do nothing.
"""

import logging
import typing as t
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

import aiosmtplib
from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy import select

from app.core.config import SETTINGS
from app.core.database import ASYNC_SESSION_MAKER
from app.core.events import ClaimApproved, EventBus, ListingExpired
from app.core.models import Listing, User
from app.services.errors import format_quantity

LOGGER: logging.Logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent.parent / "templates"
EMAIL_ENV = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html", "xml"]),
)
EMAIL_ENV.filters["quantity"] = format_quantity


def render_template(template_name: str, **context: t.Any) -> str:
    """Render a Jinja2 email template with the given context.

    Args:
        template_name (str): Path of the template under ``templates/``.
        **context: Context variables for rendering the template.

    Returns:
        str: The rendered template.
    """
    return EMAIL_ENV.get_template(template_name).render(**context)


def build_message(
    to_email: str, subject: str, template: str, context: t.Dict[str, t.Any]
) -> MIMEMultipart:
    """Render the text and HTML variants of a template into one message.

    Args:
        to_email (str): Recipient address.
        subject (str): Subject line, prefixed with the application name.
        template (str): Template name without extension, e.g.
            ``"emails/pickup_code"``.
        context (Dict[str, Any]): Template variables.

    Returns:
        MIMEMultipart: The multipart/alternative message.
    """
    message: MIMEMultipart = MIMEMultipart("alternative")
    message["From"] = SETTINGS.smtp_from_email
    message["To"] = to_email
    message["Subject"] = f"[{SETTINGS.app_name}] {subject}"
    context = {"app_url": SETTINGS.app_url, **context}
    message.attach(
        MIMEText(render_template(f"{template}.txt", **context), "plain")
    )
    message.attach(
        MIMEText(render_template(f"{template}.html", **context), "html")
    )
    return message


async def send_email(message: MIMEMultipart) -> bool:
    """Deliver a message through the configured SMTP server.

    Args:
        message (MIMEMultipart): The message to send.

    Returns:
        bool: True if the server accepted the message.
    """
    if not SETTINGS.smtp_enabled:
        LOGGER.debug("SMTP not enabled, skipping email")
        return False

    try:
        await aiosmtplib.send(
            message,
            hostname=SETTINGS.smtp_host,
            port=SETTINGS.smtp_port,
            username=SETTINGS.smtp_user or None,
            password=SETTINGS.smtp_password or None,
            use_tls=SETTINGS.smtp_port == 465,
            start_tls=SETTINGS.smtp_port == 587,
            timeout=10,
        )
    except (aiosmtplib.SMTPException, OSError):
        LOGGER.exception("Failed to send email to %s", message["To"])
        return False
    LOGGER.info("Email sent to %s", message["To"])
    return True


async def get_active_user(user_id: int) -> User | None:
    """Get an active user by ID in a fresh session.

    Args:
        user_id (int): The ID of the user.

    Returns:
        User | None: The user, or None if missing or deactivated.
    """
    async with ASYNC_SESSION_MAKER() as session:
        return (
            await session.execute(
                select(User).where(
                    User.id == user_id, User.is_active.is_(True)
                )
            )
        ).scalar_one_or_none()


async def send_pickup_code_email(event: ClaimApproved) -> bool:
    """Email the pickup code of an approved claim to its receiver.

    Args:
        event (ClaimApproved): The approval.

    Returns:
        bool: True if email was sent, False otherwise.
    """
    if not SETTINGS.smtp_enabled:
        return False

    receiver: User | None = await get_active_user(event.receiver_id)
    if receiver is None:
        return False

    async with ASYNC_SESSION_MAKER() as session:
        listing: Listing | None = await session.get(Listing, event.listing_id)
    if listing is None:
        return False

    return await send_email(
        build_message(
            receiver.email,
            f"Your pickup code for {listing.title}",
            "emails/pickup_code",
            {
                "name": receiver.name,
                "title": listing.title,
                "quantity": event.approved_quantity,
                "unit": event.unit,
                "pickup_code": event.pickup_code,
                "pickup_instructions": listing.pickup_instructions,
            },
        )
    )


async def send_expiry_notice_email(event: ListingExpired) -> bool:
    """Tell a provider one of their listings expired.

    Args:
        event (ListingExpired): The expiry.

    Returns:
        bool: True if email was sent, False otherwise.
    """
    if not SETTINGS.smtp_enabled:
        return False

    provider: User | None = await get_active_user(event.provider_id)
    if provider is None:
        return False

    return await send_email(
        build_message(
            provider.email,
            f"Listing expired: {event.title}",
            "emails/listing_expired",
            {
                "name": provider.name,
                "title": event.title,
                "total_quantity": event.total_quantity,
                "claimed_quantity": event.claimed_quantity,
                "wasted_quantity": event.wasted_quantity,
                "unit": event.unit,
            },
        )
    )


async def on_claim_approved(event: ClaimApproved) -> None:
    """Event handler for ClaimApproved."""
    await send_pickup_code_email(event)


async def on_listing_expired(event: ListingExpired) -> None:
    """Event handler for ListingExpired."""
    await send_expiry_notice_email(event)


def register_mail_subscribers(bus: EventBus) -> None:
    """Subscribe the mailer to the events it notifies about.

    Args:
        bus (EventBus): The event bus.
    """
    bus.subscribe(ClaimApproved, on_claim_approved)
    bus.subscribe(ListingExpired, on_listing_expired)
