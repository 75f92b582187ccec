"""Authentication service - sign-up and login of marketplace users."""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import (
    authenticate_user,
    create_access_token,
    get_password_hash,
    get_user_by_email,
    normalize_email,
)
from app.core.config import SETTINGS
from app.core.models import User
from app.schemas.auth import Token, UserCreate, UserResponse

LOGGER: logging.Logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Base class for sign-up and login errors."""


class RegistrationDisabledError(AuthError):
    """Raised when sign-up is turned off."""

    def __init__(self) -> None:
        super().__init__("New registrations are currently disabled")


class EmailExistsError(AuthError):
    """Raised when an account already uses the email address."""

    email: str

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__("Email already registered")


class InvalidCredentialsError(AuthError):
    """Raised when the email or password is wrong, or the user is inactive."""

    def __init__(self) -> None:
        super().__init__("Incorrect email or password")


class AuthService:
    """Service class for authentication operations."""

    db: AsyncSession

    def __init__(self, db: AsyncSession) -> None:
        """Initialize AuthService.

        Args:
            db (AsyncSession): The database session.
        """
        self.db = db

    async def register_user(self, data: UserCreate) -> UserResponse:
        """Create a provider or receiver account.

        Args:
            data (UserCreate): Name, email, password and role.

        Returns:
            UserResponse: The new account.
        """
        if not SETTINGS.registration_enabled:
            raise RegistrationDisabledError()

        email: str = normalize_email(data.email)
        if await get_user_by_email(self.db, email) is not None:
            raise EmailExistsError(email)

        user: User = User(
            name=data.name,
            email=email,
            hashed_password=get_password_hash(data.password),
            role=data.role,
            is_active=True,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise EmailExistsError(email) from exc
        await self.db.refresh(user)

        LOGGER.info("Registered %s %s", user.role.value, user.id)
        return UserResponse.model_validate(user)

    async def login(self, email: str, password: str) -> Token:
        """Exchange an email and password for an access token.

        Args:
            email (str): The account's email address.
            password (str): The plain text password.

        Returns:
            Token: A bearer token for the user.
        """
        user: User | None = await authenticate_user(self.db, email, password)
        if user is None or not user.is_active:
            LOGGER.warning("Failed login for %s", normalize_email(email))
            raise InvalidCredentialsError()
        return Token(access_token=create_access_token(user))
