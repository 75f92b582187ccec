"""Authentication utilities and dependencies.

Identity is a bearer JWT carrying the user ID and role. Role checks are
plain FastAPI dependencies built by ``require_role``.
"""

import logging
import typing as t
from datetime import datetime, timedelta, timezone

from argon2 import PasswordHasher, Type
from argon2.exceptions import (
    InvalidHashError,
    VerificationError,
    VerifyMismatchError,
)
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import SETTINGS
from app.core.database import get_db
from app.core.models import User, UserRole
from app.schemas.auth import TokenData

LOGGER: logging.Logger = logging.getLogger(__name__)

OAUTH2_SCHEME: OAuth2PasswordBearer = OAuth2PasswordBearer(
    tokenUrl="/api/auth/token", auto_error=False
)

PASSWORD_HASHER = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
    type=Type.ID,
)

CREDENTIALS_ERROR: HTTPException = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)


def get_password_hash(password: str) -> str:
    """Hash a password with Argon2id."""
    return PASSWORD_HASHER.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its Argon2id hash.

    Args:
        plain_password (str): The password presented at login.
        hashed_password (str): The stored hash.

    Returns:
        bool: True if the password matches.
    """
    try:
        return PASSWORD_HASHER.verify(hashed_password, plain_password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def normalize_email(email: str) -> str:
    """Canonical form of an email address used for storage and lookups."""
    return email.strip().lower()


def create_access_token(
    user: User, expires_delta: timedelta | None = None
) -> str:
    """Issue a signed access token for a user.

    Args:
        user (User): The authenticated user.
        expires_delta (timedelta | None):
            Token lifetime, defaults to ``access_token_expire_minutes``.

    Returns:
        str: The encoded JWT.
    """
    issued_at: datetime = datetime.now(timezone.utc)
    lifetime: timedelta = expires_delta or timedelta(
        minutes=SETTINGS.access_token_expire_minutes
    )
    claims: t.Dict[str, t.Any] = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role.value,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    return str(
        jwt.encode(claims, SETTINGS.secret_key, algorithm=SETTINGS.algorithm)
    )


def decode_access_token(token: str) -> TokenData | None:
    """Read the claims of an access token.

    Args:
        token (str): The encoded JWT.

    Returns:
        TokenData | None: The claims, or None if the token is invalid,
            expired or malformed.
    """
    try:
        payload: t.Dict[str, t.Any] = jwt.decode(
            token, SETTINGS.secret_key, algorithms=[SETTINGS.algorithm]
        )
        return TokenData(
            user_id=int(payload["sub"]),
            email=payload.get("email"),
            role=payload.get("role"),
        )
    except (JWTError, KeyError, ValueError, ValidationError):
        LOGGER.debug("Rejected access token")
        return None


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    """Get a user by email address, case-insensitively."""
    return (
        await db.execute(
            select(User).where(User.email == normalize_email(email))
        )
    ).scalar_one_or_none()


async def authenticate_user(
    db: AsyncSession, email: str, password: str
) -> User | None:
    """Check an email and password pair.

    Hashes made with older Argon2 parameters are upgraded on the way.

    Args:
        db (AsyncSession): The database session.
        email (str): The email address given at login.
        password (str): The plain text password.

    Returns:
        User | None: The user if the credentials are valid, else None.
    """
    user: User | None = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.hashed_password):
        return None

    try:
        stale: bool = PASSWORD_HASHER.check_needs_rehash(user.hashed_password)
    except (InvalidHashError, ValueError):
        stale = True
    if stale:
        user.hashed_password = get_password_hash(password)
        await db.flush()
    return user


async def get_current_user(
    token: t.Annotated[str | None, Depends(OAUTH2_SCHEME)],
    db: t.Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Resolve the bearer token of the request to an active user.

    Args:
        token (str | None): The bearer token, if any.
        db (AsyncSession): The database session.

    Returns:
        User: The authenticated, active user.
    """
    if token is None:
        raise CREDENTIALS_ERROR
    token_data: TokenData | None = decode_access_token(token)
    if token_data is None:
        raise CREDENTIALS_ERROR

    user: User | None = await db.get(User, token_data.user_id)
    if user is None:
        raise CREDENTIALS_ERROR
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Inactive user"
        )
    return user


def require_role(
    *roles: UserRole,
) -> t.Callable[..., t.Coroutine[t.Any, t.Any, User]]:
    """Build a dependency admitting only users with one of the roles.

    Args:
        *roles (UserRole): The admitted roles.

    Returns:
        Callable: The FastAPI dependency.
    """
    allowed: t.FrozenSet[UserRole] = frozenset(roles)
    label: str = " or ".join(sorted(role.value for role in allowed))

    async def dependency(
        current_user: t.Annotated[User, Depends(get_current_user)],
    ) -> User:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires {label} role",
            )
        return current_user

    return dependency


get_current_provider = require_role(UserRole.PROVIDER, UserRole.ADMIN)
get_current_receiver = require_role(UserRole.RECEIVER, UserRole.ADMIN)
