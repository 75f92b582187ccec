"""Authentication endpoints."""

import typing as t

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user
from app.core.database import get_db
from app.core.models import User
from app.schemas.auth import Token, UserCreate, UserResponse
from app.services import (
    AuthService,
    EmailExistsError,
    InvalidCredentialsError,
    RegistrationDisabledError,
)

ROUTER = APIRouter(prefix="/auth", tags=["Authentication"])


@ROUTER.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_user(
    user_data: UserCreate,
    db: t.Annotated[AsyncSession, Depends(get_db)],
) -> UserResponse:
    """Sign up as a food provider or receiver.

    Args:
        user_data (UserCreate): Name, email, password and role.
        db (AsyncSession): The database session.

    Returns:
        UserResponse: The new account.
    """
    try:
        return await AuthService(db).register_user(user_data)
    except RegistrationDisabledError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)
        ) from exc
    except EmailExistsError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc


@ROUTER.post("/token", response_model=Token)
async def login_for_access_token(
    form_data: t.Annotated[OAuth2PasswordRequestForm, Depends()],
    db: t.Annotated[AsyncSession, Depends(get_db)],
) -> Token:
    """OAuth2 password flow; the ``username`` field carries the email.

    Args:
        form_data (OAuth2PasswordRequestForm): The login form.
        db (AsyncSession): The database session.

    Returns:
        Token: The bearer token.
    """
    try:
        return await AuthService(db).login(
            form_data.username, form_data.password
        )
    except InvalidCredentialsError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


@ROUTER.get("/me", response_model=UserResponse)
async def read_current_user(
    current_user: t.Annotated[User, Depends(get_current_user)],
) -> UserResponse:
    """Profile of the authenticated user."""
    return UserResponse.model_validate(current_user)
