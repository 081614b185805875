from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.db.database import get_async_session
from taskboard.services.security_service import SecurityService
from taskboard.models.user import User

# Токены выдаёт внешний сервис идентификации
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=True)


def _credentials_error(detail: str = "Invalid authentication credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_async_session)
) -> User:
    """
    Get the current authenticated user from the JWT token

    Returns:
        User: The authenticated active user

    Raises:
        HTTPException: If the token is invalid or the user is unknown or inactive
    """
    user = await SecurityService.get_current_user(db, token)
    if not user:
        raise _credentials_error()
    return user


async def get_current_user_from_token(
    token: str,
    db: AsyncSession
) -> User:
    """
    Get the current user from a token for WebSocket authentication

    Raises:
        HTTPException: If the token is missing or invalid
    """
    if not token:
        raise _credentials_error("Authentication token required")

    user = await SecurityService.get_current_user(db, token)
    if not user:
        raise _credentials_error()
    return user
