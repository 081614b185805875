from datetime import datetime
from typing import Optional, Dict, Any
from jose import jwt, JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from taskboard.models.user import User
from taskboard.core import get_settings

# Get application settings
settings = get_settings()


class SecurityService:
    """Verifies bearer tokens issued by the identity service"""

    @staticmethod
    async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
        """Get a user by ID"""
        query = select(User).where(User.id == user_id)
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    def decode_token(token: str) -> Dict[str, Any]:
        """Decode a JWT token, empty dict if it cannot be decoded"""
        try:
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM]
            )
            return payload
        except JWTError:
            return {}

    @staticmethod
    def verify_token(token: str, token_type: str = "access") -> Optional[Dict[str, Any]]:
        """Verify a JWT token and return its payload if valid"""
        try:
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM]
            )
        except JWTError:
            return None

        # Check token type
        if payload.get("type") != token_type:
            return None

        # jose проверяет exp сам, но токен без exp не принимаем
        exp = payload.get("exp")
        if exp is None or datetime.utcfromtimestamp(exp) < datetime.utcnow():
            return None

        return payload

    @staticmethod
    async def get_current_user(
        db: AsyncSession,
        token: str
    ) -> Optional[User]:
        """Get the current active user from a JWT token"""
        payload = SecurityService.verify_token(token)
        if not payload:
            return None

        user_id = payload.get("sub")
        if user_id is None:
            return None

        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            return None

        user = await SecurityService.get_user_by_id(db, user_id)
        if user is None or not user.is_active:
            return None
        return user
