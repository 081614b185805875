from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean

from taskboard.db.base import Base


class User(Base):
    """Пользователь. Записи создаёт внешний сервис идентификации, здесь только чтение"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
