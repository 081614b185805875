from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Table, Enum
from sqlalchemy.orm import relationship
import enum

from taskboard.db.base import Base


class BoardUserRole(enum.Enum):
    """Роли участников доски, упорядоченные по привилегиям"""
    MEMBER = "member"
    ADMIN = "admin"
    OWNER = "owner"

    @property
    def rank(self) -> int:
        return _ROLE_RANKS[self]


_ROLE_RANKS = {
    BoardUserRole.MEMBER: 1,
    BoardUserRole.ADMIN: 2,
    BoardUserRole.OWNER: 3,
}


# Участники доски: не больше одной строки на пару (board, user)
board_members = Table(
    "board_members",
    Base.metadata,
    Column("board_id", Integer, ForeignKey("boards.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role", Enum(BoardUserRole), nullable=False, default=BoardUserRole.MEMBER),
    # подпись участника на доске, например "Designer"
    Column("title", String, nullable=True),
    Column("created_at", DateTime, default=datetime.utcnow),
)


class Board(Base):
    """Доска с упорядоченными списками задач"""

    __tablename__ = "boards"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User", foreign_keys=[owner_id])

    # Все участники доски, включая владельца
    users = relationship("User", secondary=board_members, backref="boards")

    lists = relationship(
        "TaskList",
        back_populates="board",
        cascade="all, delete-orphan",
        order_by="TaskList.position",
    )
