from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from taskboard.db.base import Base


class TaskList(Base):
    """Список (колонка) на доске; position плотный в пределах доски"""

    __tablename__ = "lists"
    __table_args__ = (
        Index("ix_lists_board_position", "board_id", "position"),
    )

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    position = Column(Integer, nullable=False)
    board_id = Column(Integer, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    board = relationship("Board", back_populates="lists")

    tasks = relationship(
        "Task",
        back_populates="task_list",
        cascade="all, delete-orphan",
        order_by="Task.position",
    )
