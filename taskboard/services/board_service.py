from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from taskboard.models.board import Board, BoardUserRole, board_members
from taskboard.models.task_list import TaskList
from taskboard.models.user import User
from taskboard.core.exceptions import BoardNotFound
from taskboard.services.role_policy import BoardAccess


class BoardService:
    """Read-side queries for boards, lists and membership"""

    @staticmethod
    async def get_boards_by_user(
        db: AsyncSession,
        user_id: int,
        skip: int = 0,
        limit: int = 100
    ) -> List[Board]:
        """Get all boards the user is a member of, newest first"""
        query = select(Board).join(
            board_members, board_members.c.board_id == Board.id
        ).where(
            board_members.c.user_id == user_id
        ).order_by(Board.created_at.desc(), Board.id.desc()).offset(skip).limit(limit)

        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def get_complete_board(
        db: AsyncSession,
        board_id: int
    ) -> Optional[Board]:
        """Get a board with its lists and their tasks, both in position order"""
        query = select(Board).where(Board.id == board_id).options(
            selectinload(Board.lists).selectinload(TaskList.tasks),
        )
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def get_user_role(
        db: AsyncSession,
        board_id: int,
        user_id: int
    ) -> Optional[BoardUserRole]:
        """Get a user's role on a board, None if the user is not a member"""
        query = select(board_members.c.role).where(
            board_members.c.user_id == user_id,
            board_members.c.board_id == board_id
        )
        result = await db.execute(query)
        row = result.first()
        return row.role if row else None

    @staticmethod
    async def get_access(
        db: AsyncSession,
        board_id: int,
        user_id: int
    ) -> BoardAccess:
        """Resolve the caller's role on a board; the board must exist"""
        query = select(Board.id).where(Board.id == board_id)
        result = await db.execute(query)
        if result.scalar() is None:
            raise BoardNotFound()

        role = await BoardService.get_user_role(db, board_id, user_id)
        return BoardAccess(board_id=board_id, user_id=user_id, role=role)

    @staticmethod
    async def get_members(
        db: AsyncSession,
        board_id: int
    ) -> List[Tuple[User, BoardUserRole, Optional[str]]]:
        query = select(User, board_members.c.role, board_members.c.title).join(
            board_members, board_members.c.user_id == User.id
        ).where(
            board_members.c.board_id == board_id
        ).order_by(board_members.c.created_at, User.id)

        result = await db.execute(query)
        return [(user, role, title) for user, role, title in result.all()]

    @staticmethod
    async def get_member(
        db: AsyncSession,
        board_id: int,
        user_id: int
    ) -> Optional[Tuple[User, BoardUserRole, Optional[str]]]:
        """Get one member with role and title, None if the user is not a member"""
        query = select(User, board_members.c.role, board_members.c.title).join(
            board_members, board_members.c.user_id == User.id
        ).where(
            board_members.c.board_id == board_id,
            board_members.c.user_id == user_id
        )
        result = await db.execute(query)
        row = result.first()
        return tuple(row) if row else None

    @staticmethod
    async def get_board_id_for_list(
        db: AsyncSession,
        list_id: int
    ) -> Optional[int]:
        query = select(TaskList.board_id).where(TaskList.id == list_id)
        result = await db.execute(query)
        return result.scalar()
