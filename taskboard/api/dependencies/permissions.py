from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.services.board_service import BoardService
from taskboard.services.board_mutation_service import BoardMutationService, board_mutation_service
from taskboard.services.role_policy import BoardAccess, BoardOperation


async def check_board_permissions(
    db: AsyncSession,
    board_id: int,
    user_id: int,
    operation: BoardOperation = BoardOperation.VIEW_BOARD,
) -> BoardAccess:
    """
    Check that a user may perform an operation on a board

    Returns:
        BoardAccess with the user's role

    Raises:
        BoardNotFound if the board does not exist, ForbiddenError otherwise
    """
    access = await BoardService.get_access(db, board_id, user_id)
    return access.require(operation)


def get_board_mutation_service() -> BoardMutationService:
    """Dependency for write endpoints; overridden in tests"""
    return board_mutation_service
