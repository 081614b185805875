from fastapi import APIRouter, Depends, status, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.db.database import get_async_session
from taskboard.api.dependencies.auth import get_current_user
from taskboard.api.dependencies.permissions import check_board_permissions, get_board_mutation_service
from taskboard.core.exceptions import BoardNotFound
from taskboard.models.user import User
from taskboard.schemas.board import (
    BoardCreate,
    BoardResponse,
    BoardUpdate,
    BoardList,
    BoardCompleteResponse,
)
from taskboard.services.board_service import BoardService
from taskboard.services.board_mutation_service import BoardMutationService

router = APIRouter(
    prefix="/boards",
    tags=["boards"],
)


@router.post("", response_model=BoardResponse, status_code=status.HTTP_201_CREATED)
async def create_board(
    board_create: BoardCreate,
    current_user: User = Depends(get_current_user),
    service: BoardMutationService = Depends(get_board_mutation_service),
):
    """Create a new board, the current user becomes its owner"""
    return await service.create_board(
        caller_id=current_user.id,
        title=board_create.title,
        description=board_create.description,
    )


@router.get("", response_model=BoardList)
async def get_boards(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
):
    """Get all boards the current user is a member of"""
    boards = await BoardService.get_boards_by_user(
        db=db,
        user_id=current_user.id,
        skip=skip,
        limit=limit,
    )
    return {
        "boards": boards,
        "total": len(boards)
    }


@router.get("/{board_id}", response_model=BoardCompleteResponse)
async def get_board(
    board_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
):
    """Get a board with its lists and tasks in display order"""
    await check_board_permissions(db=db, board_id=board_id, user_id=current_user.id)

    board = await BoardService.get_complete_board(db=db, board_id=board_id)
    if not board:
        raise BoardNotFound()
    return board


@router.put("/{board_id}", response_model=BoardResponse)
async def update_board(
    board_id: int,
    board_update: BoardUpdate,
    current_user: User = Depends(get_current_user),
    service: BoardMutationService = Depends(get_board_mutation_service),
):
    """Update a board (admin and owner only)"""
    return await service.update_board(
        board_id,
        current_user.id,
        **board_update.model_dump(exclude_unset=True),
    )


@router.delete("/{board_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_board(
    board_id: int,
    current_user: User = Depends(get_current_user),
    service: BoardMutationService = Depends(get_board_mutation_service),
):
    """Delete a board with all its lists and tasks (owner only)"""
    await service.delete_board(board_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
