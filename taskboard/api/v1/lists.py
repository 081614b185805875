from fastapi import APIRouter, Depends, status, Response

from taskboard.api.dependencies.auth import get_current_user
from taskboard.api.dependencies.permissions import get_board_mutation_service
from taskboard.models.user import User
from taskboard.schemas.task_list import (
    TaskListCreate,
    TaskListUpdate,
    TaskListMove,
    TaskListInDB,
    TaskListResponse,
)
from taskboard.services.board_mutation_service import BoardMutationService

router = APIRouter(tags=["lists"])


@router.post(
    "/boards/{board_id}/lists",
    response_model=TaskListResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_list(
    board_id: int,
    list_create: TaskListCreate,
    current_user: User = Depends(get_current_user),
    service: BoardMutationService = Depends(get_board_mutation_service),
):
    """Create a list at the end of the board"""
    return await service.create_list(board_id, current_user.id, list_create.title)


@router.put("/lists/{list_id}", response_model=TaskListInDB)
async def update_list(
    list_id: int,
    list_update: TaskListUpdate,
    current_user: User = Depends(get_current_user),
    service: BoardMutationService = Depends(get_board_mutation_service),
):
    return await service.update_list(
        list_id,
        current_user.id,
        **list_update.model_dump(exclude_unset=True),
    )


@router.put("/lists/{list_id}/move", response_model=TaskListInDB)
async def move_list(
    list_id: int,
    list_move: TaskListMove,
    current_user: User = Depends(get_current_user),
    service: BoardMutationService = Depends(get_board_mutation_service),
):
    """Move a list to a new index on its board; other lists shift to stay dense"""
    task_list, _ = await service.move_list(
        list_id,
        current_user.id,
        list_move.board_id,
        list_move.target_index,
    )
    return task_list


@router.delete("/lists/{list_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_list(
    list_id: int,
    current_user: User = Depends(get_current_user),
    service: BoardMutationService = Depends(get_board_mutation_service),
):
    """Delete a list with all its tasks"""
    await service.delete_list(list_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
