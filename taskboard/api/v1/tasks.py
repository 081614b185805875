from fastapi import APIRouter, Depends, status, Response

from taskboard.api.dependencies.auth import get_current_user
from taskboard.api.dependencies.permissions import get_board_mutation_service
from taskboard.models.user import User
from taskboard.schemas.task import TaskCreate, TaskUpdate, TaskMove, TaskResponse
from taskboard.services.board_mutation_service import BoardMutationService

router = APIRouter(tags=["tasks"])


@router.post(
    "/lists/{list_id}/tasks",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_task(
    list_id: int,
    task_create: TaskCreate,
    current_user: User = Depends(get_current_user),
    service: BoardMutationService = Depends(get_board_mutation_service),
):
    """Create a task at the end of the list"""
    return await service.create_task(
        list_id,
        current_user.id,
        title=task_create.title,
        description=task_create.description,
        due_date=task_create.due_date,
        assignee_id=task_create.assignee_id,
    )


@router.put("/tasks/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: int,
    task_update: TaskUpdate,
    current_user: User = Depends(get_current_user),
    service: BoardMutationService = Depends(get_board_mutation_service),
):
    return await service.update_task(
        task_id,
        current_user.id,
        **task_update.model_dump(exclude_unset=True),
    )


@router.patch("/tasks/{task_id}/move", response_model=TaskResponse)
async def move_task(
    task_id: int,
    task_move: TaskMove,
    current_user: User = Depends(get_current_user),
    service: BoardMutationService = Depends(get_board_mutation_service),
):
    """Move a task within its list or into another list"""
    return await service.move_task(
        task_id,
        current_user.id,
        task_move.dest_list_id,
        task_move.target_index,
    )


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: int,
    current_user: User = Depends(get_current_user),
    service: BoardMutationService = Depends(get_board_mutation_service),
):
    await service.delete_task(task_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
