from fastapi import APIRouter, Depends, status, Response
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.db.database import get_async_session
from taskboard.api.dependencies.auth import get_current_user
from taskboard.api.dependencies.permissions import check_board_permissions, get_board_mutation_service
from taskboard.models.user import User
from taskboard.schemas.board_members import (
    AddMemberRequest,
    ChangeMemberRoleRequest,
    MemberResponse,
    MemberList,
)
from taskboard.services.board_service import BoardService
from taskboard.services.board_mutation_service import BoardMutationService

router = APIRouter(
    prefix="/boards/{board_id}/members",
    tags=["board members"],
)


@router.get("", response_model=MemberList)
async def get_members(
    board_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
):
    """Get all members of a board with their roles"""
    await check_board_permissions(db=db, board_id=board_id, user_id=current_user.id)

    members = [
        MemberResponse(id=user.id, username=user.username, email=user.email, role=role, title=title)
        for user, role, title in await BoardService.get_members(db, board_id)
    ]
    return {"members": members, "total": len(members)}


@router.post("", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def add_member(
    board_id: int,
    request: AddMemberRequest,
    current_user: User = Depends(get_current_user),
    service: BoardMutationService = Depends(get_board_mutation_service),
):
    """Add a user to the board (owner only)"""
    return await service.add_member(board_id, current_user.id, request.user_id, request.role, request.title)


@router.put("/{user_id}", response_model=MemberResponse)
async def change_member_role(
    board_id: int,
    user_id: int,
    request: ChangeMemberRoleRequest,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    service: BoardMutationService = Depends(get_board_mutation_service),
):
    """Change a member's role (owner only); the owner's own role is fixed"""
    await service.change_member_role(board_id, current_user.id, user_id, request.role)
    user, role, title = await BoardService.get_member(db, board_id, user_id)
    return MemberResponse(id=user.id, username=user.username, email=user.email, role=role, title=title)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    board_id: int,
    user_id: int,
    current_user: User = Depends(get_current_user),
    service: BoardMutationService = Depends(get_board_mutation_service),
):
    """Remove a member from the board (admin and owner); the owner cannot be removed"""
    await service.remove_member(board_id, current_user.id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
