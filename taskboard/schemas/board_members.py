from typing import List, Optional
from pydantic import BaseModel

from taskboard.models.board import BoardUserRole


class AddMemberRequest(BaseModel):
    """Schema for adding a user to a board"""
    user_id: int
    role: BoardUserRole = BoardUserRole.MEMBER
    title: Optional[str] = None


class ChangeMemberRoleRequest(BaseModel):
    """Schema for changing a member's role on a board"""
    role: BoardUserRole


class MemberResponse(BaseModel):
    """A board member with their role"""
    id: int
    username: str
    email: str
    role: BoardUserRole
    title: Optional[str] = None


class MemberList(BaseModel):
    members: List[MemberResponse]
    total: int = 0
