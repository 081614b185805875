"""Role policy for board scoped operations.

Everything here is pure: no database access, no logging. The mutation service
resolves the caller's role once per unit of work into a :class:`BoardAccess`
and asks it about every operation it is about to perform.
"""
from dataclasses import dataclass
import enum
from typing import Optional

from taskboard.core.exceptions import ForbiddenError
from taskboard.models.board import BoardUserRole


class BoardOperation(str, enum.Enum):
    VIEW_BOARD = "view_board"
    UPDATE_BOARD = "update_board"
    DELETE_BOARD = "delete_board"
    CREATE_LIST = "create_list"
    UPDATE_LIST = "update_list"
    MOVE_LIST = "move_list"
    DELETE_LIST = "delete_list"
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    MOVE_TASK = "move_task"
    DELETE_TASK = "delete_task"
    COMMENT = "comment"
    CHAT_POST = "chat_post"
    ADD_MEMBER = "add_member"
    REMOVE_MEMBER = "remove_member"
    CHANGE_MEMBER_ROLE = "change_member_role"


REQUIRED_ROLES = {
    BoardOperation.VIEW_BOARD: BoardUserRole.MEMBER,
    BoardOperation.CREATE_LIST: BoardUserRole.MEMBER,
    BoardOperation.UPDATE_LIST: BoardUserRole.MEMBER,
    BoardOperation.MOVE_LIST: BoardUserRole.MEMBER,
    BoardOperation.DELETE_LIST: BoardUserRole.MEMBER,
    BoardOperation.CREATE_TASK: BoardUserRole.MEMBER,
    BoardOperation.UPDATE_TASK: BoardUserRole.MEMBER,
    BoardOperation.MOVE_TASK: BoardUserRole.MEMBER,
    BoardOperation.DELETE_TASK: BoardUserRole.MEMBER,
    BoardOperation.COMMENT: BoardUserRole.MEMBER,
    BoardOperation.CHAT_POST: BoardUserRole.MEMBER,
    BoardOperation.UPDATE_BOARD: BoardUserRole.ADMIN,
    BoardOperation.REMOVE_MEMBER: BoardUserRole.ADMIN,
    BoardOperation.ADD_MEMBER: BoardUserRole.OWNER,
    BoardOperation.CHANGE_MEMBER_ROLE: BoardUserRole.OWNER,
    BoardOperation.DELETE_BOARD: BoardUserRole.OWNER,
}


def authorize(member_role: Optional[BoardUserRole], required_role: BoardUserRole) -> bool:
    """Allow iff the caller is a member whose rank reaches the required rank"""
    if member_role is None:
        return False
    return member_role.rank >= required_role.rank


def required_role_for(operation: BoardOperation) -> BoardUserRole:
    return REQUIRED_ROLES[operation]


def can_assign_role(role: BoardUserRole) -> bool:
    """The owner role is fixed at board creation and is never handed out"""
    return role != BoardUserRole.OWNER


def can_manage_member(target_role: Optional[BoardUserRole]) -> bool:
    """Whether a member may be removed or re-roled, whoever is asking"""
    return target_role != BoardUserRole.OWNER


@dataclass(frozen=True)
class BoardAccess:
    """The caller's role on one board, resolved once per request"""

    board_id: int
    user_id: int
    role: Optional[BoardUserRole]

    @property
    def is_member(self) -> bool:
        return self.role is not None

    def allows(self, operation: BoardOperation) -> bool:
        return authorize(self.role, required_role_for(operation))

    def require(self, operation: BoardOperation) -> "BoardAccess":
        if not self.is_member:
            raise ForbiddenError("You don't have access to this board")
        if not self.allows(operation):
            raise ForbiddenError(
                f"Operation '{operation.value}' not allowed with your role: {self.role.value}"
            )
        return self
