import pytest

from taskboard.core.exceptions import ForbiddenError
from taskboard.models.board import BoardUserRole
from taskboard.services.role_policy import (
    REQUIRED_ROLES,
    BoardAccess,
    BoardOperation,
    authorize,
    can_assign_role,
    can_manage_member,
    required_role_for,
)

MEMBER = BoardUserRole.MEMBER
ADMIN = BoardUserRole.ADMIN
OWNER = BoardUserRole.OWNER


class TestAuthorize:
    """Полная матрица ролей: роль участника x требуемая роль"""

    @pytest.mark.parametrize(
        "member_role, required_role, expected",
        [
            (MEMBER, MEMBER, True),
            (MEMBER, ADMIN, False),
            (MEMBER, OWNER, False),
            (ADMIN, MEMBER, True),
            (ADMIN, ADMIN, True),
            (ADMIN, OWNER, False),
            (OWNER, MEMBER, True),
            (OWNER, ADMIN, True),
            (OWNER, OWNER, True),
        ],
    )
    def test_rank_matrix(self, member_role, required_role, expected):
        assert authorize(member_role, required_role) is expected

    @pytest.mark.parametrize("required_role", [MEMBER, ADMIN, OWNER])
    def test_non_member_is_always_denied(self, required_role):
        assert authorize(None, required_role) is False

    def test_ranks_are_ordered(self):
        assert MEMBER.rank < ADMIN.rank < OWNER.rank


class TestRequiredRoles:
    def test_every_operation_has_a_required_role(self):
        assert set(REQUIRED_ROLES) == set(BoardOperation)

    @pytest.mark.parametrize(
        "operation, expected",
        [
            (BoardOperation.VIEW_BOARD, MEMBER),
            (BoardOperation.CREATE_TASK, MEMBER),
            (BoardOperation.MOVE_LIST, MEMBER),
            (BoardOperation.COMMENT, MEMBER),
            (BoardOperation.UPDATE_BOARD, ADMIN),
            (BoardOperation.REMOVE_MEMBER, ADMIN),
            (BoardOperation.ADD_MEMBER, OWNER),
            (BoardOperation.CHANGE_MEMBER_ROLE, OWNER),
            (BoardOperation.DELETE_BOARD, OWNER),
        ],
    )
    def test_required_role(self, operation, expected):
        assert required_role_for(operation) == expected


class TestOwnerGuards:
    def test_owner_role_cannot_be_assigned(self):
        assert can_assign_role(OWNER) is False
        assert can_assign_role(ADMIN) is True
        assert can_assign_role(MEMBER) is True

    def test_owner_cannot_be_managed(self):
        assert can_manage_member(OWNER) is False
        assert can_manage_member(ADMIN) is True
        assert can_manage_member(MEMBER) is True


class TestBoardAccess:
    def test_non_member_gets_forbidden(self):
        access = BoardAccess(board_id=1, user_id=5, role=None)

        assert access.is_member is False
        with pytest.raises(ForbiddenError) as exc_info:
            access.require(BoardOperation.VIEW_BOARD)
        assert exc_info.value.detail == "You don't have access to this board"

    def test_insufficient_rank_names_the_role(self):
        access = BoardAccess(board_id=1, user_id=5, role=MEMBER)

        with pytest.raises(ForbiddenError) as exc_info:
            access.require(BoardOperation.UPDATE_BOARD)
        assert "member" in exc_info.value.detail

    def test_require_returns_access(self):
        access = BoardAccess(board_id=1, user_id=5, role=ADMIN)

        assert access.require(BoardOperation.REMOVE_MEMBER) is access
        assert access.allows(BoardOperation.DELETE_BOARD) is False
