from fastapi import status


class TaskboardError(Exception):
    """Base class for every typed failure raised by the board services"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail: str = "Internal server error"

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFoundError(TaskboardError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class BoardNotFound(NotFoundError):
    default_detail = "Board not found"


class ListNotFound(NotFoundError):
    default_detail = "List not found"


class TaskNotFound(NotFoundError):
    default_detail = "Task not found"


class UserNotFound(NotFoundError):
    default_detail = "User not found"


class MemberNotFound(NotFoundError):
    default_detail = "User is not a member of this board"


class InvalidFieldsError(TaskboardError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid fields"


class ForbiddenError(TaskboardError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Operation not allowed"


class ConflictError(TaskboardError):
    """The request collided with a concurrent change; the caller may retry it"""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "The board was changed concurrently, please retry"


class InvariantViolation(TaskboardError):
    """Positions of a sibling-set are not dense after a write. Always a bug."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Ordering invariant violated"


class StaleSiblingSet(Exception):
    """An entity changed its parent between the optimistic read and the lock.

    Internal only: the mutation service re-runs the unit of work.
    """
