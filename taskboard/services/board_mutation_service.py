"""Board mutations: authorize, change positions, commit, broadcast.

Every public operation is one unit of work. It takes the in-process sibling
locks for the sets it will touch, opens a transaction, resolves the caller's
role once, performs the change through the ordered store and commits. The
broadcast happens only after the commit and never affects the result.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, Iterable, List, Optional, Tuple

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.core import get_settings
from taskboard.core.exceptions import (
    BoardNotFound,
    ConflictError,
    ForbiddenError,
    InvalidFieldsError,
    InvariantViolation,
    ListNotFound,
    MemberNotFound,
    StaleSiblingSet,
    TaskNotFound,
    UserNotFound,
)
from taskboard.db.database import async_session_factory
from taskboard.logs import api_logger, debug_logger, log_function
from taskboard.models.board import Board, BoardUserRole, board_members
from taskboard.models.task import Task
from taskboard.models.task_list import TaskList
from taskboard.models.user import User
from taskboard.schemas.board import BoardResponse
from taskboard.schemas.board_members import MemberResponse
from taskboard.schemas.task import TaskResponse
from taskboard.schemas.task_list import TaskListInDB
from taskboard.services import websocket_service
from taskboard.services.board_service import BoardService
from taskboard.services.ordered_store import (
    LIST_SCOPE,
    TASK_SCOPE,
    SiblingLockRegistry,
    list_store,
    task_store,
)
from taskboard.services.role_policy import (
    BoardAccess,
    BoardOperation,
    can_assign_role,
    can_manage_member,
)

# PostgreSQL serialization failure and deadlock
RETRYABLE_SQLSTATES = {"40001", "40P01"}

BOARD_FIELDS = {"title", "description"}
LIST_FIELDS = {"title"}
TASK_FIELDS = {"title", "description", "due_date", "assignee_id"}


def is_retryable(error: Exception) -> bool:
    if isinstance(error, StaleSiblingSet):
        return True
    if isinstance(error, IntegrityError):
        return False
    if isinstance(error, OperationalError):
        return True
    if isinstance(error, DBAPIError):
        orig = error.orig
        code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        return code in RETRYABLE_SQLSTATES
    return False


def _members_key(board_id: int) -> Hashable:
    return ("members", board_id)


def _dump(schema, entity) -> Dict[str, Any]:
    return schema.model_validate(entity).model_dump(mode="json")


def _pick(fields: Dict[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    unknown = set(fields) - set(allowed)
    if unknown:
        raise InvalidFieldsError(f"Unknown fields: {', '.join(sorted(unknown))}")
    # Заголовок обязателен, None означает "не менять"
    return {key: value for key, value in fields.items() if not (key == "title" and value is None)}


class BoardMutationService:
    def __init__(
        self,
        session_factory=None,
        locks: Optional[SiblingLockRegistry] = None,
        notifier=None,
        retry_attempts: Optional[int] = None,
        retry_backoff: Optional[float] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory or async_session_factory
        self.locks = locks or SiblingLockRegistry()
        self.notifier = notifier or websocket_service
        self.retry_attempts = max(1, retry_attempts or settings.MUTATION_RETRY_ATTEMPTS)
        self.retry_backoff = (
            settings.MUTATION_RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff
        )
        self.lists = list_store
        self.tasks = task_store

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    async def _unit_of_work(
        self,
        name: str,
        work: Callable[[AsyncSession, Any], Awaitable[Any]],
        lock_keys: Callable[[Any], Iterable[Hashable]] = lambda peeked: (),
        peek: Optional[Callable[[AsyncSession], Awaitable[Any]]] = None,
    ):
        """Run ``work`` in its own transaction, retrying transient conflicts.

        ``peek`` runs in a short separate session before any lock is taken and
        tells which sibling-sets will be touched. ``work`` must re-check it
        under the lock and raise :class:`StaleSiblingSet` if it went stale.
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self.retry_attempts + 1):
            try:
                peeked = None
                if peek is not None:
                    async with self.session_factory() as db:
                        peeked = await peek(db)

                async with self.locks.hold(lock_keys(peeked)):
                    async with self.session_factory() as db:
                        async with db.begin():
                            return await work(db, peeked)
            except InvariantViolation as e:
                debug_logger.critical(f"Нарушен инвариант позиций в {name}: {e.detail}")
                api_logger.error(f"Invariant violation in {name}: {e.detail}")
                raise
            except (StaleSiblingSet, DBAPIError) as e:
                if not is_retryable(e):
                    raise
                last_error = e

            debug_logger.warning(
                f"{name}: конфликт на попытке {attempt}/{self.retry_attempts}: {last_error}"
            )
            if attempt < self.retry_attempts:
                await asyncio.sleep(self.retry_backoff * attempt)

        api_logger.warning(f"{name}: retry budget exhausted after {self.retry_attempts} attempts")
        raise ConflictError() from last_error

    async def _publish(self, event: str, *args):
        """Hand an event to the broadcast channel; failures are only logged"""
        try:
            await getattr(self.notifier, event)(*args)
        except Exception:
            debug_logger.log_exception(f"Не удалось отправить событие {event}")

    async def _access(self, db: AsyncSession, board_id: int, caller_id: int) -> BoardAccess:
        return await BoardService.get_access(db, board_id, caller_id)

    async def _lock_board(self, db: AsyncSession, board_id: int) -> Board:
        query = (
            select(Board)
            .where(Board.id == board_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(query)
        board = result.scalars().first()
        if board is None:
            raise BoardNotFound()
        return board

    async def _board_of_list(self, db: AsyncSession, list_id: int) -> int:
        board_id = await BoardService.get_board_id_for_list(db, list_id)
        if board_id is None:
            raise ListNotFound()
        return board_id

    async def _require_assignee(self, db: AsyncSession, board_id: int, assignee_id: Optional[int]):
        if assignee_id is None:
            return
        if await BoardService.get_user_role(db, board_id, assignee_id) is None:
            raise MemberNotFound("Assignee is not a member of this board")

    async def _peek_list_parent(self, db: AsyncSession, list_id: int) -> int:
        board_id = await self.lists.parent_of(db, list_id)
        if board_id is None:
            raise ListNotFound()
        return board_id

    async def _peek_task_parent(self, db: AsyncSession, task_id: int) -> int:
        list_id = await self.tasks.parent_of(db, task_id)
        if list_id is None:
            raise TaskNotFound()
        return list_id

    # ------------------------------------------------------------------
    # Boards
    # ------------------------------------------------------------------

    @log_function()
    async def create_board(self, caller_id: int, title: str, description: Optional[str] = None) -> Board:
        """Create a board; the caller becomes its owner and first member"""

        async def work(db: AsyncSession, _):
            board = Board(title=title, description=description, owner_id=caller_id)
            db.add(board)
            await db.flush()
            await db.execute(
                insert(board_members).values(
                    board_id=board.id,
                    user_id=caller_id,
                    role=BoardUserRole.OWNER,
                )
            )
            return board

        return await self._unit_of_work("create_board", work)

    @log_function()
    async def update_board(self, board_id: int, caller_id: int, **fields) -> Board:
        changes = _pick(fields, BOARD_FIELDS)

        async def work(db: AsyncSession, _):
            board = await self._lock_board(db, board_id)
            access = await self._access(db, board_id, caller_id)
            access.require(BoardOperation.UPDATE_BOARD)

            for key, value in changes.items():
                setattr(board, key, value)
            await db.flush()
            return board

        board = await self._unit_of_work("update_board", work, lambda _: [_members_key(board_id)])
        await self._publish("notify_board_updated", board_id, _dump(BoardResponse, board))
        return board

    @log_function()
    async def delete_board(self, board_id: int, caller_id: int) -> None:
        """Delete a board with all of its lists, tasks and memberships"""

        async def work(db: AsyncSession, _):
            board = await self._lock_board(db, board_id)
            access = await self._access(db, board_id, caller_id)
            access.require(BoardOperation.DELETE_BOARD)

            await db.delete(board)
            await db.flush()

        keys = lambda _: [LIST_SCOPE.lock_key(board_id), _members_key(board_id)]
        await self._unit_of_work("delete_board", work, keys)
        await self._publish("notify_board_deleted", board_id)

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    @log_function()
    async def create_list(self, board_id: int, caller_id: int, title: str) -> TaskList:
        """Append a new list to the end of the board"""

        async def work(db: AsyncSession, _):
            access = await self._access(db, board_id, caller_id)
            access.require(BoardOperation.CREATE_LIST)
            # Пустая коллекция, чтобы ответ не требовал ленивой загрузки
            return await self.lists.create(db, board_id, title=title, tasks=[])

        task_list = await self._unit_of_work(
            "create_list", work, lambda _: [LIST_SCOPE.lock_key(board_id)]
        )
        await self._publish("notify_list_created", board_id, _dump(TaskListInDB, task_list))
        return task_list

    @log_function()
    async def update_list(self, list_id: int, caller_id: int, **fields) -> TaskList:
        changes = _pick(fields, LIST_FIELDS)

        async def work(db: AsyncSession, _):
            board_id = await self._board_of_list(db, list_id)
            access = await self._access(db, board_id, caller_id)
            access.require(BoardOperation.UPDATE_LIST)

            task_list = await self.lists.get(db, list_id)
            if task_list is None:
                raise ListNotFound()
            for key, value in changes.items():
                setattr(task_list, key, value)
            await db.flush()
            return task_list

        task_list = await self._unit_of_work("update_list", work)
        await self._publish("notify_list_updated", task_list.board_id, _dump(TaskListInDB, task_list))
        return task_list

    @log_function()
    async def move_list(
        self,
        list_id: int,
        caller_id: int,
        board_id: int,
        target_index: int,
    ) -> Tuple[TaskList, List[Dict[str, int]]]:
        """Move a list to ``target_index`` on its own board.

        Returns the moved list and the new order of every list on the board.
        """

        async def work(db: AsyncSession, _):
            access = await self._access(db, board_id, caller_id)
            access.require(BoardOperation.MOVE_LIST)

            if await self.lists.parent_of(db, list_id) != board_id:
                raise ListNotFound()

            task_list = await self.lists.move_within_parent(
                db, list_id, target_index, expected_parent_id=board_id
            )
            siblings = await self.lists.load_siblings(db, board_id)
            ordering = [{"id": sibling.id, "position": sibling.position} for sibling in siblings]
            return task_list, ordering

        task_list, ordering = await self._unit_of_work(
            "move_list", work, lambda _: [LIST_SCOPE.lock_key(board_id)]
        )
        await self._publish("notify_lists_reordered", board_id, ordering)
        return task_list, ordering

    @log_function()
    async def delete_list(self, list_id: int, caller_id: int) -> None:
        """Delete a list with its tasks and close the gap on the board"""

        async def peek(db: AsyncSession):
            return await self._peek_list_parent(db, list_id)

        async def work(db: AsyncSession, board_id: int):
            access = await self._access(db, board_id, caller_id)
            access.require(BoardOperation.DELETE_LIST)
            await self.lists.delete(db, list_id, expected_parent_id=board_id)
            return board_id

        keys = lambda board_id: [LIST_SCOPE.lock_key(board_id), TASK_SCOPE.lock_key(list_id)]
        board_id = await self._unit_of_work("delete_list", work, keys, peek)
        await self._publish("notify_list_deleted", board_id, list_id)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @log_function()
    async def create_task(
        self,
        list_id: int,
        caller_id: int,
        title: str,
        description: Optional[str] = None,
        due_date=None,
        assignee_id: Optional[int] = None,
    ) -> Task:
        """Append a new task to the end of the list"""

        async def work(db: AsyncSession, _):
            board_id = await self._board_of_list(db, list_id)
            access = await self._access(db, board_id, caller_id)
            access.require(BoardOperation.CREATE_TASK)
            await self._require_assignee(db, board_id, assignee_id)

            task = await self.tasks.create(
                db,
                list_id,
                title=title,
                description=description,
                due_date=due_date,
                assignee_id=assignee_id,
                creator_id=caller_id,
            )
            return board_id, task

        board_id, task = await self._unit_of_work(
            "create_task", work, lambda _: [TASK_SCOPE.lock_key(list_id)]
        )
        await self._publish("notify_task_created", board_id, _dump(TaskResponse, task))
        return task

    @log_function()
    async def update_task(self, task_id: int, caller_id: int, **fields) -> Task:
        """Update task content. Position and list change only through ``move_task``"""
        changes = _pick(fields, TASK_FIELDS)

        async def work(db: AsyncSession, _):
            task = await self.tasks.get(db, task_id)
            if task is None:
                raise TaskNotFound()
            board_id = await self._board_of_list(db, task.list_id)
            access = await self._access(db, board_id, caller_id)
            access.require(BoardOperation.UPDATE_TASK)
            if "assignee_id" in changes:
                await self._require_assignee(db, board_id, changes["assignee_id"])

            for key, value in changes.items():
                setattr(task, key, value)
            await db.flush()
            return board_id, task

        board_id, task = await self._unit_of_work("update_task", work)
        await self._publish("notify_task_updated", board_id, _dump(TaskResponse, task))
        return task

    @log_function()
    async def move_task(
        self,
        task_id: int,
        caller_id: int,
        dest_list_id: int,
        target_index: int,
    ) -> Task:
        """Move a task inside its list or into another list, possibly on another board"""

        async def peek(db: AsyncSession):
            return await self._peek_task_parent(db, task_id)

        async def work(db: AsyncSession, source_list_id: int):
            source_board_id = await self._board_of_list(db, source_list_id)
            dest_board_id = await self._board_of_list(db, dest_list_id)

            source_access = await self._access(db, source_board_id, caller_id)
            source_access.require(BoardOperation.MOVE_TASK)
            if dest_board_id != source_board_id:
                dest_access = await self._access(db, dest_board_id, caller_id)
                dest_access.require(BoardOperation.MOVE_TASK)

            if dest_list_id == source_list_id:
                task = await self.tasks.move_within_parent(
                    db, task_id, target_index, expected_parent_id=source_list_id
                )
            else:
                task = await self.tasks.move_across_parent(
                    db, task_id, dest_list_id, target_index, expected_parent_id=source_list_id
                )
            return task, source_list_id, source_board_id, dest_board_id

        keys = lambda source_list_id: [
            TASK_SCOPE.lock_key(source_list_id),
            TASK_SCOPE.lock_key(dest_list_id),
        ]
        task, source_list_id, source_board_id, dest_board_id = await self._unit_of_work(
            "move_task", work, keys, peek
        )

        task_data = _dump(TaskResponse, task)
        await self._publish("notify_task_moved", dest_board_id, task_data, source_list_id, dest_list_id)
        if source_board_id != dest_board_id:
            await self._publish("notify_task_moved", source_board_id, task_data, source_list_id, dest_list_id)
        return task

    @log_function()
    async def delete_task(self, task_id: int, caller_id: int) -> None:

        async def peek(db: AsyncSession):
            return await self._peek_task_parent(db, task_id)

        async def work(db: AsyncSession, list_id: int):
            board_id = await self._board_of_list(db, list_id)
            access = await self._access(db, board_id, caller_id)
            access.require(BoardOperation.DELETE_TASK)
            await self.tasks.delete(db, task_id, expected_parent_id=list_id)
            return board_id, list_id

        keys = lambda list_id: [TASK_SCOPE.lock_key(list_id)]
        board_id, list_id = await self._unit_of_work("delete_task", work, keys, peek)
        await self._publish("notify_task_deleted", board_id, task_id, list_id)

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    @log_function()
    async def add_member(
        self,
        board_id: int,
        caller_id: int,
        target_user_id: int,
        role: BoardUserRole = BoardUserRole.MEMBER,
        title: Optional[str] = None,
    ) -> MemberResponse:

        async def work(db: AsyncSession, _):
            await self._lock_board(db, board_id)
            access = await self._access(db, board_id, caller_id)
            access.require(BoardOperation.ADD_MEMBER)
            if not can_assign_role(role):
                raise ForbiddenError("Owner role cannot be assigned")

            result = await db.execute(select(User).where(User.id == target_user_id))
            user = result.scalars().first()
            if user is None:
                raise UserNotFound()
            if await BoardService.get_user_role(db, board_id, target_user_id) is not None:
                raise ConflictError("User is already a member of this board")

            try:
                await db.execute(
                    insert(board_members).values(board_id=board_id, user_id=target_user_id, role=role, title=title)
                )
            except IntegrityError as e:
                raise ConflictError("User is already a member of this board") from e
            return user

        user = await self._unit_of_work("add_member", work, lambda _: [_members_key(board_id)])
        member = MemberResponse(id=user.id, username=user.username, email=user.email, role=role, title=title)
        await self._publish("notify_user_added", board_id, member.model_dump(mode="json"))
        return member

    @log_function()
    async def remove_member(self, board_id: int, caller_id: int, target_user_id: int) -> None:

        async def work(db: AsyncSession, _):
            await self._lock_board(db, board_id)
            access = await self._access(db, board_id, caller_id)
            access.require(BoardOperation.REMOVE_MEMBER)

            target_role = await BoardService.get_user_role(db, board_id, target_user_id)
            if target_role is None:
                raise MemberNotFound()
            if not can_manage_member(target_role):
                raise ForbiddenError("Board owner cannot be removed")

            await db.execute(
                delete(board_members).where(
                    board_members.c.board_id == board_id,
                    board_members.c.user_id == target_user_id,
                )
            )

        await self._unit_of_work("remove_member", work, lambda _: [_members_key(board_id)])
        await self._publish("notify_user_removed", board_id, target_user_id)

    @log_function()
    async def change_member_role(
        self,
        board_id: int,
        caller_id: int,
        target_user_id: int,
        new_role: BoardUserRole,
    ) -> BoardUserRole:

        async def work(db: AsyncSession, _):
            await self._lock_board(db, board_id)
            access = await self._access(db, board_id, caller_id)
            access.require(BoardOperation.CHANGE_MEMBER_ROLE)

            target_role = await BoardService.get_user_role(db, board_id, target_user_id)
            if target_role is None:
                raise MemberNotFound()
            if not can_manage_member(target_role):
                raise ForbiddenError("Board owner's role cannot be changed")
            if not can_assign_role(new_role):
                raise ForbiddenError("Owner role cannot be assigned")

            await db.execute(
                update(board_members).where(
                    board_members.c.board_id == board_id,
                    board_members.c.user_id == target_user_id,
                ).values(role=new_role)
            )

        await self._unit_of_work("change_member_role", work, lambda _: [_members_key(board_id)])
        await self._publish("notify_user_role_changed", board_id, target_user_id, new_role.value)
        return new_role


board_mutation_service = BoardMutationService()
