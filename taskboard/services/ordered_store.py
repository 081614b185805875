import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, Hashable, Iterable, List, Optional, Set, Type

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.core.exceptions import (
    BoardNotFound,
    InvariantViolation,
    ListNotFound,
    NotFoundError,
    StaleSiblingSet,
    TaskNotFound,
)
from taskboard.logs import debug_logger
from taskboard.models.board import Board
from taskboard.models.task import Task
from taskboard.models.task_list import TaskList
from taskboard.services.position_allocator import (
    PositionPlan,
    Sibling,
    allocate_append,
    changed_positions,
    is_dense,
    plan_cross_container_move,
    plan_move,
    plan_removal_compaction,
)


@dataclass(frozen=True)
class SiblingScope:
    """Describes one kind of ordered sibling-set: which rows, under which parent"""

    name: str
    model: type
    parent_model: type
    parent_key: str
    not_found: Type[NotFoundError]
    parent_not_found: Type[NotFoundError]

    @property
    def parent_column(self):
        return getattr(self.model, self.parent_key)

    def lock_key(self, parent_id: int) -> Hashable:
        return (self.name, parent_id)


LIST_SCOPE = SiblingScope(
    name="lists",
    model=TaskList,
    parent_model=Board,
    parent_key="board_id",
    not_found=ListNotFound,
    parent_not_found=BoardNotFound,
)

TASK_SCOPE = SiblingScope(
    name="tasks",
    model=Task,
    parent_model=TaskList,
    parent_key="list_id",
    not_found=TaskNotFound,
    parent_not_found=ListNotFound,
)


class SiblingLockRegistry:
    """One asyncio lock per sibling-set key, alive only while somebody uses it.

    Row locks taken by :func:`lock_rows` serialize writers across processes on
    PostgreSQL; this registry serializes writers inside one process, which is
    all SQLite gets since it ignores ``FOR UPDATE``.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, keys: Iterable[Hashable]):
        # Сортировка ключей исключает взаимную блокировку
        ordered = sorted(set(keys))
        acquired = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    await lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._checkin(key)

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self):
        return len(self._locks)

    def _checkout(self, key: Hashable) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
            self._users[key] = 0
        self._users[key] += 1
        return self._locks[key]

    def _checkin(self, key: Hashable):
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]


async def lock_rows(db: AsyncSession, model: type, ids: Iterable[int]) -> Set[int]:
    """SELECT ... FOR UPDATE on the given primary keys, in id order.

    Returns the ids that exist.
    """
    id_list = sorted(set(ids))
    if not id_list:
        return set()
    query = (
        select(model.id)
        .where(model.id.in_(id_list))
        .order_by(model.id)
        .with_for_update()
    )
    result = await db.execute(query)
    return set(result.scalars().all())


class OrderedContainerStore:
    """Transactional writes for one sibling scope.

    Every method expects to run inside the caller's transaction and performs
    its whole read-modify-write under a row lock on the parent. Nothing is
    committed here.
    """

    def __init__(self, scope: SiblingScope):
        self.scope = scope

    async def get(self, db: AsyncSession, entity_id: int):
        query = (
            select(self.scope.model)
            .where(self.scope.model.id == entity_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(query)
        return result.scalars().first()

    async def parent_of(self, db: AsyncSession, entity_id: int) -> Optional[int]:
        query = select(self.scope.parent_column).where(self.scope.model.id == entity_id)
        result = await db.execute(query)
        return result.scalar()

    async def load_siblings(self, db: AsyncSession, parent_id: int) -> list:
        query = (
            select(self.scope.model)
            .where(self.scope.parent_column == parent_id)
            .order_by(self.scope.model.position, self.scope.model.id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def count_siblings(self, db: AsyncSession, parent_id: int) -> int:
        query = select(func.count(self.scope.model.id)).where(self.scope.parent_column == parent_id)
        result = await db.execute(query)
        return result.scalar() or 0

    async def lock_parents(self, db: AsyncSession, parent_ids: Iterable[int]) -> Set[int]:
        return await lock_rows(db, self.scope.parent_model, parent_ids)

    async def create(self, db: AsyncSession, parent_id: int, **fields):
        """Append a new entity to the end of ``parent_id``'s sibling-set"""
        found = await self.lock_parents(db, [parent_id])
        if parent_id not in found:
            raise self.scope.parent_not_found()

        sibling_count = await self.count_siblings(db, parent_id)
        fields[self.scope.parent_key] = parent_id
        entity = self.scope.model(position=allocate_append(sibling_count), **fields)

        db.add(entity)
        await db.flush()
        await self.verify_dense(db, [parent_id])

        debug_logger.debug(
            f"Создан {self.scope.name} {entity.id} в {parent_id} на позиции {entity.position}"
        )
        return entity

    async def move_within_parent(
        self,
        db: AsyncSession,
        entity_id: int,
        target_index: int,
        expected_parent_id: Optional[int] = None,
    ):
        entity = await self._lock_entity(db, entity_id, expected_parent_id)
        parent_id = getattr(entity, self.scope.parent_key)

        siblings = await self.load_siblings(db, parent_id)
        current = _as_siblings(siblings)
        plan = plan_move(current, entity_id, target_index)
        changes = changed_positions(current, plan)

        if not changes:
            debug_logger.debug(f"{self.scope.name} {entity_id} уже на позиции {target_index}, запись не нужна")
            return entity

        _apply(siblings, changes)
        await db.flush()
        await self.verify_dense(db, [parent_id])
        return entity

    async def move_across_parent(
        self,
        db: AsyncSession,
        entity_id: int,
        new_parent_id: int,
        target_index: int,
        expected_parent_id: Optional[int] = None,
    ):
        entity = await self.get(db, entity_id)
        if entity is None:
            raise self.scope.not_found()
        old_parent_id = getattr(entity, self.scope.parent_key)
        if old_parent_id == new_parent_id:
            return await self.move_within_parent(db, entity_id, target_index, expected_parent_id)
        if expected_parent_id is not None and old_parent_id != expected_parent_id:
            raise StaleSiblingSet(f"{self.scope.name} {entity_id} left parent {expected_parent_id}")

        found = await self.lock_parents(db, [old_parent_id, new_parent_id])
        if new_parent_id not in found:
            raise self.scope.parent_not_found()
        entity = await self._reload_under_lock(db, entity_id, old_parent_id)

        source = await self.load_siblings(db, old_parent_id)
        dest = await self.load_siblings(db, new_parent_id)
        source_plan, dest_plan = plan_cross_container_move(
            _as_siblings(source), _as_siblings(dest), entity_id, target_index
        )

        _apply(source, changed_positions(_as_siblings(source), source_plan))
        setattr(entity, self.scope.parent_key, new_parent_id)
        entity.position = dict(dest_plan)[entity_id]
        _apply(dest, changed_positions(_as_siblings(dest), dest_plan))

        await db.flush()
        await self.verify_dense(db, [old_parent_id, new_parent_id])
        return entity

    async def delete(
        self,
        db: AsyncSession,
        entity_id: int,
        expected_parent_id: Optional[int] = None,
    ) -> int:
        """Delete the entity (children cascade) and compact its siblings.

        Returns the parent id the entity was removed from.
        """
        entity = await self._lock_entity(db, entity_id, expected_parent_id)
        parent_id = getattr(entity, self.scope.parent_key)

        siblings = await self.load_siblings(db, parent_id)
        current = _as_siblings(siblings)

        await db.delete(entity)
        await db.flush()

        remaining = [sibling for sibling in siblings if sibling.id != entity_id]
        changes = changed_positions(current, plan_removal_compaction(current, entity_id))
        _apply(remaining, changes)

        await db.flush()
        await self.verify_dense(db, [parent_id])
        return parent_id

    async def verify_dense(self, db: AsyncSession, parent_ids: Iterable[int]):
        for parent_id in set(parent_ids):
            query = select(self.scope.model.position).where(self.scope.parent_column == parent_id)
            result = await db.execute(query)
            positions = list(result.scalars().all())
            if not is_dense(positions):
                raise InvariantViolation(
                    f"Positions of {self.scope.name} under {parent_id} are not dense: {sorted(positions)}"
                )

    async def _lock_entity(self, db: AsyncSession, entity_id: int, expected_parent_id: Optional[int]):
        parent_id = await self.parent_of(db, entity_id)
        if parent_id is None:
            raise self.scope.not_found()
        if expected_parent_id is not None and parent_id != expected_parent_id:
            raise StaleSiblingSet(f"{self.scope.name} {entity_id} left parent {expected_parent_id}")

        await self.lock_parents(db, [parent_id])
        return await self._reload_under_lock(db, entity_id, parent_id)

    async def _reload_under_lock(self, db: AsyncSession, entity_id: int, parent_id: int):
        # Под блокировкой перечитываем строку: её могли переместить или удалить
        entity = await self.get(db, entity_id)
        if entity is None:
            raise self.scope.not_found()
        if getattr(entity, self.scope.parent_key) != parent_id:
            raise StaleSiblingSet(f"{self.scope.name} {entity_id} moved while waiting for the lock")
        return entity


def _as_siblings(entities) -> List[Sibling]:
    return [(entity.id, entity.position) for entity in entities]


def _apply(entities, changes: PositionPlan):
    new_positions = dict(changes)
    for entity in entities:
        if entity.id in new_positions:
            entity.position = new_positions[entity.id]


list_store = OrderedContainerStore(LIST_SCOPE)
task_store = OrderedContainerStore(TASK_SCOPE)
