import asyncio

import pytest
import pytest_asyncio
from sqlalchemy import event

from taskboard.core.exceptions import ListNotFound, StaleSiblingSet, TaskNotFound
from taskboard.models.board import Board
from taskboard.models.user import User
from taskboard.services.ordered_store import SiblingLockRegistry, list_store, task_store
from taskboard.services.position_allocator import is_dense


async def positions(session_factory, store, parent_id):
    async with session_factory() as db:
        return [(entity.id, entity.position) for entity in await store.load_siblings(db, parent_id)]


@pytest_asyncio.fixture
async def board(session_factory):
    async with session_factory() as db:
        async with db.begin():
            user = User(email="store@example.com", username="store", hashed_password="x")
            db.add(user)
            await db.flush()
            board = Board(title="Store board", owner_id=user.id)
            db.add(board)
            await db.flush()
    return board.id


@pytest_asyncio.fixture
async def list_with_tasks(session_factory, board):
    """Список с тремя задачами, возвращает (list_id, [task_id, ...])"""
    async with session_factory() as db:
        async with db.begin():
            task_list = await list_store.create(db, board, title="Todo")
            tasks = [await task_store.create(db, task_list.id, title=f"T{i}") for i in range(3)]
    return task_list.id, [task.id for task in tasks]


@pytest.fixture
def update_counter(engine):
    """Считает UPDATE-запросы к базе"""
    statements = []

    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("UPDATE"):
            statements.append(statement)

    event.listen(engine.sync_engine, "before_cursor_execute", before_cursor_execute)
    yield statements
    event.remove(engine.sync_engine, "before_cursor_execute", before_cursor_execute)


class TestCreate:
    @pytest.mark.asyncio
    async def test_appends_at_the_end(self, session_factory, list_with_tasks):
        list_id, task_ids = list_with_tasks

        assert await positions(session_factory, task_store, list_id) == [
            (task_ids[0], 0), (task_ids[1], 1), (task_ids[2], 2)
        ]

    @pytest.mark.asyncio
    async def test_missing_parent(self, session_factory):
        async with session_factory() as db:
            with pytest.raises(ListNotFound):
                await task_store.create(db, 404, title="Lost")


class TestMoveWithinParent:
    @pytest.mark.asyncio
    async def test_move_to_front(self, session_factory, list_with_tasks):
        list_id, (t1, t2, t3) = list_with_tasks

        async with session_factory() as db:
            async with db.begin():
                await task_store.move_within_parent(db, t3, 0)

        assert await positions(session_factory, task_store, list_id) == [(t3, 0), (t1, 1), (t2, 2)]

    @pytest.mark.asyncio
    async def test_move_to_current_index_writes_nothing(self, session_factory, list_with_tasks, update_counter):
        list_id, (t1, t2, t3) = list_with_tasks
        before = await positions(session_factory, task_store, list_id)

        async with session_factory() as db:
            async with db.begin():
                await task_store.move_within_parent(db, t2, 1)

        assert update_counter == []
        assert await positions(session_factory, task_store, list_id) == before

    @pytest.mark.asyncio
    async def test_stale_parent(self, session_factory, list_with_tasks):
        _, (t1, _, _) = list_with_tasks

        async with session_factory() as db:
            with pytest.raises(StaleSiblingSet):
                await task_store.move_within_parent(db, t1, 0, expected_parent_id=999)

    @pytest.mark.asyncio
    async def test_missing_entity(self, session_factory, list_with_tasks):
        async with session_factory() as db:
            with pytest.raises(TaskNotFound):
                await task_store.move_within_parent(db, 12345, 0)


class TestMoveAcrossParent:
    @pytest.mark.asyncio
    async def test_moves_and_compacts_both_sets(self, session_factory, board, list_with_tasks):
        source_id, (t1, t2, t3) = list_with_tasks
        async with session_factory() as db:
            async with db.begin():
                dest = await list_store.create(db, board, title="Done")
                t4 = await task_store.create(db, dest.id, title="T4")

        async with session_factory() as db:
            async with db.begin():
                moved = await task_store.move_across_parent(db, t1, dest.id, 0)
                assert moved.list_id == dest.id

        assert await positions(session_factory, task_store, source_id) == [(t2, 0), (t3, 1)]
        assert await positions(session_factory, task_store, dest.id) == [(t1, 0), (t4.id, 1)]

    @pytest.mark.asyncio
    async def test_missing_destination(self, session_factory, list_with_tasks):
        _, (t1, _, _) = list_with_tasks

        async with session_factory() as db:
            with pytest.raises(ListNotFound):
                await task_store.move_across_parent(db, t1, 404, 0)


class TestDelete:
    @pytest.mark.asyncio
    async def test_compacts_the_gap(self, session_factory, list_with_tasks):
        list_id, (t1, t2, t3) = list_with_tasks

        async with session_factory() as db:
            async with db.begin():
                parent_id = await task_store.delete(db, t1)

        assert parent_id == list_id
        assert await positions(session_factory, task_store, list_id) == [(t2, 0), (t3, 1)]

    @pytest.mark.asyncio
    async def test_deleting_a_list_removes_its_tasks(self, session_factory, board, list_with_tasks):
        list_id, _ = list_with_tasks

        async with session_factory() as db:
            async with db.begin():
                await list_store.delete(db, list_id)

        assert await positions(session_factory, task_store, list_id) == []
        assert await positions(session_factory, list_store, board) == []


class TestDensity:
    @pytest.mark.asyncio
    async def test_dense_after_every_operation(self, session_factory, board):
        async with session_factory() as db:
            async with db.begin():
                first = await list_store.create(db, board, title="A")
                second = await list_store.create(db, board, title="B")

        steps = [
            lambda db: task_store.create(db, first.id, title="1"),
            lambda db: task_store.create(db, first.id, title="2"),
            lambda db: task_store.create(db, first.id, title="3"),
            lambda db: task_store.create(db, second.id, title="4"),
        ]
        for step in steps:
            async with session_factory() as db:
                async with db.begin():
                    await step(db)

        ids = [task_id for task_id, _ in await positions(session_factory, task_store, first.id)]
        operations = [
            lambda db: task_store.move_within_parent(db, ids[0], 2),
            lambda db: task_store.move_across_parent(db, ids[1], second.id, 1),
            lambda db: task_store.delete(db, ids[2]),
            lambda db: task_store.move_across_parent(db, ids[1], first.id, 0),
            lambda db: list_store.move_within_parent(db, second.id, 0),
        ]
        for operation in operations:
            async with session_factory() as db:
                async with db.begin():
                    await operation(db)
            for parent_id in (first.id, second.id):
                task_positions = await positions(session_factory, task_store, parent_id)
                assert is_dense([position for _, position in task_positions])
            list_positions = await positions(session_factory, list_store, board)
            assert is_dense([position for _, position in list_positions])


class TestSiblingLockRegistry:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = SiblingLockRegistry()
        order = []

        async def worker(name):
            async with locks.hold([("tasks", 1)]):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_disjoint_keys_run_in_parallel(self):
        locks = SiblingLockRegistry()
        inside = asyncio.Event()

        async def holder():
            async with locks.hold([("tasks", 1)]):
                inside.set()
                await asyncio.sleep(0.05)

        task = asyncio.create_task(holder())
        await inside.wait()
        async with locks.hold([("tasks", 2)]):
            assert locks.is_locked(("tasks", 1))
        await task

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        locks = SiblingLockRegistry()

        with pytest.raises(RuntimeError):
            async with locks.hold([("lists", 1), ("tasks", 3)]):
                raise RuntimeError("boom")

        assert not locks.is_locked(("lists", 1))
        assert len(locks) == 0
