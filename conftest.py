from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import taskboard.models  # noqa: F401  register mappers
from taskboard.db.base import Base
from taskboard.models.board import BoardUserRole
from taskboard.models.user import User
from taskboard.services import websocket_service
from taskboard.services.board_mutation_service import BoardMutationService
from taskboard.services.ordered_store import SiblingLockRegistry


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Одноразовая SQLite база на каждый тест"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'taskboard.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def notifier():
    """Канал рассылки: async-функции модуля заменяются на AsyncMock"""
    return MagicMock(spec=websocket_service)


@pytest.fixture
def service(session_factory, notifier):
    return BoardMutationService(
        session_factory=session_factory,
        locks=SiblingLockRegistry(),
        notifier=notifier,
        retry_attempts=3,
        retry_backoff=0,
    )


@pytest_asyncio.fixture
async def users(session_factory):
    """owner, admin, member и outsider, возвращает {имя: id}"""
    created = {}
    async with session_factory() as db:
        async with db.begin():
            for name in ("owner", "admin", "member", "outsider"):
                user = User(email=f"{name}@example.com", username=name, hashed_password="x")
                db.add(user)
                created[name] = user
            await db.flush()
    return {name: user.id for name, user in created.items()}


@pytest_asyncio.fixture
async def board_id(service, users, notifier):
    board = await service.create_board(users["owner"], "Team board", "Planning")
    await service.add_member(board.id, users["owner"], users["admin"], BoardUserRole.ADMIN)
    await service.add_member(board.id, users["owner"], users["member"], BoardUserRole.MEMBER)
    notifier.reset_mock()
    return board.id
